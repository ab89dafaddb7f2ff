# consolidator/api_client.py
from typing import Any, Dict, List, Optional

from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


class ControllerClient:
    """
    Talks to the controller that owns the host/VM inventory and utilization
    samples, and that executes the migrations we plan.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 5):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = self._make_session(token)

    def _make_session(self, token):
        s = Session()
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        s.headers.update(headers)
        retries = Retry(total=3, backoff_factor=0.5, status_forcelist=(502, 503, 504))
        s.mount("http://", HTTPAdapter(max_retries=retries))
        s.mount("https://", HTTPAdapter(max_retries=retries))
        return s

    def get_hosts(self) -> List[Dict[str, Any]]:
        """Hosts with capacity, power model name and utilization history."""
        resp = self.session.get(f"{self.base_url}/hosts", timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def get_vms(self) -> List[Dict[str, Any]]:
        resp = self.session.get(f"{self.base_url}/vms", timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def request_migration(self, vm_id: str, source_host: str, target_host: str,
                          reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Ask the controller to execute one planned migration. Payload:
        {"vm_id": ..., "source_host": ..., "target_host": ..., "reason": ...}
        """
        payload = {
            "vm_id": vm_id,
            "source_host": source_host,
            "target_host": target_host,
            "reason": reason,
        }
        resp = self.session.post(f"{self.base_url}/migration/request", json=payload,
                                 timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()
