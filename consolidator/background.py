# consolidator/background.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

from .api_client import ControllerClient
from .config import Settings
from .history import MetricHistory
from .models import Datacenter, MigrationAction
from .orchestrator import CycleReport, build_orchestrator

logger = logging.getLogger("consolidator.background")


class SchedulerService:
    """
    Runs one planning cycle per tick over a freshly loaded inventory. The
    metric history and the tick counter live here so they survive across cycles.
    """

    def __init__(self, settings: Settings, client: Optional[ControllerClient] = None):
        self.settings = settings
        self.client = client
        self.history = MetricHistory()
        self.tick = 0
        self.last_report: Optional[CycleReport] = None
        self.lock = asyncio.Lock()

    def run_cycle(self, hosts: List[Dict[str, Any]], vms: List[Dict[str, Any]],
                  tick: Optional[float] = None) -> List[MigrationAction]:
        if tick is None:
            self.tick += 1
            tick = self.tick * self.settings.rebalance_interval
        datacenter = Datacenter.from_inventory(hosts, vms)
        orchestrator = build_orchestrator(datacenter, self.settings, self.history)
        actions = orchestrator.plan_migrations(tick)
        self.last_report = orchestrator.last_report
        return actions

    async def start_periodic(self):
        while True:
            try:
                await self.run_periodic_cycle()
            except Exception as e:
                logger.exception("Periodic cycle failed: %s", e)
            await asyncio.sleep(self.settings.rebalance_interval)

    async def run_periodic_cycle(self):
        if self.client is None:
            return []
        logger.info("Starting periodic consolidation cycle")
        hosts = self.client.get_hosts()
        vms = self.client.get_vms()
        async with self.lock:
            actions = self.run_cycle(hosts, vms)
        logger.info("Periodic plan proposals: %d", len(actions))
        self.submit_plan(actions)
        return actions

    def submit_plan(self, actions: List[MigrationAction]) -> int:
        submitted = 0
        for a in actions:
            try:
                logger.info("Requesting migration for vm %s: %s -> %s",
                            a.vm_id, a.source_host_id, a.destination_host_id)
                self.client.request_migration(a.vm_id, a.source_host_id, a.destination_host_id,
                                              reason="predictive_consolidation")
                submitted += 1
            except Exception as e:
                logger.exception("Failed to request migration for vm %s: %s", a.vm_id, e)
        return submitted
