# consolidator/main.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from .api_client import ControllerClient
from .background import SchedulerService
from .config import load_settings
from .exceptions import CapacityError, ConfigurationError
from .models import MigrationAction

settings = load_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("consolidator")

app = FastAPI(title="Predictive Consolidation Scheduler")

client = ControllerClient(settings.controller_base_url, settings.controller_token)
service = SchedulerService(settings, client)


class Inventory(BaseModel):
    hosts: List[Dict[str, Any]]
    vms: List[Dict[str, Any]]
    tick: Optional[float] = None


class MetricRecord(BaseModel):
    timestamp: float
    utilization: float
    threshold: float


@app.on_event("startup")
async def startup_event():
    asyncio.create_task(service.start_periodic())
    logger.info("Consolidation service started and periodic task scheduled")


@app.post("/scheduler/plan", response_model=List[MigrationAction])
async def plan(inventory: Inventory):
    async with service.lock:
        try:
            return service.run_cycle(inventory.hosts, inventory.vms, inventory.tick)
        except (ConfigurationError, ValidationError) as e:
            raise HTTPException(status_code=422, detail=str(e))
        except CapacityError as e:
            raise HTTPException(status_code=409, detail=str(e))


@app.get("/scheduler/history", response_model=List[str])
async def tracked_hosts():
    return service.history.host_ids()


@app.get("/scheduler/history/{host_id}", response_model=List[MetricRecord])
async def history(host_id: str):
    return [MetricRecord(**r._asdict()) for r in service.history.records(host_id)]


@app.get("/scheduler/health")
async def health():
    return {"status": "ok", "tick": service.tick}


if __name__ == "__main__":
    uvicorn.run("consolidator.main:app", host="0.0.0.0", port=9000, log_level="info")
