import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from netpulse_agent.config import load_config
from netpulse_agent.domain import DeviceStatus
from netpulse_agent.errors import DeviceNotFoundError, NetworkEnvironmentError
from netpulse_agent.services import AgentServices, build_services

from . import schemas

logger = logging.getLogger(__name__)


def create_app(services: Optional[AgentServices] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            config = load_config()
            logging.basicConfig(level=config.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
            app.state.services = build_services(config)
            logger.info("API services ready")
        yield

    app = FastAPI(title="NetPulse API", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DeviceNotFoundError)
    async def device_not_found(request: Request, exc: DeviceNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(NetworkEnvironmentError)
    async def network_unavailable(request: Request, exc: NetworkEnvironmentError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    register_routes(app)
    return app


def get_services(request: Request) -> AgentServices:
    return request.app.state.services


def register_routes(app: FastAPI):
    # --- Devices ---

    @app.get("/devices", response_model=List[schemas.DeviceOut])
    def get_devices(online_only: Optional[bool] = None, services: AgentServices = Depends(get_services)):
        devices = services.repos.devices.find_all()
        if online_only is not None:
            devices = [d for d in devices if (d.status != DeviceStatus.OFFLINE) == online_only]
        return devices

    @app.get("/devices/summary", response_model=schemas.DeviceSummaryOut)
    def get_device_summary(services: AgentServices = Depends(get_services)):
        return services.repos.devices.summary()

    @app.get("/devices/{device_id}", response_model=schemas.DeviceOut)
    def get_device(device_id: str, services: AgentServices = Depends(get_services)):
        device = services.repos.devices.find_by_id(device_id)
        if not device:
            raise DeviceNotFoundError(device_id)
        return device

    @app.patch("/devices/{device_id}", response_model=schemas.DeviceOut)
    def update_device(device_id: str, update: schemas.DeviceUpdate, services: AgentServices = Depends(get_services)):
        fields = update.model_dump(exclude_unset=True)
        if not fields:
            device = services.repos.devices.find_by_id(device_id)
            if not device:
                raise DeviceNotFoundError(device_id)
            return device
        return services.repos.devices.update(device_id, **fields)

    @app.delete("/devices/{device_id}")
    def delete_device(device_id: str, services: AgentServices = Depends(get_services)):
        if not services.repos.devices.delete(device_id):
            raise DeviceNotFoundError(device_id)
        return {"status": "deleted"}

    @app.post("/devices/{device_id}/ports/scan", response_model=schemas.DeviceOut)
    def scan_device_ports(
        device_id: str,
        body: Optional[schemas.PortScanRequest] = None,
        services: AgentServices = Depends(get_services),
    ):
        ports = body.ports if body else None
        return services.discovery.scan_ports(device_id, ports=ports, triggered_by="manual")

    @app.get("/devices/{device_id}/metrics", response_model=List[schemas.MetricOut])
    def get_device_metrics(device_id: str, minutes: int = 60, services: AgentServices = Depends(get_services)):
        if not services.repos.devices.find_by_id(device_id):
            raise DeviceNotFoundError(device_id)
        since = services.diagnostics.clock() - timedelta(minutes=max(1, minutes))
        return services.repos.metrics.find_by_device(device_id, since)

    @app.get("/devices/{device_id}/alerts", response_model=List[schemas.AlertOut])
    def get_device_alerts(device_id: str, limit: int = 50, services: AgentServices = Depends(get_services)):
        if not services.repos.devices.find_by_id(device_id):
            raise DeviceNotFoundError(device_id)
        return services.repos.alerts.find_by_device(device_id, limit)

    # --- Scans & probes ---

    @app.post("/scans/discovery", response_model=schemas.DiscoveryOut)
    def run_discovery(services: AgentServices = Depends(get_services)):
        return services.discovery.discover(triggered_by="manual")

    @app.get("/scans", response_model=List[schemas.ScanOut])
    def get_scans(limit: int = 20, services: AgentServices = Depends(get_services)):
        return services.repos.scans.find_recent(limit)

    @app.post("/metrics/probe", response_model=List[schemas.MetricOut])
    def probe_devices(services: AgentServices = Depends(get_services)):
        return services.collector.probe_all()

    # --- Diagnostics ---

    @app.post("/diagnostics/run", response_model=List[schemas.ProblemOut])
    def run_diagnostics(services: AgentServices = Depends(get_services)):
        return services.diagnostics.run_diagnostics()

    @app.get("/problems", response_model=List[schemas.ProblemOut])
    def get_problems(active_only: bool = True, services: AgentServices = Depends(get_services)):
        return services.repos.problems.find_all(active_only=active_only)

    @app.get("/problems/{problem_id}", response_model=schemas.ProblemOut)
    def get_problem(problem_id: str, services: AgentServices = Depends(get_services)):
        problem = services.repos.problems.find_by_id(problem_id)
        if not problem:
            raise HTTPException(status_code=404, detail="Problem not found")
        return problem

    @app.post("/problems/{problem_id}/resolve", response_model=schemas.ProblemOut)
    def resolve_problem(problem_id: str, services: AgentServices = Depends(get_services)):
        problem = services.diagnostics.resolve_problem(problem_id)
        if not problem:
            raise HTTPException(status_code=404, detail="Problem not found")
        return problem

    # --- Alerts ---

    @app.get("/alerts", response_model=List[schemas.AlertOut])
    def get_alerts(unread_only: bool = False, limit: int = 50, services: AgentServices = Depends(get_services)):
        return services.repos.alerts.find_all(unread_only=unread_only, limit=limit)

    @app.get("/alerts/unread-count")
    def get_unread_count(services: AgentServices = Depends(get_services)):
        return {"count": services.repos.alerts.unread_count()}

    @app.post("/alerts/read-all")
    def read_all_alerts(services: AgentServices = Depends(get_services)):
        return {"updated": services.repos.alerts.mark_all_read()}

    @app.post("/alerts/{alert_id}/read", response_model=schemas.AlertOut)
    def read_alert(alert_id: str, services: AgentServices = Depends(get_services)):
        alert = services.repos.alerts.mark_read(alert_id)
        if not alert:
            raise HTTPException(status_code=404, detail="Alert not found")
        return alert

    @app.delete("/alerts/{alert_id}")
    def delete_alert(alert_id: str, services: AgentServices = Depends(get_services)):
        if not services.repos.alerts.delete(alert_id):
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"status": "deleted"}

    # --- Health ---

    @app.post("/health/score", response_model=schemas.HealthScoreOut)
    def calculate_health(services: AgentServices = Depends(get_services)):
        return services.health.calculate_health_score()

    @app.get("/health/score", response_model=schemas.HealthScoreOut)
    def get_health(services: AgentServices = Depends(get_services)):
        latest = services.repos.health_scores.latest()
        if not latest:
            raise HTTPException(status_code=404, detail="No health score calculated yet")
        return latest

    @app.get("/health/history", response_model=List[schemas.HealthScoreOut])
    def get_health_history(limit: int = 50, services: AgentServices = Depends(get_services)):
        return services.repos.health_scores.history(limit)

    # --- Speed tests ---

    @app.post("/speedtests", response_model=schemas.SpeedTestOut)
    def ingest_speed_test(result: schemas.SpeedTestCreate, services: AgentServices = Depends(get_services)):
        config = services.config
        return services.repos.speed_tests.create(
            download_mbps=result.download_mbps,
            upload_mbps=result.upload_mbps,
            ping_ms=result.ping_ms,
            jitter=result.jitter,
            isp=result.isp,
            server_info=result.server_info,
            contracted_download_mbps=config.contracted_download_mbps,
            contracted_upload_mbps=config.contracted_upload_mbps,
            triggered_by="api",
        )

    @app.get("/speedtests", response_model=List[schemas.SpeedTestOut])
    def get_speed_tests(limit: int = 10, services: AgentServices = Depends(get_services)):
        return services.repos.speed_tests.recent(limit)


app = create_app()


def run():
    uvicorn.run(
        "netpulse_api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
    )
