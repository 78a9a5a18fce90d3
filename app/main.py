from __future__ import annotations

from fastapi import FastAPI, HTTPException

from app.api.routers import audit, mission, mission_driver, truck, workflow
from app.infra.db import check_db_ready
from app.infra.logging_config import configure_logging

configure_logging()

app = FastAPI(
    title="convoy-workflow",
    description="Per-tenant truck workflow engine with role gating and an append-only audit trail.",
    version="0.1.0",
)

app.include_router(workflow.router, prefix="/api/workflow", tags=["workflow"])
app.include_router(truck.router, prefix="/api", tags=["trucks"])
app.include_router(mission.router, prefix="/api", tags=["missions"])
app.include_router(mission_driver.router, prefix="/api", tags=["mission-drivers"])
app.include_router(audit.router, prefix="/api/audit", tags=["audit"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
