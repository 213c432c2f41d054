import logging
import os

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api.router import router
from app.config import settings
from app.core.scheduler import ResolutionScheduler
from app.core.settlement import SettlementEngine
from app.database.engine import init_engine, init_schema
from app.utils.time import ms_to_iso, now_ms


logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("settlement")


def _root_path(raw: str | None) -> str:
    """Normalize e.g. "api/" to "/api"; blank or "/" serves at the host root."""
    rp = "/" + (raw or "").strip().strip("/")
    return "" if rp == "/" else rp


app = FastAPI(
    title="Trade Settlement Service",
    version=settings.APP_VERSION,
    root_path=_root_path(settings.API_ROOT_PATH),
    docs_url="/docs",
    redoc_url=None,
    openapi_url="/openapi.json",
)

app.include_router(router)


# ----------------------------
# Health endpoints
# ----------------------------
def _health_payload() -> dict:
    sched = getattr(app.state, "scheduler", None)
    return {
        "ok": True,
        "service": "trade-settlement",
        "version": os.getenv("APP_VERSION", settings.APP_VERSION),
        "ts": ms_to_iso(now_ms()),
        "scheduler": sched.state if sched else None,
    }


async def _health_handler():
    return JSONResponse(_health_payload())


app.add_api_route("/health", _health_handler, methods=["GET"], tags=["ui"])
app.add_api_route("/ui/health", _health_handler, methods=["GET"], tags=["ui"])


@app.on_event("startup")
async def _startup() -> None:
    init_engine()
    init_schema()

    engine = SettlementEngine()
    app.state.settlement_engine = engine
    app.state.scheduler = ResolutionScheduler(engine, interval_sec=settings.RESOLVE_INTERVAL_SEC)

    # Scheduler is optional; API-only replicas and tests leave it off.
    if settings.START_SCHEDULER:
        app.state.scheduler.start()
    if not settings.admin_identities:
        log.warning("ADMIN_IDENTITIES is empty; /admin routes will reject every caller")


@app.on_event("shutdown")
async def _shutdown() -> None:
    sched = getattr(app.state, "scheduler", None)
    if sched:
        sched.stop()
