from __future__ import annotations

import logging

from fastapi import Header, HTTPException, Request

from app.config import settings
from app.core.scheduler import ResolutionScheduler
from app.core.settlement import SettlementEngine


log = logging.getLogger(__name__)


def get_engine(request: Request) -> SettlementEngine:
    engine = getattr(request.app.state, "settlement_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="settlement engine not initialized")
    return engine


def get_scheduler(request: Request) -> ResolutionScheduler:
    sched = getattr(request.app.state, "scheduler", None)
    if sched is None:
        raise HTTPException(status_code=503, detail="scheduler not initialized")
    return sched


def is_admin(identity: str | None) -> bool:
    ident = (identity or "").strip().lower()
    return bool(ident) and ident in settings.admin_identities


def require_admin(x_user_email: str | None = Header(default=None)) -> str:
    """Admin capability: the caller identity must be in ADMIN_IDENTITIES."""
    if not is_admin(x_user_email):
        log.warning("admin route denied identity=%r", x_user_email)
        raise HTTPException(status_code=403, detail="Access denied: admin role required")
    return (x_user_email or "").strip().lower()
