from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.adapters.asset_snapshot import complete_request
from app.api.deps import get_engine, get_scheduler, require_admin
from app.core.errors import SettlementError, StoreUnavailable
from app.core.scheduler import ResolutionScheduler
from app.core.settlement import EVENT_CREDIT_SKIPPED, SettlementEngine, TradeRequest
from app.database import models
from app.database.engine import SessionLocal
from app.database.repo import Repo
from app.database.session import get_session
from app.utils.money import PERCENT_SCALE, money_str
from app.utils.time import ms_to_iso, now_ms


router = APIRouter()


def _raise_http(e: SettlementError) -> None:
    raise HTTPException(status_code=e.http_status, detail=e.to_dict())


def _trade_out(t: models.Trade) -> dict:
    return {
        "trade_id": t.trade_id,
        "account_id": t.account_id,
        "asset_id": t.asset_id,
        "asset_name": t.asset_name,
        "asset_symbol": t.asset_symbol,
        "trade_type": t.trade_type,
        "direction": t.direction,
        "amount_wagered": money_str(t.amount_wagered),
        "entry_price": money_str(t.entry_price),
        "created_at_ms": int(t.created_at_ms),
        "delivery_deadline_ms": int(t.delivery_deadline_ms),
        "resolved_at_ms": int(t.resolved_at_ms) if t.resolved_at_ms is not None else None,
        "status": t.status,
        "outcome": t.outcome,
        "gain_percentage": money_str(t.gain_percentage, PERCENT_SCALE),
        "final_amount": money_str(t.final_amount),
        "simulated_final_price": money_str(t.simulated_final_price),
        "current_trade_value": money_str(t.current_trade_value),
        "current_gain_loss_percentage": money_str(t.current_gain_loss_percentage, PERCENT_SCALE),
    }


def _prepare(payload: dict, account_id: str | None = None) -> TradeRequest:
    req = TradeRequest.from_payload(payload, account_id=account_id)
    with SessionLocal() as s:
        return complete_request(s, req)


# ---------------------------
# Trades
# ---------------------------


@router.post("/api/trades", status_code=201)
def create_trade(payload: dict = Body(...), engine: SettlementEngine = Depends(get_engine)) -> dict:
    """Place a trade: debits the wager and stores it as pending.

    Body: {"account_id":"a1", "asset_id":"bitcoin", "asset_name":"Bitcoin", "asset_symbol":"BTC",
           "direction":"up", "amount_wagered":"100.00", "entry_price":"30000",
           "delivery_deadline_ms":1760000000000}
    `asset_name`/`asset_symbol`/`entry_price` may be omitted when the asset is known.
    """
    try:
        trade = engine.create_trade(_prepare(payload))
    except SettlementError as e:
        _raise_http(e)
    return _trade_out(trade)


@router.post("/api/trades/batch", status_code=201)
def create_trades(payload: dict = Body(...), engine: SettlementEngine = Depends(get_engine)) -> dict:
    """Place several trades for one account; all are stored or none.

    Body: {"account_id":"a1", "trades":[{...}, {...}]}
    """
    account_id = str(payload.get("account_id") or payload.get("userId") or "").strip()
    items = payload.get("trades") or payload.get("transactions")
    if not account_id or not isinstance(items, list) or not items:
        raise HTTPException(status_code=400, detail="account_id and a non-empty trades list are required")

    try:
        reqs = [_prepare(it, account_id=account_id) for it in items]
        rows = engine.create_trades(account_id, reqs)
    except SettlementError as e:
        _raise_http(e)
    return {"ok": True, "account_id": account_id, "trades": [_trade_out(t) for t in rows]}


@router.get("/api/trades")
def list_trades(
    account_id: str,
    limit: int | None = Query(None, ge=1, le=1000),
    engine: SettlementEngine = Depends(get_engine),
) -> list[dict]:
    """Trades of one account, newest first."""
    return [_trade_out(t) for t in engine.get_trades_by_account(account_id, limit=limit)]


@router.get("/api/trades/{trade_id}")
def get_trade(trade_id: str, engine: SettlementEngine = Depends(get_engine)) -> dict:
    t = engine.get_trade(trade_id)
    if t is None:
        raise HTTPException(status_code=404, detail="trade not found")
    return _trade_out(t)


@router.get("/api/accounts/{account_id}")
def get_account(account_id: str, engine: SettlementEngine = Depends(get_engine)) -> dict:
    try:
        a = engine.get_account(account_id)
    except SettlementError as e:
        _raise_http(e)
    return {"account_id": a.account_id, "username": a.username, "balance": money_str(a.balance)}


# ---------------------------
# Admin
# ---------------------------


@router.post("/admin/trades/resolve")
def resolve_now(
    payload: dict | None = Body(None),
    _admin: str = Depends(require_admin),
    scheduler: ResolutionScheduler = Depends(get_scheduler),
) -> dict:
    """Manual trigger: run one resolution sweep now (safe alongside the timer).

    Body (optional): {"now_ms": 1760000000000}
    """
    at = (payload or {}).get("now_ms")
    try:
        res = scheduler.trigger(int(at) if at is not None else None)
    except StoreUnavailable as e:
        _raise_http(e)
    return {"ok": True, **res.to_dict()}


@router.get("/admin/scheduler")
def scheduler_status(
    _admin: str = Depends(require_admin),
    scheduler: ResolutionScheduler = Depends(get_scheduler),
) -> dict:
    return {"time_ms": now_ms(), **scheduler.status()}


@router.get("/admin/settlement/events")
def settlement_events(
    limit: int = Query(50, ge=1, le=500),
    _admin: str = Depends(require_admin),
    s: Session = Depends(get_session),
) -> list[dict]:
    """Credits skipped during settlement, for manual reconciliation."""
    rows = Repo(s).system_events.list_recent(event_type=EVENT_CREDIT_SKIPPED, limit=limit)
    return [
        {
            "id": r.id,
            "event_type": r.event_type,
            "severity": r.severity,
            "trade_id": r.correlation_id,
            "payload": r.payload or {},
            "time_ms": int(r.time_ms),
            "time": ms_to_iso(r.time_ms),
        }
        for r in rows
    ]
