"""Trade settlement engine.

Money leaves an account in exactly one place (`create_trade` / `create_trades`,
debit + insert in one transaction) and comes back in exactly one place
(`resolve_due_trades`, one transaction per trade: status compare-and-set +
credit). Both the scheduler and the admin trigger call `resolve_due_trades`.
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from sqlalchemy.exc import DataError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.core.errors import AccountNotFound, InsufficientBalance, InvalidInput, StoreUnavailable
from app.core.outcome import OutcomePolicy, sample_outcome
from app.database import models
from app.database.repo import Repo
from app.database.session import session_scope
from app.utils.money import MONEY_LIMIT, to_decimal, to_money
from app.utils.symbols import normalize_symbol
from app.utils.time import MAX_EPOCH_MS
from app.utils.time import now_ms as _now_ms


log = logging.getLogger(__name__)

EVENT_CREDIT_SKIPPED = "SETTLEMENT_CREDIT_SKIPPED"


@dataclass(frozen=True)
class AssetSnapshot:
    asset_id: str
    name: str
    symbol: str


@dataclass
class TradeRequest:
    account_id: str
    asset: AssetSnapshot
    direction: str
    amount_wagered: Decimal
    # None until filled from the asset table.
    entry_price: Optional[Decimal]
    delivery_deadline_ms: int
    trade_id: Optional[str] = None
    trade_type: str = "buy"

    @classmethod
    def from_payload(cls, payload: dict[str, Any], account_id: str | None = None) -> "TradeRequest":
        """Parse an API payload. Accepts snake_case and the legacy camelCase keys."""
        if not isinstance(payload, dict):
            raise InvalidInput("trade payload must be an object")

        def pick(*keys: str) -> Any:
            for k in keys:
                v = payload.get(k)
                if v is not None:
                    return v
            return None

        acct = account_id or pick("account_id", "accountId", "userId")
        try:
            amount = to_decimal(pick("amount_wagered", "amountWagered", "amount"))
            entry = pick("entry_price", "entryPrice")
            entry_price = to_decimal(entry) if entry is not None else None
            deadline = pick("delivery_deadline_ms", "deliveryDeadlineMs", "deliveryTime")
            if deadline is None or isinstance(deadline, bool):
                raise ValueError("delivery_deadline_ms is required")
            deadline_dec = to_decimal(deadline)
            if deadline_dec != deadline_dec.to_integral_value():
                raise ValueError("delivery_deadline_ms must be a whole number of milliseconds")
            deadline_ms = int(deadline_dec)
        except ValueError as e:
            raise InvalidInput(str(e)) from None

        asset_id = str(pick("asset_id", "assetId", "cryptoId", "crypto_id") or "").strip()
        trade_id = str(pick("trade_id", "tradeId", "id") or "").strip() or None
        return cls(
            account_id=str(acct or "").strip(),
            asset=AssetSnapshot(
                asset_id=asset_id,
                name=str(pick("asset_name", "assetName", "cryptoName") or "").strip(),
                symbol=normalize_symbol(pick("asset_symbol", "assetSymbol", "cryptoSymbol")),
            ),
            direction=str(pick("direction") or "").strip().lower(),
            amount_wagered=amount,
            entry_price=entry_price,
            delivery_deadline_ms=deadline_ms,
            trade_id=trade_id,
            trade_type=str(pick("trade_type", "type") or "buy").strip().lower(),
        )


@dataclass
class SweepResult:
    now_ms: int
    examined: int = 0
    resolved: int = 0
    skipped: int = 0
    failed: int = 0
    uncredited: int = 0
    resolved_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "now_ms": self.now_ms,
            "examined": self.examined,
            "resolved": self.resolved,
            "skipped": self.skipped,
            "failed": self.failed,
            "uncredited": self.uncredited,
        }


class SettlementEngine:
    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        policy: OutcomePolicy | None = None,
        rng: random.Random | None = None,
        min_wager: Decimal | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._factory = session_factory
        self.policy = policy or OutcomePolicy.from_settings(settings)
        self.rng = rng or random.Random(settings.OUTCOME_SEED)
        self.min_wager = to_decimal(settings.MIN_WAGER if min_wager is None else min_wager)
        self.clock = clock

    # ---------------------------
    # Create
    # ---------------------------

    def _validate(self, req: TradeRequest, now: int) -> None:
        if not req.account_id:
            raise InvalidInput("account_id is required")
        if not (req.asset.asset_id and req.asset.name and req.asset.symbol):
            raise InvalidInput("asset snapshot requires asset_id, asset_name and asset_symbol")
        if req.direction not in models.DIRECTIONS:
            raise InvalidInput(f"direction must be one of {list(models.DIRECTIONS)}", direction=req.direction)
        if req.trade_type not in models.TRADE_TYPES:
            raise InvalidInput(f"trade_type must be one of {list(models.TRADE_TYPES)}", trade_type=req.trade_type)
        if req.amount_wagered <= 0:
            raise InvalidInput("amount_wagered must be positive")
        if req.amount_wagered < self.min_wager:
            raise InvalidInput(f"amount_wagered is below the minimum of {self.min_wager}")
        if req.entry_price is None:
            raise InvalidInput("entry_price is required")
        if req.entry_price <= 0:
            raise InvalidInput("entry_price must be positive")
        # The payout and simulated price must still fit the money columns.
        ceiling = MONEY_LIMIT / (1 + self.policy.max_profit)
        if req.amount_wagered >= ceiling:
            raise InvalidInput("amount_wagered is too large")
        if req.entry_price >= ceiling:
            raise InvalidInput("entry_price is too large")
        if req.delivery_deadline_ms != int(req.delivery_deadline_ms):
            raise InvalidInput("delivery_deadline_ms must be a whole number of milliseconds")
        if req.delivery_deadline_ms <= now:
            raise InvalidInput("delivery_deadline_ms must be in the future", now_ms=now)
        if req.delivery_deadline_ms > MAX_EPOCH_MS:
            raise InvalidInput("delivery_deadline_ms is out of range")
        if req.trade_id is not None and len(req.trade_id) > 64:
            raise InvalidInput("trade_id is too long")

    def _new_row(self, req: TradeRequest, now: int) -> models.Trade:
        return models.Trade(
            trade_id=req.trade_id or uuid.uuid4().hex,
            account_id=req.account_id,
            asset_id=req.asset.asset_id,
            asset_name=req.asset.name,
            asset_symbol=req.asset.symbol,
            trade_type=req.trade_type,
            direction=req.direction,
            amount_wagered=to_money(req.amount_wagered),
            entry_price=to_money(req.entry_price),
            created_at_ms=now,
            delivery_deadline_ms=int(req.delivery_deadline_ms),
            status=models.TRADE_PENDING,
            # Settlement fields stay unset until resolution.
            resolved_at_ms=None,
            outcome=None,
            gain_percentage=None,
            final_amount=None,
            simulated_final_price=None,
            current_trade_value=None,
            current_gain_loss_percentage=None,
        )

    def create_trade(self, req: TradeRequest, now_ms: int | None = None) -> models.Trade:
        """Debit the wager and insert a pending trade, atomically."""
        return self.create_trades(req.account_id, [req], now_ms=now_ms)[0]

    def create_trades(self, account_id: str, reqs: list[TradeRequest], now_ms: int | None = None) -> list[models.Trade]:
        """Create several trades for one account: one debit of the total, all rows or none."""
        now = int(now_ms if now_ms is not None else self.clock())
        if not reqs:
            raise InvalidInput("at least one trade is required")
        own = []
        for r in reqs:
            if r.account_id and r.account_id != account_id:
                raise InvalidInput("all trades in a batch must belong to the same account")
            r = replace(r, account_id=account_id)
            self._validate(r, now)
            own.append(r)

        try:
            rows = [self._new_row(r, now) for r in own]
        except InvalidOperation:
            raise InvalidInput("amount out of range") from None
        ids = [r.trade_id for r in rows]
        if len(set(ids)) != len(ids):
            raise InvalidInput("duplicate trade_id in batch")
        total = sum((r.amount_wagered for r in rows), Decimal(0))

        try:
            with session_scope(self._factory) as s:
                repo = Repo(s)
                acct = repo.accounts.get_for_update(account_id)
                if acct is None:
                    log.warning("create_trade: account not found account_id=%s", account_id)
                    raise AccountNotFound(f"account {account_id} not found", account_id=account_id)
                if acct.balance < total:
                    log.warning(
                        "create_trade: insufficient balance account_id=%s balance=%s wager=%s",
                        account_id,
                        acct.balance,
                        total,
                    )
                    raise InsufficientBalance(
                        "insufficient balance", account_id=account_id, balance=str(acct.balance), required=str(total)
                    )
                for tid in ids:
                    if repo.trades.exists(tid):
                        raise InvalidInput(f"trade {tid} already exists", trade_id=tid)

                before = acct.balance
                acct.balance = before - total
                for row in rows:
                    repo.trades.add(row)
        except DataError as e:
            # Value rejected by the column type (numeric overflow on PostgreSQL).
            raise InvalidInput("trade could not be stored", error=str(e.orig)) from None
        except IntegrityError as e:
            # Lost a race on a client-supplied id.
            raise InvalidInput("trade could not be stored (duplicate id?)", error=str(e.orig)) from None
        except OperationalError as e:
            raise StoreUnavailable("store unavailable", error=str(e.orig)) from None

        log.info(
            "trades created account_id=%s count=%d debited=%s balance %s -> %s",
            account_id,
            len(rows),
            total,
            before,
            before - total,
        )
        return rows

    # ---------------------------
    # Resolve
    # ---------------------------

    def _settle_one(self, trade_id: str, now: int, result: SweepResult) -> None:
        with session_scope(self._factory) as s:
            repo = Repo(s)
            trade = repo.trades.get_for_update(trade_id)
            if trade is None or trade.status != models.TRADE_PENDING:
                # Settled by an overlapping sweep or manual trigger.
                result.skipped += 1
                return

            o = sample_outcome(self.rng, self.policy, trade.amount_wagered, trade.entry_price)
            fields = o.as_trade_fields()
            fields["resolved_at_ms"] = now
            if not repo.trades.mark_completed(trade_id, fields):
                result.skipped += 1
                return

            acct = repo.accounts.get_for_update(trade.account_id)
            credited = acct is not None
            if acct is not None:
                before = acct.balance
                acct.balance = before + o.final_amount
            else:
                log.warning(
                    "trade %s: account %s not found, credit of %s skipped (needs reconciliation)",
                    trade_id,
                    trade.account_id,
                    o.final_amount,
                )
                repo.system_events.write_event(
                    event_type=EVENT_CREDIT_SKIPPED,
                    correlation_id=trade_id,
                    severity="WARN",
                    payload={
                        "trade_id": trade_id,
                        "account_id": trade.account_id,
                        "final_amount": str(o.final_amount),
                        "outcome": o.outcome,
                    },
                )

        result.resolved += 1
        result.resolved_ids.append(trade_id)
        if credited:
            log.info(
                "trade %s resolved outcome=%s gain=%s%% wager=%s final=%s balance %s -> %s",
                trade_id,
                o.outcome,
                o.gain_percentage,
                trade.amount_wagered,
                o.final_amount,
                before,
                before + o.final_amount,
            )
        else:
            result.uncredited += 1

    def resolve_due_trades(self, now_ms: int | None = None) -> SweepResult:
        """Settle every pending trade whose deadline is <= now, each at most once.

        Raises StoreUnavailable only if the due-trade query fails. Per-trade
        failures are logged and counted, never raised.
        """
        now = int(now_ms if now_ms is not None else self.clock())
        result = SweepResult(now_ms=now)

        try:
            with session_scope(self._factory) as s:
                due = Repo(s).trades.list_due_ids(now)
        except SQLAlchemyError as e:
            log.error("sweep: due-trade query failed: %s", e)
            raise StoreUnavailable("due-trade query failed", error=str(e)) from None

        log.info("sweep started now_ms=%d due=%d", now, len(due))
        for trade_id in due:
            result.examined += 1
            try:
                self._settle_one(trade_id, now, result)
            except Exception:
                result.failed += 1
                log.exception("trade %s: settlement failed", trade_id)

        log.info(
            "sweep finished examined=%d resolved=%d skipped=%d failed=%d uncredited=%d",
            result.examined,
            result.resolved,
            result.skipped,
            result.failed,
            result.uncredited,
        )
        return result

    # ---------------------------
    # Reads
    # ---------------------------

    def get_trades_by_account(self, account_id: str, limit: int | None = None) -> list[models.Trade]:
        """Newest first."""
        with session_scope(self._factory) as s:
            return list(Repo(s).trades.list_by_account(account_id, limit=limit))

    def get_trade(self, trade_id: str) -> models.Trade | None:
        with session_scope(self._factory) as s:
            return Repo(s).trades.get(trade_id)

    def get_account(self, account_id: str) -> models.Account:
        with session_scope(self._factory) as s:
            acct = Repo(s).accounts.get(account_id)
            if acct is None:
                raise AccountNotFound(f"account {account_id} not found", account_id=account_id)
            return acct
