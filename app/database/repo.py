from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.database import models
from app.utils.time import now_ms


class AccountRepo:
    def __init__(self, s: Session) -> None:
        self.s = s

    def get(self, account_id: str) -> Optional[models.Account]:
        return self.s.get(models.Account, account_id)

    def get_for_update(self, account_id: str) -> Optional[models.Account]:
        return (
            self.s.execute(
                select(models.Account).where(models.Account.account_id == account_id).with_for_update()
            )
            .scalars()
            .one_or_none()
        )

    def create(
        self,
        account_id: str,
        balance: Decimal = Decimal("0"),
        username: str = "",
        email: str | None = None,
    ) -> models.Account:
        """Registration lives outside this service; used by seeding and tests."""
        row = models.Account(
            account_id=account_id,
            username=username,
            email=email,
            balance=balance,
            created_at_ms=now_ms(),
        )
        self.s.add(row)
        self.s.flush()
        return row


class AssetRepo:
    def __init__(self, s: Session) -> None:
        self.s = s

    def get(self, asset_id: str) -> Optional[models.Asset]:
        return self.s.get(models.Asset, asset_id)

    def upsert(self, asset_id: str, name: str, symbol: str, price: Decimal | None) -> models.Asset:
        row = self.s.get(models.Asset, asset_id)
        if row is None:
            row = models.Asset(asset_id=asset_id, name=name, symbol=symbol, price=price, updated_at_ms=now_ms())
            self.s.add(row)
        else:
            row.name = name
            row.symbol = symbol
            row.price = price
            row.updated_at_ms = now_ms()
        self.s.flush()
        return row


class TradeRepo:
    def __init__(self, s: Session) -> None:
        self.s = s

    def get(self, trade_id: str) -> Optional[models.Trade]:
        return self.s.get(models.Trade, trade_id)

    def get_for_update(self, trade_id: str) -> Optional[models.Trade]:
        return (
            self.s.execute(select(models.Trade).where(models.Trade.trade_id == trade_id).with_for_update())
            .scalars()
            .one_or_none()
        )

    def exists(self, trade_id: str) -> bool:
        return (
            self.s.execute(select(models.Trade.trade_id).where(models.Trade.trade_id == trade_id)).first()
            is not None
        )

    def add(self, row: models.Trade) -> models.Trade:
        self.s.add(row)
        self.s.flush()
        return row

    def list_due_ids(self, now_ms: int) -> list[str]:
        """Ids of pending trades whose delivery deadline is at or before now_ms."""
        return list(
            self.s.execute(
                select(models.Trade.trade_id)
                .where(models.Trade.status == models.TRADE_PENDING)
                .where(models.Trade.delivery_deadline_ms <= int(now_ms))
                .order_by(models.Trade.delivery_deadline_ms, models.Trade.trade_id)
            )
            .scalars()
            .all()
        )

    def list_by_account(self, account_id: str, limit: int | None = None) -> Sequence[models.Trade]:
        q = (
            select(models.Trade)
            .where(models.Trade.account_id == account_id)
            .order_by(models.Trade.created_at_ms.desc(), models.Trade.trade_id.desc())
        )
        if limit is not None:
            q = q.limit(int(limit))
        return self.s.execute(q).scalars().all()

    def mark_completed(self, trade_id: str, fields: dict[str, Any]) -> bool:
        """Compare-and-set pending -> completed.

        Returns False when the row was no longer pending, i.e. someone else
        settled it first.
        """
        res = self.s.execute(
            update(models.Trade)
            .where(models.Trade.trade_id == trade_id)
            .where(models.Trade.status == models.TRADE_PENDING)
            .values(status=models.TRADE_COMPLETED, **fields)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1


class SystemEventRepo:
    def __init__(self, s: Session) -> None:
        self.s = s

    def write_event(
        self,
        event_type: str,
        correlation_id: str | None,
        severity: str = "INFO",
        payload: dict[str, Any] | None = None,
    ) -> models.SystemEvent:
        row = models.SystemEvent(
            event_type=event_type,
            severity=severity,
            correlation_id=correlation_id,
            payload=dict(payload or {}),
            time_ms=now_ms(),
        )
        self.s.add(row)
        self.s.flush()
        return row

    def list_recent(self, event_type: str | None = None, limit: int = 50) -> Sequence[models.SystemEvent]:
        q = select(models.SystemEvent)
        if event_type:
            q = q.where(models.SystemEvent.event_type == event_type)
        q = q.order_by(models.SystemEvent.time_ms.desc(), models.SystemEvent.id.desc()).limit(int(limit))
        return self.s.execute(q).scalars().all()


class Repo:
    """Per-session facade over the stores."""

    def __init__(self, s: Session) -> None:
        self.s = s
        self.accounts = AccountRepo(s)
        self.assets = AssetRepo(s)
        self.trades = TradeRepo(s)
        self.system_events = SystemEventRepo(s)
