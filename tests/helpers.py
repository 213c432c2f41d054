from __future__ import annotations

import random
from decimal import Decimal

from app.core.outcome import OutcomePolicy
from app.core.settlement import AssetSnapshot, TradeRequest


NOW = 1_760_000_000_000

DEFAULT_POLICY = OutcomePolicy(
    win_probability=0.85,
    min_profit=Decimal("0.07"),
    max_profit=Decimal("0.19"),
    min_loss=Decimal("0.01"),
    max_loss=Decimal("0.05"),
)

BTC = AssetSnapshot(asset_id="bitcoin", name="Bitcoin", symbol="BTC")


class SeqRandom(random.Random):
    """random() returns the given values in order."""

    def __init__(self, values) -> None:
        super().__init__(0)
        self._values = list(values)

    def random(self) -> float:
        return self._values.pop(0)


def trade_request(account_id: str, amount: str = "1000.00", deadline_ms: int = NOW + 1, **kw) -> TradeRequest:
    return TradeRequest(
        account_id=account_id,
        asset=kw.pop("asset", BTC),
        direction=kw.pop("direction", "up"),
        amount_wagered=Decimal(amount),
        entry_price=Decimal(kw.pop("entry_price", "30000")),
        delivery_deadline_ms=deadline_ms,
        **kw,
    )
