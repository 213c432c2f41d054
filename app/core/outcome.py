"""Simulated settlement outcome.

The simulated price move is drawn independently of the trade's `direction`:
an "up" and a "down" bet have the same odds. There is no price feed at
settlement time to compare against, so this is the intended behavior.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_UP, Decimal

from app.database import models
from app.utils.money import MONEY_SCALE, PERCENT_SCALE, to_decimal, to_money


@dataclass(frozen=True)
class OutcomePolicy:
    win_probability: float
    min_profit: Decimal
    max_profit: Decimal
    min_loss: Decimal
    max_loss: Decimal

    @classmethod
    def from_settings(cls, settings) -> "OutcomePolicy":
        return cls(
            win_probability=float(settings.WIN_PROBABILITY),
            min_profit=to_decimal(settings.MIN_PROFIT),
            max_profit=to_decimal(settings.MAX_PROFIT),
            min_loss=to_decimal(settings.MIN_LOSS),
            max_loss=to_decimal(settings.MAX_LOSS),
        )


@dataclass(frozen=True)
class SettlementOutcome:
    outcome: str
    fraction: Decimal  # signed: +profit / -loss
    gain_percentage: Decimal
    final_amount: Decimal
    simulated_final_price: Decimal

    def as_trade_fields(self) -> dict:
        return {
            "outcome": self.outcome,
            "gain_percentage": self.gain_percentage,
            "final_amount": self.final_amount,
            "simulated_final_price": self.simulated_final_price,
            "current_trade_value": self.final_amount,
            "current_gain_loss_percentage": self.gain_percentage,
        }


def _draw_fraction(rng: random.Random, lo: Decimal, hi: Decimal) -> Decimal:
    f = to_money(float(lo) + rng.random() * float(hi - lo))
    return min(max(f, lo), hi)


def sample_outcome(
    rng: random.Random,
    policy: OutcomePolicy,
    amount_wagered: Decimal,
    entry_price: Decimal,
) -> SettlementOutcome:
    """Draw one win/loss sample for a trade.

    Payouts are rounded toward the wager (down on a win, up on a loss) so the
    result never leaves the configured band.
    """
    one = Decimal(1)
    if rng.random() < policy.win_probability:
        f = _draw_fraction(rng, policy.min_profit, policy.max_profit)
        return SettlementOutcome(
            outcome=models.OUTCOME_WIN,
            fraction=f,
            gain_percentage=to_money(f * 100, PERCENT_SCALE),
            final_amount=to_money(amount_wagered * (one + f), MONEY_SCALE, ROUND_DOWN),
            simulated_final_price=to_money(entry_price * (one + f)),
        )

    f = _draw_fraction(rng, policy.min_loss, policy.max_loss)
    return SettlementOutcome(
        outcome=models.OUTCOME_LOSS,
        fraction=-f,
        gain_percentage=to_money(-f * 100, PERCENT_SCALE),
        final_amount=max(Decimal(0), to_money(amount_wagered * (one - f), MONEY_SCALE, ROUND_UP)),
        simulated_final_price=to_money(entry_price * (one - f)),
    )
