from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.settlement import AssetSnapshot, TradeRequest
from app.database.repo import Repo
from app.utils.symbols import normalize_symbol


log = logging.getLogger(__name__)

# Used when the asset table has no price for an id (no live feed in this service).
FALLBACK_PRICES: dict[str, Decimal] = {
    "bitcoin": Decimal("30000"),
    "ethereum": Decimal("2000"),
    "tether": Decimal("1"),
}
DEFAULT_FALLBACK_PRICE = Decimal("100")


def lookup_entry_price(s: Session, asset_id: str) -> Decimal:
    row = Repo(s).assets.get(asset_id)
    if row is not None and row.price is not None and row.price > 0:
        return row.price
    px = FALLBACK_PRICES.get((asset_id or "").strip().lower(), DEFAULT_FALLBACK_PRICE)
    log.info("asset %s has no stored price, using fallback %s", asset_id, px)
    return px


def complete_request(s: Session, req: TradeRequest) -> TradeRequest:
    """Fill a partial asset snapshot or an absent entry price from the asset table.

    Fields the caller supplied always win; the snapshot is frozen into the
    trade row at creation either way.
    """
    if not req.asset.asset_id:
        return req

    asset = req.asset
    if not (asset.name and asset.symbol):
        row = Repo(s).assets.get(asset.asset_id)
        if row is not None:
            asset = AssetSnapshot(
                asset_id=asset.asset_id,
                name=asset.name or row.name,
                symbol=asset.symbol or normalize_symbol(row.symbol),
            )

    entry_price = req.entry_price
    if entry_price is None:
        entry_price = lookup_entry_price(s, asset.asset_id)

    return replace(req, asset=asset, entry_price=entry_price)
