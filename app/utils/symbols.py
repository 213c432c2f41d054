from __future__ import annotations

import re

_PAIR_RE = re.compile(r"^([A-Z0-9]{2,})[/\-_ ]?(USDT|USD)$")


def normalize_symbol(symbol: str | None) -> str:
    """Normalize an asset ticker.

    - Accepts: "btc", " BTC ", "BTC/USDT", "btc-usdt", "ETHUSDT"
    - Returns the uppercase base ticker ("BTC", "ETH"); the quote side is
      always USDT here so it is dropped.
    - A bare "USDT" stays "USDT".
    """
    s = (symbol or "").strip().upper()
    if not s:
        return ""
    m = _PAIR_RE.match(s)
    if m:
        return m.group(1)
    return s
