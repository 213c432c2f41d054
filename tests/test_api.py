from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import main
from app.config import settings
from app.core.errors import StoreUnavailable
from app.core.scheduler import ResolutionScheduler
from app.database.repo import Repo
from app.database.session import session_scope
from app.utils.time import now_ms


ADMIN = {"X-User-Email": "admin@example.com"}


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(settings, "START_SCHEDULER", False)
    monkeypatch.setattr(settings, "ADMIN_IDENTITIES", "admin@example.com")
    with TestClient(main.app) as c:
        with session_scope() as s:
            repo = Repo(s)
            repo.accounts.create("a1", balance=Decimal("10000.00"), username="alice")
            repo.accounts.create("a2", balance=Decimal("50.00"), username="bob")
        yield c


def _payload(**kw) -> dict:
    body = {
        "account_id": "a1",
        "asset_id": "bitcoin",
        "asset_name": "Bitcoin",
        "asset_symbol": "BTC",
        "direction": "up",
        "amount_wagered": "1000.00",
        "entry_price": "30000",
        "delivery_deadline_ms": now_ms() + 60_000,
    }
    body.update(kw)
    return body


def _balance(c: TestClient, account_id: str) -> Decimal:
    r = c.get(f"/api/accounts/{account_id}")
    assert r.status_code == 200
    return Decimal(r.json()["balance"])


def test_health(client) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["scheduler"] == "idle"


def test_create_trade_debits_and_returns_pending(client) -> None:
    r = client.post("/api/trades", json=_payload())
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "pending"
    assert body["outcome"] is None
    assert body["final_amount"] is None
    assert body["amount_wagered"] == "1000.00000000"
    assert _balance(client, "a1") == Decimal("9000.00")

    got = client.get(f"/api/trades/{body['trade_id']}")
    assert got.status_code == 200
    assert got.json()["asset_symbol"] == "BTC"


def test_legacy_camel_case_payload(client) -> None:
    r = client.post(
        "/api/trades",
        json={
            "userId": "a1",
            "cryptoId": "ethereum",
            "cryptoName": "Ethereum",
            "cryptoSymbol": "eth-usdt",
            "direction": "down",
            "amount": 25.5,
            "entryPrice": 2000,
            "deliveryTime": now_ms() + 60_000,
        },
    )
    assert r.status_code == 201
    assert r.json()["asset_symbol"] == "ETH"
    assert r.json()["amount_wagered"] == "25.50000000"


def test_insufficient_balance(client) -> None:
    r = client.post("/api/trades", json=_payload(account_id="a2", amount_wagered="100.00"))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INSUFFICIENT_BALANCE"
    assert _balance(client, "a2") == Decimal("50.00")
    assert client.get("/api/trades", params={"account_id": "a2"}).json() == []


def test_unknown_account(client) -> None:
    r = client.post("/api/trades", json=_payload(account_id="ghost"))
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "ACCOUNT_NOT_FOUND"
    assert client.get("/api/accounts/ghost").status_code == 404


@pytest.mark.parametrize(
    "changes",
    [
        {"direction": "sideways"},
        {"amount_wagered": "-1"},
        {"amount_wagered": "abc"},
        {"delivery_deadline_ms": 1},
        {"delivery_deadline_ms": None},
        {"delivery_deadline_ms": 2**70},
        {"delivery_deadline_ms": "1999999999999.5"},
        {"amount_wagered": "1e25"},
        {"entry_price": "1e25"},
        {"entry_price": "0"},
        {"entry_price": 0},
    ],
)
def test_invalid_payload(client, changes) -> None:
    r = client.post("/api/trades", json=_payload(**changes))
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_INPUT"
    assert _balance(client, "a1") == Decimal("10000.00")


def test_missing_entry_price_uses_asset_price(client) -> None:
    with session_scope() as s:
        Repo(s).assets.upsert("ethereum", "Ethereum", "ETH", Decimal("2500"))

    body = _payload(asset_id="ethereum", asset_name=None, asset_symbol=None, entry_price=None)
    r = client.post("/api/trades", json=body)
    assert r.status_code == 201
    assert r.json()["asset_name"] == "Ethereum"
    assert r.json()["entry_price"] == "2500.00000000"

    r = client.post("/api/trades", json=_payload(entry_price=None))
    assert r.status_code == 201
    assert r.json()["entry_price"] == "30000.00000000"


def test_batch_is_atomic(client) -> None:
    deadline = now_ms() + 60_000
    item = {
        "asset_id": "bitcoin",
        "asset_name": "Bitcoin",
        "asset_symbol": "BTC",
        "direction": "up",
        "entry_price": "30000",
        "delivery_deadline_ms": deadline,
    }
    too_much = {"account_id": "a1", "trades": [{**item, "amount_wagered": "6000"}, {**item, "amount_wagered": "6000"}]}
    r = client.post("/api/trades/batch", json=too_much)
    assert r.status_code == 400
    assert _balance(client, "a1") == Decimal("10000.00")

    ok = {"account_id": "a1", "trades": [{**item, "amount_wagered": "100"}, {**item, "amount_wagered": "200"}]}
    r = client.post("/api/trades/batch", json=ok)
    assert r.status_code == 201
    assert len(r.json()["trades"]) == 2
    assert _balance(client, "a1") == Decimal("9700.00")

    assert client.post("/api/trades/batch", json={"account_id": "a1", "trades": []}).status_code == 400


def test_admin_routes_require_admin_identity(client) -> None:
    assert client.post("/admin/trades/resolve").status_code == 403
    assert client.post("/admin/trades/resolve", headers={"X-User-Email": "someone@example.com"}).status_code == 403
    assert client.get("/admin/scheduler").status_code == 403
    assert client.get("/admin/settlement/events").status_code == 403

    r = client.get("/admin/scheduler", headers={"X-User-Email": "ADMIN@example.com"})
    assert r.status_code == 200
    assert r.json()["state"] == "idle"
    assert r.json()["started"] is False


def test_admin_resolve_settles_due_trades(client) -> None:
    created = client.post("/api/trades", json=_payload()).json()

    early = client.post("/admin/trades/resolve", headers=ADMIN)
    assert early.status_code == 200
    assert early.json()["resolved"] == 0

    r = client.post("/admin/trades/resolve", headers=ADMIN, json={"now_ms": created["delivery_deadline_ms"]})
    assert r.status_code == 200
    assert r.json()["resolved"] == 1

    t = client.get(f"/api/trades/{created['trade_id']}").json()
    assert t["status"] == "completed"
    assert t["outcome"] in ("win", "loss")
    final = Decimal(t["final_amount"])
    assert Decimal("950") <= final <= Decimal("1190")
    assert t["current_trade_value"] == t["final_amount"]
    assert _balance(client, "a1") == Decimal("9000.00") + final

    again = client.post("/admin/trades/resolve", headers=ADMIN, json={"now_ms": created["delivery_deadline_ms"]})
    assert again.json()["resolved"] == 0
    assert _balance(client, "a1") == Decimal("9000.00") + final


def test_skipped_credits_are_listed(client) -> None:
    created = client.post("/api/trades", json=_payload(amount_wagered="10.00")).json()
    with session_scope() as s:
        s.delete(Repo(s).accounts.get("a1"))

    r = client.post("/admin/trades/resolve", headers=ADMIN, json={"now_ms": created["delivery_deadline_ms"]})
    assert r.json()["uncredited"] == 1

    events = client.get("/admin/settlement/events", headers=ADMIN).json()
    assert [e["trade_id"] for e in events] == [created["trade_id"]]
    assert events[0]["payload"]["account_id"] == "a1"


def test_list_trades_newest_first(client) -> None:
    base = now_ms() + 60_000
    ids = [client.post("/api/trades", json=_payload(amount_wagered="1", delivery_deadline_ms=base + i)).json()["trade_id"] for i in range(3)]
    listed = client.get("/api/trades", params={"account_id": "a1"}).json()
    assert {t["trade_id"] for t in listed} == set(ids)
    created = [t["created_at_ms"] for t in listed]
    assert created == sorted(created, reverse=True)
    assert len(client.get("/api/trades", params={"account_id": "a1", "limit": 2}).json()) == 2
    assert client.get("/api/trades/nope").status_code == 404


def test_list_limit_must_be_positive(client) -> None:
    assert client.get("/api/trades", params={"account_id": "a1", "limit": 0}).status_code == 422
    assert client.get("/api/trades", params={"account_id": "a1", "limit": -1}).status_code == 422
    assert client.get("/admin/settlement/events", headers=ADMIN, params={"limit": 0}).status_code == 422


class _UnavailableEngine:
    def resolve_due_trades(self, now_ms=None):
        raise StoreUnavailable("due-trade query failed", error="database is locked")


def test_resolve_maps_store_failure_to_503(client, monkeypatch) -> None:
    monkeypatch.setattr(main.app.state, "scheduler", ResolutionScheduler(_UnavailableEngine(), interval_sec=60))
    r = client.post("/admin/trades/resolve", headers=ADMIN)
    assert r.status_code == 503
    assert r.json()["detail"]["code"] == "STORE_UNAVAILABLE"


@pytest.mark.parametrize(
    "raw, expected",
    [("", ""), ("/", ""), ("api", "/api"), ("/api/", "/api"), (" api/v1/ ", "/api/v1"), (None, "")],
)
def test_root_path(raw, expected) -> None:
    assert main._root_path(raw) == expected
