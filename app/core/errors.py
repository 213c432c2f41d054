from __future__ import annotations


class SettlementError(Exception):
    """Base for caller-facing settlement errors."""

    code = "SETTLEMENT_ERROR"
    http_status = 500

    def __init__(self, message: str = "", **detail) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.detail}


class InvalidInput(SettlementError):
    code = "INVALID_INPUT"
    http_status = 400


class InsufficientBalance(SettlementError):
    # Retrying without new funds always fails again.
    code = "INSUFFICIENT_BALANCE"
    http_status = 400


class AccountNotFound(SettlementError):
    code = "ACCOUNT_NOT_FOUND"
    http_status = 404


class StoreUnavailable(SettlementError):
    code = "STORE_UNAVAILABLE"
    http_status = 503
