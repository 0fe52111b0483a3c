"""
mealdrop.errors — Ledger Error Taxonomy
========================================

Every ledger operation either applies, reports that it was already applied,
or raises one of these.  Business-rule rejections are deterministic given
current state, so they are never retried.  :class:`StorageUnavailable` is the
only transient failure and is safe to retry because every operation is
idempotent or fully atomic.

Each class carries a stable ``code`` for clients and the HTTP status the API
adapter answers with.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger outcomes other than success."""

    code = "ledger_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None, **context) -> None:
        self.context = context
        super().__init__(message or self.code)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "detail": str(self),
            "retryable": self.retryable,
        }


# ---------------------------------------------------------------------------
# Deterministic business-rule rejections
# ---------------------------------------------------------------------------
class RejectedError(LedgerError):
    code = "rejected"
    status_code = 400


class InvalidAmount(RejectedError):
    code = "invalid_amount"


class InsufficientBalance(RejectedError):
    """``meals_available`` is lower than the requested spend."""

    code = "insufficient_balance"

    def __init__(self, user_id: str, requested: int, available: int) -> None:
        self.user_id = user_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"User {user_id}: requested {requested} meals, available {available}"
        )


class InsufficientCoins(RejectedError):
    code = "insufficient_coins"

    def __init__(self, user_id: str, cost: int, balance: int) -> None:
        self.user_id = user_id
        self.cost = cost
        self.balance = balance
        super().__init__(f"User {user_id}: coupon costs {cost} coins, balance {balance}")


class SoldOut(RejectedError):
    code = "sold_out"


class AlreadyClaimed(RejectedError):
    code = "already_claimed"
    status_code = 409


class AlreadyUsed(RejectedError):
    code = "already_used"
    status_code = 409


class DuplicateDrop(RejectedError):
    code = "duplicate_drop"
    status_code = 409


class SponsorshipInactive(RejectedError):
    code = "sponsorship_inactive"


class CouponInactive(RejectedError):
    code = "coupon_inactive"


class CouponExpired(RejectedError):
    code = "coupon_expired"


class AlreadyTeamMember(RejectedError):
    code = "already_team_member"
    status_code = 409


class NotTeamMember(RejectedError):
    code = "not_team_member"


class PaymentNotVerified(RejectedError):
    code = "payment_not_verified"
    status_code = 402


# ---------------------------------------------------------------------------
# Missing entities
# ---------------------------------------------------------------------------
class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404


class AccountNotFound(NotFoundError):
    code = "account_not_found"


class SponsorshipNotFound(NotFoundError):
    code = "sponsorship_not_found"


class CouponNotFound(NotFoundError):
    code = "coupon_not_found"


class TeamNotFound(NotFoundError):
    code = "team_not_found"


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------
class StorageUnavailable(LedgerError):
    """The store could not be reached or the transaction could not commit.

    Nothing was applied.  Callers may retry with the same reference ids.
    """

    code = "storage_unavailable"
    status_code = 503
    retryable = True
