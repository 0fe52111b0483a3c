"""
mealdrop.services.payments — Payment Verification Collaborator
===============================================================

Meal purchases are credited only for a payment the processor has confirmed.
The ledger talks to the processor through :class:`PaymentVerifier`; the
call happens *before* the ledger transaction opens so no row lock is held
across a network round-trip.

Neither verifier here contacts a processor.  A deployment that takes
purchases from clients must inject one that does.
"""

from __future__ import annotations

import logging
import re
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class PaymentVerifier(Protocol):
    def verify(self, payment_ref: str, amount_cents: int) -> bool:
        """Return True if *payment_ref* is a settled payment of *amount_cents*."""
        ...


# Processor ids look like "pi_3Nk…" / "ch_…" / "py_…".
_PAYMENT_REF_RE = re.compile(r"^(pi|ch|py)_[A-Za-z0-9]{8,}$")


class PaymentRefFormatVerifier:
    """Accepts references shaped like processor payment ids.

    Only safe when the processor webhook has already confirmed the payment
    and the caller is trusted to forward its id.  The amount is not checked.
    """

    def verify(self, payment_ref: str, amount_cents: int) -> bool:
        ok = bool(_PAYMENT_REF_RE.match(payment_ref or ""))
        if not ok:
            logger.warning("Rejected malformed payment reference %r", payment_ref)
        return ok


class RejectingPaymentVerifier:
    """Rejects every payment; the default until a real verifier is wired in."""

    def verify(self, payment_ref: str, amount_cents: int) -> bool:
        logger.warning(
            "No payment verifier configured; rejected %r (%d cents)",
            payment_ref, amount_cents,
        )
        return False
