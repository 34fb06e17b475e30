"""Payout approval state machine.

``pending`` is the only live state; ``approved`` and ``rejected`` are
terminal.  Every status change goes through ``assert_transition`` so no
handler compares status strings on its own.
"""
from django.db import models

from marketplace.exceptions import AlreadyResolved, MissingReference, ValidationError


class PayoutStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class PaymentMethod(models.TextChoices):
    MANUAL = "manual", "Manual"
    BANK_TRANSFER = "bank_transfer", "Bank transfer"
    UPI = "upi", "UPI"


TRANSITIONS = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.APPROVED, PayoutStatus.REJECTED}),
    PayoutStatus.APPROVED: frozenset(),
    PayoutStatus.REJECTED: frozenset(),
}

TERMINAL = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)

# Statuses whose requested amount is withheld from the available balance
RESERVING = frozenset({PayoutStatus.PENDING, PayoutStatus.APPROVED})


def clean_text(value, field: str) -> str:
    """Normalise a free-text field from a JSON body; numbers are taken as their digits."""
    if value is None:
        return ""
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text")
    return value.strip()


def can_transition(old: str, new: str) -> bool:
    return new in TRANSITIONS.get(old, frozenset())


def assert_transition(old: str, new: str) -> None:
    if old in TERMINAL:
        raise AlreadyResolved(f"Payout is already {old}")
    if not can_transition(old, new):
        raise ValidationError(f"Cannot move payout from {old} to {new}")


def clean_resolution(new: str, *, reference=None, reason=None) -> str:
    """Return the note a resolution must carry: the payment reference or the reason."""
    if new == PayoutStatus.APPROVED:
        value = clean_text(reference, "payment_reference")
        if not value:
            raise MissingReference()
        return value
    if new == PayoutStatus.REJECTED:
        value = clean_text(reason, "reason")
        if not value:
            raise ValidationError("Rejection reason is required")
        return value
    raise ValidationError(f"Unknown payout status: {new}")
