import random
import string
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.utils import timezone

from marketplace.exceptions import ValidationError

ALNUM = string.ascii_uppercase + string.digits
PAISE_PER_RUPEE = 100


def generate_order_id(prefix="ORD"):
    ts = timezone.now().strftime("%m%d%H%M%S")  # 10 chars
    rand = "".join(random.choices(ALNUM, k=6))
    base = f"{prefix}{ts}{rand}"
    # Gateway receipts are limited to 20 alnum chars
    return base[-20:]


def generate_invoice_number():
    now = timezone.now()
    return f"INV-{now.strftime('%y%m')}-{''.join(random.choices(ALNUM, k=8))}"


def rupees_to_paise(amount) -> int:
    """Parse a rupee amount ("963", 963.5, Decimal) into integer paise.

    Values are rounded half-up to the nearest paisa; anything that is not
    a finite number raises ``ValidationError``.
    """
    if isinstance(amount, bool):
        raise ValidationError("Invalid amount value")
    try:
        value = Decimal(str(amount).strip())
        if not value.is_finite():
            raise ValidationError("Invalid amount value")
        # Values past the decimal context precision cannot be quantized
        paise = (value * PAISE_PER_RUPEE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError("Invalid amount value")
    return int(paise)


def paise_to_rupees(paise: int) -> Decimal:
    return (Decimal(int(paise)) / PAISE_PER_RUPEE).quantize(Decimal("0.01"))


def amount_str(paise: int) -> str:
    return format(paise_to_rupees(paise), "f")


def format_inr(paise: int) -> str:
    return f"₹{paise_to_rupees(paise):,}"
