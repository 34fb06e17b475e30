"""Price, fee and tax arithmetic for checkout and payouts.

All amounts are integer paise.  Every percentage is applied once and
rounded half-up to a whole paisa; totals are sums of the rounded parts so
buyer and seller figures always agree.
"""
from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP

from marketplace.exceptions import ValidationError

from .utils import amount_str

BUYER_GST_PCT = Decimal("5")
PLATFORM_FEE_PCT = Decimal("2")
PAYOUT_COMMISSION_PCT = Decimal("10")
COMMISSION_GST_PCT = Decimal("18")


def percent_of(amount: int, pct) -> int:
    value = Decimal(int(amount)) * Decimal(pct) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceBreakdown:
    price: int
    discount_pct: Decimal
    price_after_discount: int
    gst: int
    platform_fee: int
    final_total: int

    @property
    def seller_amount(self) -> int:
        # Buyer GST is remitted by the seller, the platform keeps only its fee
        return self.final_total - self.platform_fee

    def as_dict(self) -> dict:
        data = asdict(self)
        data["discount_pct"] = str(self.discount_pct)
        for key in ("price", "price_after_discount", "gst", "platform_fee", "final_total"):
            data[key] = amount_str(data[key])
        data["seller_amount"] = amount_str(self.seller_amount)
        return data


@dataclass(frozen=True)
class PayoutBreakdown:
    requested_amount: int
    platform_commission: int
    gst_on_commission: int
    total_deductions: int
    net_payable_amount: int

    def as_dict(self) -> dict:
        return {
            "requestedAmount": amount_str(self.requested_amount),
            "platformCommission": amount_str(self.platform_commission),
            "gstOnCommission": amount_str(self.gst_on_commission),
            "totalDeductions": amount_str(self.total_deductions),
            "netPayableAmount": amount_str(self.net_payable_amount),
        }


def calculate_price(price: int, discount_pct=0) -> PriceBreakdown:
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise ValidationError("Price must be a non-negative amount in paise")
    try:
        discount = Decimal(str(discount_pct))
    except ArithmeticError:
        raise ValidationError("Invalid discount percentage")
    if not discount.is_finite() or discount < 0 or discount > 100:
        raise ValidationError("Discount must be between 0 and 100")

    after_discount = percent_of(price, Decimal(100) - discount)
    gst = percent_of(after_discount, BUYER_GST_PCT)
    platform_fee = percent_of(after_discount, PLATFORM_FEE_PCT)
    return PriceBreakdown(
        price=price,
        discount_pct=discount,
        price_after_discount=after_discount,
        gst=gst,
        platform_fee=platform_fee,
        final_total=after_discount + gst + platform_fee,
    )


def calculate_payout_breakdown(requested_amount: int) -> PayoutBreakdown:
    if isinstance(requested_amount, bool) or not isinstance(requested_amount, int) or requested_amount <= 0:
        raise ValidationError("Payout amount must be positive")
    commission = percent_of(requested_amount, PAYOUT_COMMISSION_PCT)
    # 18% GST applies to the commission only, not the gross amount
    gst = percent_of(commission, COMMISSION_GST_PCT)
    deductions = commission + gst
    return PayoutBreakdown(
        requested_amount=requested_amount,
        platform_commission=commission,
        gst_on_commission=gst,
        total_deductions=deductions,
        net_payable_amount=requested_amount - deductions,
    )


def invoice_gst(platform_fee: int) -> int:
    return percent_of(platform_fee, COMMISSION_GST_PCT)
