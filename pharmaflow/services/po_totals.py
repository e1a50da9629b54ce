"""
Purchase Order totals.

Line:  billable = quantity - foc
       base     = billable * unit_price
       total    = base - discount (percentage of base, or flat amount)

Order: sub_total  = sum of line totals
       discounted = sub_total - additional discount
       gst        = discounted * gst_rate (CGST/SGST halves, or IGST)
       shipping   = percentage of discounted, or flat amount
       grand      = discounted + gst + shipping

All money is Decimal, rounded half-up to 2 places.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pharmaflow.models.purchase import DiscountType, PurchaseOrder, PurchaseOrderItem, TaxType


TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


def money(value) -> Decimal:
    """Coerce to Decimal and round half-up to 2 places."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def apply_charge(base: Decimal, charge_type: Optional[str], value) -> Decimal:
    """Amount of a percentage-or-flat charge/discount against a base."""
    value = Decimal(str(value or 0))
    if charge_type == DiscountType.PERCENTAGE.value:
        return money(base * value / HUNDRED)
    return money(value)


class POTotals:
    """Computed totals of a purchase order."""
    def __init__(self):
        self.sub_total: Decimal = Decimal("0.00")
        self.product_level_discount: Decimal = Decimal("0.00")
        self.additional_discount: Decimal = Decimal("0.00")
        self.taxable_amount: Decimal = Decimal("0.00")
        self.cgst: Decimal = Decimal("0.00")
        self.sgst: Decimal = Decimal("0.00")
        self.igst: Decimal = Decimal("0.00")
        self.shipping: Decimal = Decimal("0.00")
        self.grand_total: Decimal = Decimal("0.00")

    @property
    def total_gst(self) -> Decimal:
        return self.cgst + self.sgst + self.igst

    def to_dict(self) -> dict:
        return {
            "sub_total": float(self.sub_total),
            "product_level_discount": float(self.product_level_discount),
            "additional_discount": float(self.additional_discount),
            "taxable_amount": float(self.taxable_amount),
            "cgst": float(self.cgst),
            "sgst": float(self.sgst),
            "igst": float(self.igst),
            "shipping": float(self.shipping),
            "grand_total": float(self.grand_total),
        }


def line_discount(item: PurchaseOrderItem) -> Decimal:
    base = money(Decimal(item.billable_qty) * Decimal(str(item.unit_price or 0)))
    return apply_charge(base, item.discount_type, item.discount)


def line_total(item: PurchaseOrderItem) -> Decimal:
    """Total cost of one line after its discount. FOC units are not billed."""
    base = money(Decimal(item.billable_qty) * Decimal(str(item.unit_price or 0)))
    return money(base - line_discount(item))


def calculate_totals(po: PurchaseOrder) -> POTotals:
    """
    Recalculate line and order totals and write them onto the PO.

    Returns the full breakdown, including the additional discount and
    shipping amounts which are not stored separately.
    """
    totals = POTotals()

    for item in po.items:
        item.total_cost = line_total(item)
        totals.sub_total += item.total_cost
        totals.product_level_discount += line_discount(item)

    totals.additional_discount = apply_charge(
        totals.sub_total, po.additional_discount_type, po.additional_discount_value
    )
    totals.taxable_amount = money(totals.sub_total - totals.additional_discount)

    gst_rate = Decimal(str(po.gst_rate if po.gst_rate is not None else 0))
    gst = money(totals.taxable_amount * gst_rate / HUNDRED)
    if po.tax_type == TaxType.CGST_SGST.value:
        totals.cgst = money(gst / 2)
        totals.sgst = money(gst - totals.cgst)
    else:
        totals.igst = gst

    totals.shipping = apply_charge(
        totals.taxable_amount, po.shipping_charge_type, po.shipping_charge_value
    )
    totals.grand_total = money(totals.taxable_amount + totals.total_gst + totals.shipping)

    po.sub_total = totals.sub_total
    po.product_level_discount = totals.product_level_discount
    po.cgst = totals.cgst
    po.sgst = totals.sgst
    po.igst = totals.igst
    po.grand_total = totals.grand_total
    return totals
