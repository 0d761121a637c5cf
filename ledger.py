"""
Order ledger

Derived money fields for orders (totalAmount, balanceAmount, paymentStatus),
payment application and per-customer aggregation.

Item ``price`` values are line totals. Quantity is carried for display and
never multiplies into a total.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from pymongo import ReturnDocument
from pymongo.collection import Collection

logger = logging.getLogger(__name__)

PENDING = "pending"
PARTIAL = "partial"
PAID = "paid"
OVERPAID = "overpaid"

NO_ORDERS = "no-orders"
CUSTOMER_SUMMARIES = (PAID, PARTIAL, PENDING, NO_ORDERS)


MAX_WRITE_ATTEMPTS = 3


class InvalidPaymentError(ValueError):
    def __init__(self, message: str = "Valid payment amount is required"):
        super().__init__(message)


class ConcurrentUpdateError(RuntimeError):
    def __init__(self, message: str = "Order was modified concurrently, please retry"):
        super().__init__(message)


class LedgerTotals(NamedTuple):
    total_amount: float
    balance_amount: float
    payment_status: str

    def as_document(self) -> Dict[str, Any]:
        return {
            "totalAmount": self.total_amount,
            "balanceAmount": self.balance_amount,
            "paymentStatus": self.payment_status,
        }


class CustomerSummary(NamedTuple):
    total_orders: int
    total_revenue: float
    total_paid: float
    outstanding_balance: float
    payment_summary: str

    def as_document(self) -> Dict[str, Any]:
        return {
            "totalOrders": self.total_orders,
            "totalRevenue": self.total_revenue,
            "totalPaid": self.total_paid,
            "outstandingBalance": self.outstanding_balance,
            "paymentSummary": self.payment_summary,
        }


def money(value: Optional[float]) -> float:
    """Round a currency amount to cents. ``None`` counts as zero."""
    return round(float(value or 0), 2) + 0.0


def whole_cents(value: float) -> bool:
    """True for finite amounts with no fraction of a cent."""
    if not math.isfinite(value):
        return False
    cents = value * 100
    return abs(cents - round(cents)) < 1e-6


def _line_amount(item: Any) -> float:
    if isinstance(item, Mapping):
        return float(item.get("price") or 0)
    return float(getattr(item, "price", 0) or 0)


def items_total(items: Iterable[Any]) -> float:
    return money(sum(_line_amount(it) for it in items))


def payment_status(total_amount: float, total_paid: float) -> str:
    total_paid = money(total_paid)
    balance = money(total_amount - total_paid)
    if total_paid == 0:
        return PENDING
    if balance < 0:
        return OVERPAID
    if balance == 0:
        return PAID
    return PARTIAL


def compute_totals(items: Iterable[Any], total_paid: float = 0.0) -> LedgerTotals:
    """Derive total, balance and status for an order.

    ``items`` may be dicts (stored documents) or objects with a ``price``
    attribute (request models). The balance is signed: a negative balance is
    customer credit.
    """
    total_amount = items_total(items)
    balance_amount = money(total_amount - money(total_paid))
    return LedgerTotals(total_amount, balance_amount, payment_status(total_amount, total_paid))


def validate_payment_amount(amount: Any) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidPaymentError()
    # NaN fails every comparison, so test for the valid range
    if not value > 0 or not whole_cents(value):
        raise InvalidPaymentError()
    return money(value)


def apply_payment(order: Dict[str, Any], amount: Any) -> Dict[str, Any]:
    """Return a copy of ``order`` with ``amount`` added to ``totalPaid``.

    Overpayment is allowed and yields an ``overpaid`` order with a negative
    balance. The input document is left untouched.
    """
    value = validate_payment_amount(amount)
    updated = dict(order)
    updated["totalPaid"] = money(money(order.get("totalPaid")) + value)
    updated.update(compute_totals(updated.get("items") or [], updated["totalPaid"]).as_document())
    return updated


def derived_fields(order: Mapping[str, Any]) -> Dict[str, Any]:
    fields = compute_totals(order.get("items") or [], order.get("totalPaid") or 0).as_document()
    fields["totalPaid"] = money(order.get("totalPaid"))
    return fields


# ------------------ Store-level operations ------------------

def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def record_payment(collection: Collection, order_id: Any, amount: Any,
                   attempts: int = MAX_WRITE_ATTEMPTS) -> Optional[Dict[str, Any]]:
    """Add a payment to a stored order in a single write.

    ``totalPaid`` and the derived fields are set together, guarded by
    ``revision``; a payment that lost the race is reapplied to the newer
    document. Returns the updated order, or ``None`` when no order has that
    id. Raises ``ConcurrentUpdateError`` when every attempt lost.
    """
    value = validate_payment_amount(amount)
    for _ in range(attempts):
        current = collection.find_one({"_id": order_id})
        if current is None:
            return None
        updated = apply_payment(current, value)
        fields = {k: updated[k] for k in ("totalPaid", "totalAmount", "balanceAmount", "paymentStatus")}
        doc = collection.find_one_and_update(
            {"_id": order_id, "revision": current.get("revision")},
            {"$set": {**fields, "updatedAt": _now()}, "$inc": {"revision": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            logger.info("Payment of %.2f recorded on order %s (status %s)", value, order_id, doc["paymentStatus"])
            return doc
        logger.warning("Order %s changed during payment, retrying", order_id)
    raise ConcurrentUpdateError()


# ------------------ Customer aggregation ------------------

def summary_status(total_revenue: float, outstanding_balance: float) -> str:
    if total_revenue == 0:
        return NO_ORDERS
    if outstanding_balance <= 0:
        return PAID
    if outstanding_balance == total_revenue:
        return PENDING
    return PARTIAL


def _summary(total_orders: int, revenue: float, paid: float, balance: float) -> CustomerSummary:
    revenue, paid, balance = money(revenue), money(paid), money(balance)
    return CustomerSummary(int(total_orders), revenue, paid, balance, summary_status(revenue, balance))


def aggregate_customer(orders: Iterable[Mapping[str, Any]]) -> CustomerSummary:
    """Aggregate a customer's orders in application code.

    Balances are summed signed, so credit on one order offsets what is owed on
    another.
    """
    count = 0
    revenue = paid = balance = 0.0
    for order in orders:
        count += 1
        revenue += float(order.get("totalAmount") or 0)
        paid += float(order.get("totalPaid") or 0)
        balance += float(order.get("balanceAmount") or 0)
    return _summary(count, revenue, paid, balance)


def customer_totals_pipeline() -> List[Dict[str, Any]]:
    """Aggregation pipeline over the order collection, one row per customer.

    The outstanding balance is revenue minus payments, the same signed sum the
    per-order balances add up to.
    """
    return [{
        "$group": {
            "_id": "$customerDetails.uniqueId",
            "totalOrders": {"$sum": 1},
            "totalRevenue": {"$sum": "$totalAmount"},
            "totalPaid": {"$sum": "$totalPaid"},
        }
    }]


def summarize_customers(customers: Iterable[Dict[str, Any]], rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Attach pipeline totals to customer documents.

    Customers without a row have no orders.
    """
    by_id = {row["_id"]: row for row in rows}
    out = []
    for cust in customers:
        row = by_id.get(cust.get("uniqueId"))
        if row is None:
            summary = _summary(0, 0, 0, 0)
        else:
            revenue, paid = money(row.get("totalRevenue")), money(row.get("totalPaid"))
            summary = _summary(row.get("totalOrders", 0), revenue, paid, revenue - paid)
        out.append({**cust, **summary.as_document()})
    return out


def customers_with_summary(customers: Collection, orders: Collection) -> List[Dict[str, Any]]:
    docs = list(customers.find({}).sort([("createdAt", -1), ("_id", -1)]))
    rows = list(orders.aggregate(customer_totals_pipeline()))
    return summarize_customers(docs, rows)


def overall_stats(customers: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    customers = list(customers)
    return {
        "totalCustomers": len(customers),
        "totalOrders": sum(c.get("totalOrders", 0) for c in customers),
        "totalRevenue": money(sum(c.get("totalRevenue", 0) for c in customers)),
        "totalOutstanding": money(sum(c.get("outstandingBalance", 0) for c in customers)),
        "totalPaid": money(sum(c.get("totalPaid", 0) for c in customers)),
    }


def expense_total(items: Iterable[Any]) -> float:
    """Total of an owner expense record: the sum of its line amounts."""
    return items_total(items)
