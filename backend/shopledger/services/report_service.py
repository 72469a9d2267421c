# Overview: Service-layer operations for point-of-sale reporting; read-only aggregates over in-store orders.

"""
Point-of-sale reporting.

Only IN_STORE orders count as till sales. Cancelled orders are excluded;
a sale whose mobile money confirmation is still outstanding is included. Days and hours are UTC, matching
every stored timestamp.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Order, OrderItem
from ..validation import require_choice
from shopledger.time_utils import parse_iso_datetime, to_utc_z, utcnow
from .order_state import OrderStatus
from .sale_service import SALE_PAYMENT_METHODS

TOP_PRODUCTS_LIMIT = 10


def parse_day(value: str | date | None) -> date:
    """YYYY-MM-DD; blank means today (UTC)."""
    if isinstance(value, date):
        return value
    if value is None or not str(value).strip():
        return utcnow().date()
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD", {"field": "date"})


def _parse_bound(value: str | None, field: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})


def _sale_filters(start: datetime | None, end: datetime | None, payment_method: str | None = None) -> list:
    filters = [Order.source == "IN_STORE", Order.status != OrderStatus.CANCELLED]
    if start:
        filters.append(Order.created_at >= start)
    if end:
        filters.append(Order.created_at < end)
    if payment_method:
        filters.append(Order.payment_method == payment_method)
    return filters


def _percentage(part: int, whole: int) -> float:
    return round(part * 100.0 / whole, 1) if whole else 0.0


def _by_payment_method(filters: list, total_sales_cents: int) -> list[dict]:
    rows = db.session.query(
        Order.payment_method,
        func.count(Order.id).label("count"),
        func.coalesce(func.sum(Order.total_cents), 0).label("amount_cents"),
    ).filter(*filters).group_by(Order.payment_method).all()
    found = {row.payment_method: row for row in rows}

    result = []
    for method in SALE_PAYMENT_METHODS:
        row = found.get(method)
        amount = int(row.amount_cents) if row else 0
        result.append({
            "method": method,
            "count": int(row.count) if row else 0,
            "amount_cents": amount,
            "percentage": _percentage(amount, total_sales_cents),
        })
    return result


def list_sales(
    *,
    start: str | None = None,
    end: str | None = None,
    payment_method: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Order], int, dict]:
    """
    Page through till sales, newest first.

    start is inclusive and end exclusive. The summary covers every matching
    sale, not only the returned page.
    """
    start_dt = _parse_bound(start, "start")
    end_dt = _parse_bound(end, "end")
    if payment_method:
        payment_method = require_choice(payment_method, "payment_method", SALE_PAYMENT_METHODS)
    filters = _sale_filters(start_dt, end_dt, payment_method)

    count, total_sales_cents = db.session.query(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_cents), 0),
    ).filter(*filters).one()
    count, total_sales_cents = int(count), int(total_sales_cents)

    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    sales = (
        db.session.query(Order)
        .filter(*filters)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    summary = {
        "total_sales_cents": total_sales_cents,
        "transaction_count": count,
        "average_transaction_cents": round(total_sales_cents / count) if count else 0,
        "payment_methods": _by_payment_method(filters, total_sales_cents),
    }
    return sales, count, summary


def daily_sales_report(day: str | date | None = None) -> dict:
    """
    One day of till activity.

    Returns:
        summary:         totals, average ticket, items sold
        sales_by_hour:   hours (0-23) that saw at least one sale
        payment_methods: CASH and MOBILE_MONEY, always both present
        top_products:    best sellers by quantity
    """
    report_day = parse_day(day)
    start = datetime(report_day.year, report_day.month, report_day.day)
    filters = _sale_filters(start, start + timedelta(days=1))

    rows = db.session.query(Order.created_at, Order.total_cents).filter(*filters).all()
    total_sales_cents = sum(row.total_cents for row in rows)
    count = len(rows)

    hours: dict[int, dict] = {}
    for row in rows:
        hour = row.created_at.hour
        bucket = hours.setdefault(hour, {"hour": hour, "sales_cents": 0, "transactions": 0})
        bucket["sales_cents"] += row.total_cents
        bucket["transactions"] += 1

    quantity = func.sum(OrderItem.quantity).label("quantity")
    product_rows = (
        db.session.query(
            OrderItem.variant_id,
            OrderItem.sku,
            OrderItem.product_name,
            quantity,
            func.sum(OrderItem.quantity * OrderItem.price_at_purchase_cents).label("revenue_cents"),
        )
        .join(Order, OrderItem.order_id == Order.id)
        .filter(*filters)
        .group_by(OrderItem.variant_id, OrderItem.sku, OrderItem.product_name)
        .order_by(quantity.desc(), OrderItem.sku.asc())
        .all()
    )
    items_sold = sum(int(row.quantity) for row in product_rows)

    return {
        "date": report_day.isoformat(),
        "generated_at": to_utc_z(utcnow()),
        "summary": {
            "total_sales_cents": total_sales_cents,
            "transaction_count": count,
            "average_transaction_cents": round(total_sales_cents / count) if count else 0,
            "items_sold": items_sold,
        },
        "sales_by_hour": [hours[h] for h in sorted(hours)],
        "payment_methods": _by_payment_method(filters, total_sales_cents),
        "top_products": [
            {
                "variant_id": row.variant_id,
                "sku": row.sku,
                "product_name": row.product_name,
                "quantity": int(row.quantity),
                "revenue_cents": int(row.revenue_cents),
            }
            for row in product_rows[:TOP_PRODUCTS_LIMIT]
        ],
    }
