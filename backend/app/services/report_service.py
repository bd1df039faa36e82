# Overview: Read-only business reports over orders, rents, custody and cashboxes.

"""
Reports

Every report is a plain dict carrying `generated_at`. Reports scoped to
stock take `inventory_ids` (None = every inventory, [] = nothing) so routes
can pass the caller's accessible inventories straight through.

Money leaves this module as floats (money_out); sums are kept in Decimal.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Order, OrderItem, Payment, Rent, Cloth, Custody, Factory, Cashbox, CashboxTransaction, User, Branch,
)
from ..models.cashbox import TRANSACTION_EXPENSE
from ..models.clothes import CLOTH_STATUSES, CLOTH_STATUS_READY_FOR_RENT, CLOTH_STATUS_RENTED
from ..models.custody import CUSTODY_STATUSES, CUSTODY_STATUS_PENDING, CUSTODY_STATUS_FORFEITED, CUSTODY_TYPE_MONEY
from ..models.orders import (
    ITEM_TYPES, ITEM_TYPE_RENT, ITEM_TYPE_BUY, ITEM_TYPE_TAILORING,
    ORDER_STATUS_CANCELED, ORDER_CLOSED_STATUSES,
    PAYMENT_STATUS_PAID, PAYMENT_TYPE_FEE, RENT_STATUS_ACTIVE, STAGE_DELIVERED,
    FACTORY_STATUS_ACCEPTED, FACTORY_STATUS_REJECTED, FACTORY_STATUS_DELIVERED_TO_ATELIER, FACTORY_STATUS_CLOSED,
)
from ..validation import ServiceError, to_money, money_out
from . import cashbox_service
from app.time_utils import utcnow, today, to_utc_z, parse_iso_date


DEFAULT_RANGE_DAYS = 182
DEFAULT_LIMIT = 20
GROUP_BY = ("day", "week", "month")
AGING_BUCKETS = ((0, 30, "0-30"), (31, 60, "31-60"), (61, 90, "61-90"), (91, None, "90+"))
ZERO = Decimal("0.00")


class ReportError(ServiceError):
    """Raised when report arguments are invalid."""
    pass


def _parse_date(value: str | None, field: str) -> date | None:
    if not value:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ReportError("Invalid report parameters.", {field: [f"The {field} is not a valid date."]})


def date_range(start: str | None, end: str | None, *, default_days: int = DEFAULT_RANGE_DAYS) -> tuple[date, date]:
    """Inclusive [start, end]; defaults to the last `default_days` days."""
    end_d = _parse_date(end, "end_date") or today()
    start_d = _parse_date(start, "start_date") or end_d - timedelta(days=default_days)
    if start_d > end_d:
        raise ReportError("Invalid report parameters.", {"start_date": ["The start_date must be before end_date."]})
    return start_d, end_d


def _bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return datetime.combine(start, datetime.min.time()), datetime.combine(end + timedelta(days=1), datetime.min.time())


def _scoped(query, column, inventory_ids: list[int] | None):
    if inventory_ids is None:
        return query
    if not inventory_ids:
        return query.filter(db.false())
    return query.filter(column.in_(inventory_ids))


def _period(value: datetime, group_by: str) -> str:
    if group_by == "day":
        return value.strftime("%Y-%m-%d")
    if group_by == "week":
        year, week, _ = value.isocalendar()
        return f"{year}-W{week:02d}"
    return value.strftime("%Y-%m")


def _envelope(**data) -> dict:
    data["generated_at"] = to_utc_z(utcnow())
    return data


def _order_items(inventory_ids, item_type: str, start: date, end: date):
    lo, hi = _bounds(start, end)
    query = (
        db.session.query(OrderItem, Order)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            OrderItem.type == item_type,
            Order.status != ORDER_STATUS_CANCELED,
            Order.created_at >= lo,
            Order.created_at < hi,
        )
    )
    return _scoped(query, Order.inventory_id, inventory_ids)


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

def available_dresses(*, inventory_ids: list[int] | None, cloth_type_id: int | None = None) -> dict:
    query = _scoped(db.session.query(Cloth), Cloth.inventory_id, inventory_ids)
    if cloth_type_id:
        query = query.filter(Cloth.cloth_type_id == cloth_type_id)

    counts = {status: 0 for status in CLOTH_STATUSES}
    for status, count in query.with_entities(Cloth.status, func.count(Cloth.id)).group_by(Cloth.status):
        counts[status] = int(count)

    items = query.filter(Cloth.status == CLOTH_STATUS_READY_FOR_RENT).order_by(Cloth.code).all()
    return _envelope(
        by_status=counts,
        total_available=len(items),
        items=[c.to_dict() for c in items],
    )


def out_of_branch(*, inventory_ids: list[int] | None) -> dict:
    """Pieces currently with clients, with the rent that took them out."""
    query = (
        db.session.query(Rent)
        .join(Cloth, Cloth.id == Rent.cloth_id)
        .join(Order, Order.id == Rent.order_id)
        .filter(Rent.status == RENT_STATUS_ACTIVE, Cloth.status == CLOTH_STATUS_RENTED)
    )
    query = _scoped(query, Order.inventory_id, inventory_ids)

    latest: dict[int, Rent] = {}
    for rent in query.order_by(Rent.delivery_date.asc(), Rent.id.asc()):
        latest[rent.cloth_id] = rent

    rows = []
    for rent in latest.values():
        client = rent.order.client
        rows.append({
            "cloth": rent.cloth.to_dict(),
            "rent": rent.to_dict(),
            "order_id": rent.order_id,
            "client": {"id": client.id, "name": client.full_name} if client else None,
        })
    rows.sort(key=lambda r: r["rent"]["return_date"] or "")
    return _envelope(total=len(rows), items=rows)


def overdue_returns(*, inventory_ids: list[int] | None, days_overdue: int = 0) -> dict:
    cutoff = today() - timedelta(days=max(0, days_overdue))
    query = (
        db.session.query(Rent)
        .join(Order, Order.id == Rent.order_id)
        .filter(Rent.status == RENT_STATUS_ACTIVE, Rent.return_date < cutoff)
    )
    query = _scoped(query, Order.inventory_id, inventory_ids)

    rows = []
    for rent in query:
        client = rent.order.client
        phone = client.phones[0].phone if client and client.phones else None
        rows.append({
            "rent": rent.to_dict(),
            "cloth_code": rent.cloth.code if rent.cloth else None,
            "cloth_name": rent.cloth.name if rent.cloth else None,
            "order_id": rent.order_id,
            "client": {"id": client.id, "name": client.full_name, "phone": phone} if client else None,
            "days_late": (today() - rent.return_date).days,
        })
    rows.sort(key=lambda r: r["days_late"], reverse=True)
    return _envelope(total=len(rows), items=rows)


def _ranked(inventory_ids, item_type: str, start: date, end: date, limit: int) -> list[dict]:
    stats: dict[int, dict] = {}
    for item, _order in _order_items(inventory_ids, item_type, start, end):
        row = stats.setdefault(item.cloth_id, {
            "cloth_id": item.cloth_id,
            "cloth_code": item.cloth.code if item.cloth else None,
            "cloth_name": item.cloth.name if item.cloth else None,
            "count": 0,
            "revenue": ZERO,
        })
        row["count"] += item.quantity or 1
        row["revenue"] += to_money(item.line_total)

    ranked = sorted(stats.values(), key=lambda r: (-r["count"], -r["revenue"], r["cloth_id"]))[:limit]
    for row in ranked:
        row["revenue"] = money_out(row["revenue"])
    return ranked


def most_rented(*, inventory_ids: list[int] | None, start: str | None = None, end: str | None = None,
                limit: int = DEFAULT_LIMIT) -> dict:
    start_d, end_d = date_range(start, end)
    return _envelope(
        start_date=start_d.isoformat(),
        end_date=end_d.isoformat(),
        items=_ranked(inventory_ids, ITEM_TYPE_RENT, start_d, end_d, limit),
    )


def most_sold(*, inventory_ids: list[int] | None, start: str | None = None, end: str | None = None,
              limit: int = DEFAULT_LIMIT) -> dict:
    start_d, end_d = date_range(start, end)
    return _envelope(
        start_date=start_d.isoformat(),
        end_date=end_d.isoformat(),
        items=_ranked(inventory_ids, ITEM_TYPE_BUY, start_d, end_d, limit),
    )


# ---------------------------------------------------------------------------
# Profits
# ---------------------------------------------------------------------------

def _profits(inventory_ids, item_type: str, start: str | None, end: str | None, group_by: str) -> dict:
    if group_by not in GROUP_BY:
        raise ReportError("Invalid report parameters.", {"group_by": ["group_by must be day, week, or month"]})
    start_d, end_d = date_range(start, end)

    buckets: dict[str, dict] = defaultdict(lambda: {"orders": set(), "items": 0, "gross": ZERO, "net": ZERO})
    for item, order in _order_items(inventory_ids, item_type, start_d, end_d):
        bucket = buckets[_period(order.created_at, group_by)]
        quantity = item.quantity or 1
        bucket["orders"].add(order.id)
        bucket["items"] += quantity
        bucket["gross"] += to_money(item.price) * quantity
        bucket["net"] += to_money(item.line_total)

    breakdown = []
    total_gross = total_net = ZERO
    order_ids: set[int] = set()
    items = 0
    for period in sorted(buckets):
        b = buckets[period]
        total_gross += b["gross"]
        total_net += b["net"]
        order_ids |= b["orders"]
        items += b["items"]
        breakdown.append({
            "period": period,
            "orders_count": len(b["orders"]),
            "items_count": b["items"],
            "gross": money_out(b["gross"]),
            "discounts": money_out(b["gross"] - b["net"]),
            "net": money_out(b["net"]),
        })

    return _envelope(
        start_date=start_d.isoformat(),
        end_date=end_d.isoformat(),
        group_by=group_by,
        summary={
            "orders_count": len(order_ids),
            "items_count": items,
            "gross": money_out(total_gross),
            "discounts": money_out(total_gross - total_net),
            "net": money_out(total_net),
        },
        breakdown=breakdown,
    )


def rental_profits(*, inventory_ids: list[int] | None, start: str | None = None, end: str | None = None,
                   group_by: str = "month") -> dict:
    return _profits(inventory_ids, ITEM_TYPE_RENT, start, end, group_by)


def tailoring_profits(*, inventory_ids: list[int] | None, start: str | None = None, end: str | None = None,
                      group_by: str = "month") -> dict:
    return _profits(inventory_ids, ITEM_TYPE_TAILORING, start, end, group_by)


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------

def factory_evaluations(*, start: str | None = None, end: str | None = None, factory_ids: list[int] | None = None) -> dict:
    """
    Per factory, from its tailoring items: completions, average turnaround
    (accepted -> delivered to atelier), on-time rate against the expected
    date, rejections and the current open load.
    """
    start_d, end_d = date_range(start, end)
    lo, hi = _bounds(start_d, end_d)

    factories = db.session.query(Factory)
    if factory_ids is not None:
        factories = factories.filter(Factory.id.in_(factory_ids)) if factory_ids else factories.filter(db.false())

    rows = []
    for factory in factories.order_by(Factory.name):
        items = (
            db.session.query(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .filter(
                Order.assigned_factory_id == factory.id,
                OrderItem.type == ITEM_TYPE_TAILORING,
                Order.created_at >= lo,
                Order.created_at < hi,
            )
            .all()
        )
        completed = [
            i for i in items
            if i.factory_status in (FACTORY_STATUS_DELIVERED_TO_ATELIER, FACTORY_STATUS_CLOSED) and i.factory_delivered_at
        ]
        durations = [
            (i.factory_delivered_at - i.factory_accepted_at).total_seconds() / 86400
            for i in completed if i.factory_accepted_at
        ]
        with_deadline = [i for i in completed if i.factory_expected_delivery_date]
        on_time = [i for i in with_deadline if i.factory_delivered_at.date() <= i.factory_expected_delivery_date]
        open_orders = (
            db.session.query(func.count(Order.id))
            .filter(
                Order.assigned_factory_id == factory.id,
                Order.status.notin_(ORDER_CLOSED_STATUSES),
                db.or_(Order.tailoring_stage.is_(None), Order.tailoring_stage != STAGE_DELIVERED),
            )
            .scalar()
        )
        rows.append({
            "factory_id": factory.id,
            "factory_code": factory.factory_code,
            "factory_name": factory.name,
            "total_items": len(items),
            "accepted_items": len([i for i in items if i.factory_accepted_at or i.factory_status == FACTORY_STATUS_ACCEPTED]),
            "rejected_items": len([i for i in items if i.factory_status == FACTORY_STATUS_REJECTED]),
            "completed_items": len(completed),
            "average_completion_days": round(sum(durations) / len(durations), 2) if durations else None,
            "on_time_rate": round(100.0 * len(on_time) / len(with_deadline), 2) if with_deadline else None,
            "current_open_orders": int(open_orders or 0),
            "max_capacity": factory.max_capacity,
        })

    return _envelope(start_date=start_d.isoformat(), end_date=end_d.isoformat(), factories=rows)


def employee_orders(*, inventory_ids: list[int] | None, start: str | None = None, end: str | None = None) -> dict:
    """Orders created and payments collected per user."""
    start_d, end_d = date_range(start, end)
    lo, hi = _bounds(start_d, end_d)

    stats: dict[int, dict] = defaultdict(lambda: {"orders_count": 0, "orders_total": ZERO,
                                                  "payments_count": 0, "payments_total": ZERO})

    orders = _scoped(
        db.session.query(Order).filter(
            Order.created_by_user_id.isnot(None),
            Order.status != ORDER_STATUS_CANCELED,
            Order.created_at >= lo,
            Order.created_at < hi,
        ),
        Order.inventory_id, inventory_ids,
    )
    for order in orders:
        row = stats[order.created_by_user_id]
        row["orders_count"] += 1
        row["orders_total"] += to_money(order.total_price)

    payments = _scoped(
        db.session.query(Payment).join(Order, Order.id == Payment.order_id).filter(
            Payment.created_by_user_id.isnot(None),
            Payment.status == PAYMENT_STATUS_PAID,
            Payment.created_at >= lo,
            Payment.created_at < hi,
        ),
        Order.inventory_id, inventory_ids,
    )
    for payment in payments:
        row = stats[payment.created_by_user_id]
        row["payments_count"] += 1
        row["payments_total"] += to_money(payment.amount)

    users = {u.id: u for u in db.session.query(User).filter(User.id.in_(list(stats)))} if stats else {}
    rows = []
    for user_id, row in stats.items():
        user = users.get(user_id)
        rows.append({
            "user_id": user_id,
            "name": user.name if user else None,
            "orders_count": row["orders_count"],
            "orders_total": money_out(row["orders_total"]),
            "payments_count": row["payments_count"],
            "payments_total": money_out(row["payments_total"]),
        })
    rows.sort(key=lambda r: (-r["orders_count"], -r["payments_total"], r["user_id"]))
    return _envelope(start_date=start_d.isoformat(), end_date=end_d.isoformat(), employees=rows)


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

def _cashboxes(branch_ids: list[int] | None, branch_id: int | None):
    query = db.session.query(Cashbox)
    if branch_ids is not None:
        query = query.filter(Cashbox.branch_id.in_(branch_ids)) if branch_ids else query.filter(db.false())
    if branch_id:
        query = query.filter(Cashbox.branch_id == branch_id)
    return query.order_by(Cashbox.id).all()


def daily_cashbox(*, day: str | None = None, branch_id: int | None = None,
                  branch_ids: list[int] | None = None) -> dict:
    day_d = _parse_date(day, "date") or today()
    summaries = []
    for cashbox in _cashboxes(branch_ids, branch_id):
        summary = cashbox_service.daily_summary(cashbox.id, day_d)
        summary["branch_id"] = cashbox.branch_id
        summary["cashbox_name"] = cashbox.name
        summaries.append(summary)

    totals = {
        key: money_out(sum((to_money(s[key]) for s in summaries), ZERO))
        for key in ("total_income", "total_expense", "net_change")
    }
    return _envelope(date=day_d.isoformat(), cashboxes=summaries, totals=totals)


def _expense_rows(lo: datetime, hi: datetime, branch_ids: list[int] | None, branch_id: int | None):
    query = (
        db.session.query(CashboxTransaction, Cashbox)
        .join(Cashbox, Cashbox.id == CashboxTransaction.cashbox_id)
        .filter(
            CashboxTransaction.type == TRANSACTION_EXPENSE,
            CashboxTransaction.is_reversed.is_(False),
            CashboxTransaction.created_at >= lo,
            CashboxTransaction.created_at < hi,
        )
    )
    if branch_ids is not None:
        query = query.filter(Cashbox.branch_id.in_(branch_ids)) if branch_ids else query.filter(db.false())
    if branch_id:
        query = query.filter(Cashbox.branch_id == branch_id)
    return query.all()


def monthly_financial(*, year: int | None = None, month: int | None = None, inventory_ids: list[int] | None,
                      branch_ids: list[int] | None = None) -> dict:
    now = today()
    year = year or now.year
    month = month or now.month
    if not 1 <= month <= 12:
        raise ReportError("Invalid report parameters.", {"month": ["The month must be between 1 and 12."]})

    first = date(year, month, 1)
    last = (date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)) - timedelta(days=1)
    lo, hi = _bounds(first, last)

    revenue = {item_type: ZERO for item_type in ITEM_TYPES}
    for item_type in ITEM_TYPES:
        for item, _order in _order_items(inventory_ids, item_type, first, last):
            revenue[item_type] += to_money(item.line_total)

    payments = _scoped(
        db.session.query(Payment).join(Order, Order.id == Payment.order_id).filter(
            Payment.status == PAYMENT_STATUS_PAID,
            Payment.created_at >= lo,
            Payment.created_at < hi,
        ),
        Order.inventory_id, inventory_ids,
    ).all()
    received = sum((to_money(p.amount) for p in payments if p.payment_type != PAYMENT_TYPE_FEE), ZERO)
    fees = sum((to_money(p.amount) for p in payments if p.payment_type == PAYMENT_TYPE_FEE), ZERO)

    forfeited = _scoped(
        db.session.query(Custody).join(Order, Order.id == Custody.order_id).filter(
            Custody.status == CUSTODY_STATUS_FORFEITED,
            Custody.type == CUSTODY_TYPE_MONEY,
            Custody.returned_at >= lo,
            Custody.returned_at < hi,
        ),
        Order.inventory_id, inventory_ids,
    ).all()
    forfeited_total = sum((to_money(c.value) for c in forfeited if c.value is not None), ZERO)

    expenses_by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for tx, _cashbox in _expense_rows(lo, hi, branch_ids, None):
        expenses_by_category[tx.category] += to_money(tx.amount)
    expenses_total = sum(expenses_by_category.values(), ZERO)

    revenue_total = sum(revenue.values(), ZERO)
    inflow = received + fees + forfeited_total
    return _envelope(
        year=year,
        month=month,
        revenue={**{k: money_out(v) for k, v in revenue.items()}, "total": money_out(revenue_total)},
        payments_received=money_out(received),
        fees_received=money_out(fees),
        custody_forfeited=money_out(forfeited_total),
        expenses={
            "by_category": {k: money_out(v) for k, v in sorted(expenses_by_category.items())},
            "total": money_out(expenses_total),
        },
        cashflow={
            "inflow": money_out(inflow),
            "outflow": money_out(expenses_total),
            "net": money_out(inflow - expenses_total),
        },
    )


def expenses(*, start: str | None = None, end: str | None = None, branch_id: int | None = None,
             branch_ids: list[int] | None = None) -> dict:
    start_d, end_d = date_range(start, end, default_days=30)
    lo, hi = _bounds(start_d, end_d)

    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_branch: dict[int, Decimal] = defaultdict(lambda: ZERO)
    items = []
    for tx, cashbox in _expense_rows(lo, hi, branch_ids, branch_id):
        amount = to_money(tx.amount)
        by_category[tx.category] += amount
        by_branch[cashbox.branch_id] += amount
        data = tx.to_dict()
        data["branch_id"] = cashbox.branch_id
        items.append(data)

    branches = {b.id: b.name for b in db.session.query(Branch).filter(Branch.id.in_(list(by_branch)))} if by_branch else {}
    return _envelope(
        start_date=start_d.isoformat(),
        end_date=end_d.isoformat(),
        total=money_out(sum(by_category.values(), ZERO)),
        by_category={k: money_out(v) for k, v in sorted(by_category.items())},
        by_branch=[
            {"branch_id": bid, "branch_name": branches.get(bid), "total": money_out(v)}
            for bid, v in sorted(by_branch.items())
        ],
        items=items,
    )


def deposits(*, inventory_ids: list[int] | None, status: str | None = None) -> dict:
    query = _scoped(
        db.session.query(Custody).join(Order, Order.id == Custody.order_id),
        Order.inventory_id, inventory_ids,
    )
    all_rows = query.all()

    by_status = {s: {"count": 0, "value": ZERO} for s in CUSTODY_STATUSES}
    for custody in all_rows:
        bucket = by_status[custody.status]
        bucket["count"] += 1
        if custody.type == CUSTODY_TYPE_MONEY and custody.value is not None:
            bucket["value"] += to_money(custody.value)

    held = [c for c in all_rows if c.status == CUSTODY_STATUS_PENDING]
    listed = [c for c in all_rows if c.status == status] if status else held
    return _envelope(
        by_status={s: {"count": b["count"], "value": money_out(b["value"])} for s, b in by_status.items()},
        held_money=money_out(sum(
            (to_money(c.value) for c in held if c.type == CUSTODY_TYPE_MONEY and c.value is not None), ZERO,
        )),
        items=[{
            "id": c.id,
            "order_id": c.order_id,
            "type": c.type,
            "description": c.description,
            "value": money_out(c.value) if c.value is not None else None,
            "status": c.status,
            "created_at": to_utc_z(c.created_at),
        } for c in sorted(listed, key=lambda c: c.id)],
    )


def debts(*, inventory_ids: list[int] | None, limit: int = DEFAULT_LIMIT) -> dict:
    query = _scoped(
        db.session.query(Order).filter(Order.remaining > 0, Order.status != ORDER_STATUS_CANCELED),
        Order.inventory_id, inventory_ids,
    )
    orders = query.order_by(Order.created_at.asc(), Order.id.asc()).all()

    aging = {label: {"count": 0, "amount": ZERO} for _lo, _hi, label in AGING_BUCKETS}
    per_client: dict[int, dict] = {}
    rows = []
    for order in orders:
        remaining = to_money(order.remaining)
        age = (today() - order.created_at.date()).days if order.created_at else 0
        for lo_days, hi_days, label in AGING_BUCKETS:
            if age >= lo_days and (hi_days is None or age <= hi_days):
                aging[label]["count"] += 1
                aging[label]["amount"] += remaining
                break

        client = order.client
        debtor = per_client.setdefault(order.client_id, {
            "client_id": order.client_id,
            "client_name": client.full_name if client else None,
            "orders_count": 0,
            "remaining": ZERO,
        })
        debtor["orders_count"] += 1
        debtor["remaining"] += remaining

        rows.append({
            "order_id": order.id,
            "client_id": order.client_id,
            "status": order.status,
            "total_price": money_out(order.total_price),
            "paid": money_out(order.paid),
            "remaining": money_out(remaining),
            "age_days": age,
            "created_at": to_utc_z(order.created_at),
        })

    top = sorted(per_client.values(), key=lambda d: (-d["remaining"], d["client_id"]))[:limit]
    total = sum((to_money(o.remaining) for o in orders), ZERO)
    return _envelope(
        total_remaining=money_out(total),
        orders_count=len(orders),
        aging={label: {"count": b["count"], "amount": money_out(b["amount"])} for label, b in aging.items()},
        top_debtors=[{**d, "remaining": money_out(d["remaining"])} for d in top],
        orders=rows,
    )
