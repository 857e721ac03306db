from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import or_

from ..db.session import get_session
from ..errors import ValidationFailed
from ..models.order import Order, OrderStatus, PaymentStatus
from ..models.user import User
from ..utils.clock import utcnow

PERIODS = ("week", "month", "year")
GROUP_BY = ("day", "week", "month")


def period_start(period: str, now: datetime) -> datetime:
    if period == "month":
        return datetime(now.year, now.month, 1)
    if period == "year":
        return datetime(now.year, 1, 1)
    return datetime.combine(now.date() - timedelta(days=7), time.min)


def period_key(value: datetime, group_by: str) -> str:
    if group_by == "week":
        iso_year, iso_week, _ = value.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if group_by == "month":
        return f"{value.year}-{value.month:02d}"
    return value.date().isoformat()


def _customer_name(user: Optional[User]) -> str:
    if user is None:
        return "Unknown"
    return " ".join(p for p in (user.name, user.last_name) if p) or "Unknown"


def _top_products(orders: Iterable[Order], limit: int = 10) -> List[Dict]:
    products: Dict[str, Dict] = {}
    for order in orders:
        for item in order.items or []:
            pid = item.get("product_id") or "unknown"
            entry = products.setdefault(pid, {"product_id": pid, "name": item.get("name"), "quantity": 0, "revenue": 0})
            entry["quantity"] += int(item.get("quantity") or 0)
            entry["revenue"] += int(item.get("price") or 0) * int(item.get("quantity") or 0)
    return sorted(products.values(), key=lambda p: p["revenue"], reverse=True)[:limit]


def _top_customers(rows, limit: int = 10) -> List[Dict]:
    customers: Dict[str, Dict] = {}
    for order, user in rows:
        entry = customers.setdefault(
            order.user_id,
            {
                "user_id": order.user_id,
                "name": _customer_name(user),
                "phone": user.phone if user else None,
                "orders": 0,
                "revenue": 0,
            },
        )
        entry["orders"] += 1
        entry["revenue"] += order.total_amount
    return sorted(customers.values(), key=lambda c: c["revenue"], reverse=True)[:limit]


def _recent(rows, limit: int) -> List[Dict]:
    return [
        {
            "id": order.id,
            "date": order.created_at.isoformat() if order.created_at else None,
            "customer": _customer_name(user),
            "items": [
                {"name": i.get("name"), "quantity": i.get("quantity"), "price": i.get("price")}
                for i in order.items or []
            ],
            "total": order.total_amount,
            "status": order.status,
        }
        for order, user in rows[:limit]
    ]


def _buckets(rows, group_by: str) -> List[Dict]:
    buckets: "OrderedDict[str, Dict]" = OrderedDict()
    for order, _ in rows:
        key = period_key(order.created_at, group_by)
        entry = buckets.setdefault(key, {"date": key, "revenue": 0, "orders": 0})
        entry["revenue"] += order.total_amount
        entry["orders"] += 1
    return sorted(buckets.values(), key=lambda b: b["date"])


class ReportService:
    """Admin sales statistics and financial reports over stored orders."""

    def __init__(self, audit=None, session_factory=get_session, clock: Callable[[], datetime] = utcnow):
        self._audit = audit
        self._session_factory = session_factory
        self._clock = clock

    def get_sales_statistics(self, period: str = "week") -> Dict:
        if period not in PERIODS:
            raise ValidationFailed({"period": f"must be one of {', '.join(PERIODS)}"})
        start = period_start(period, self._clock())
        with self._session_factory() as session:
            rows = (
                session.query(Order, User)
                .outerjoin(User, User.id == Order.user_id)
                .filter(Order.created_at >= start, Order.status.in_(OrderStatus.FULFILLED))
                .order_by(Order.created_at.desc())
                .all()
            )
            revenue = sum(o.total_amount for o, _ in rows)
            return {
                "period": period,
                "stats": {
                    "total_revenue": revenue,
                    "total_orders": len(rows),
                    "average_order_value": revenue / len(rows) if rows else 0,
                },
                "top_products": _top_products(o for o, _ in rows),
                "top_customers": _top_customers(rows),
                "daily_chart": _buckets(rows, "day"),
                "recent_orders": _recent(rows, 20),
            }

    def get_financial_report(
        self,
        *,
        actor_id: str,
        period: str = "month",
        start: Optional[date] = None,
        end: Optional[date] = None,
        group_by: str = "day",
    ) -> Dict:
        if group_by not in GROUP_BY:
            raise ValidationFailed({"group_by": f"must be one of {', '.join(GROUP_BY)}"})
        if start and end:
            range_start = datetime.combine(start, time.min)
            range_end = datetime.combine(end, time.max)
            if range_start > range_end:
                raise ValidationFailed({"start_date": "must not be after end_date"})
        else:
            if period not in PERIODS:
                raise ValidationFailed({"period": f"must be one of {', '.join(PERIODS)}"})
            range_end = self._clock()
            range_start = period_start(period, range_end)

        with self._session_factory() as session:
            in_range = (Order.created_at >= range_start, Order.created_at <= range_end)
            rows = (
                session.query(Order, User)
                .outerjoin(User, User.id == Order.user_id)
                .filter(
                    *in_range,
                    or_(Order.payment_status == PaymentStatus.PAID, Order.status.in_(OrderStatus.FULFILLED)),
                )
                .order_by(Order.created_at.asc())
                .all()
            )
            recent = (
                session.query(Order, User)
                .outerjoin(User, User.id == Order.user_id)
                .filter(*in_range)
                .order_by(Order.created_at.desc())
                .limit(10)
                .all()
            )

            revenue = sum(o.total_amount for o, _ in rows)
            by_status: Dict[str, Dict] = {}
            by_method: Dict[str, Dict] = {}
            for order, _ in rows:
                for bucket, key in ((by_status, order.status), (by_method, order.payment_method or "online")):
                    entry = bucket.setdefault(key, {"count": 0, "revenue": 0})
                    entry["count"] += 1
                    entry["revenue"] += order.total_amount

            report = {
                "period": {"start": range_start.isoformat(), "end": range_end.isoformat(), "group_by": group_by},
                "summary": {
                    "total_revenue": revenue,
                    "total_orders": len(rows),
                    "average_order_value": revenue / len(rows) if rows else 0,
                    "revenue_by_status": by_status,
                    "revenue_by_payment": by_method,
                },
                "revenue_by_period": _buckets(rows, group_by),
                "top_customers": _top_customers(rows),
                "top_products": _top_products(o for o, _ in rows),
                "recent_orders": _recent(recent, 10),
            }

        if self._audit is not None:
            self._audit.record(
                actor_id=actor_id,
                action="view",
                entity="system",
                description="Viewed financial report",
                metadata={"period": period, "start": report["period"]["start"], "end": report["period"]["end"]},
            )
        return report
