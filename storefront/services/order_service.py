from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import case, update

from ..db.session import get_session
from ..errors import (
    AlreadyPaid,
    Forbidden,
    InsufficientStock,
    OrderCancelled,
    OrderNotFound,
    ProductNotFound,
)
from ..models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from ..utils.clock import utcnow
from ..utils.dto import to_order_dto, to_payment_status_dto
from ..utils.pagination import normalize_paging, page_info
from .logging import log_event

GATEWAY_STATUS_OK = "OK"

SORT_OPTIONS = {
    "createdAt-desc": (Order.created_at.desc(),),
    "createdAt-asc": (Order.created_at.asc(),),
    "amount-asc": (Order.total_amount.asc(),),
    "amount-desc": (Order.total_amount.desc(),),
    "status": (Order.status.asc(), Order.created_at.desc()),
}


def on_payment_verified(session, *, order_id: str, authority: str, ref_id: Optional[str], now: datetime) -> bool:
    """The one transition coupling both status axes.

    payment -> paid, order pending -> confirmed, reference id and paid time
    recorded. Conditional on the order not being paid yet, so concurrent or
    repeated callbacks apply it at most once; returns whether it applied.
    """
    result = session.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_authority == authority,
            Order.payment_status != PaymentStatus.PAID,
        )
        .values(
            payment_status=PaymentStatus.PAID,
            status=case((Order.status == OrderStatus.PENDING, OrderStatus.CONFIRMED), else_=Order.status),
            payment_ref_id=ref_id,
            payment_method=PaymentMethod.ONLINE,
            paid_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class OrderService:
    """Cart validation, checkout and the payment state machine backed by DB.

    Stock is reserved eagerly when an order is created and handed back
    (exactly once) when the order is cancelled or its payment fails; a new
    payment attempt or leaving ``cancelled`` reserves it again.
    """

    def __init__(
        self,
        inventory,
        payment_gateway,
        audit=None,
        session_factory=get_session,
        *,
        callback_url: Callable[[str], str],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._inventory = inventory
        self._gateway = payment_gateway
        self._audit = audit
        self._session_factory = session_factory
        self._callback_url = callback_url
        self._clock = clock

    # -- cart -----------------------------------------------------------

    def validate_cart(self, items: List[Dict]) -> Dict:
        """Price the cart from the server's data; never writes."""
        validated = []
        total = 0
        with self._session_factory() as session:
            for item in items:
                product = self._inventory.get_product(item["product_id"], session=session)
                quantity = min(item["quantity"], product["stock"])
                line = {
                    "product_id": product["id"],
                    "name": product["name"],
                    "price": product["price"],
                    "requested_quantity": item["quantity"],
                    "quantity": quantity,
                    "in_stock": product["stock"] > 0,
                    "accessories": [],
                }
                for acc in item.get("accessories") or []:
                    try:
                        accessory = self._inventory.get_product(acc["accessory_id"], session=session)
                    except ProductNotFound:
                        continue
                    if not accessory["is_accessory"] or accessory["stock"] < acc["quantity"]:
                        continue
                    line["accessories"].append(
                        {
                            "accessory_id": accessory["id"],
                            "name": accessory["name"],
                            "price": accessory["price"],
                            "quantity": acc["quantity"],
                        }
                    )
                total += line["price"] * line["quantity"]
                total += sum(a["price"] * a["quantity"] for a in line["accessories"])
                validated.append(line)
        return {"items": validated, "total_price": total, "is_valid": True}

    # -- checkout -------------------------------------------------------

    def create_order(
        self,
        *,
        user_id: str,
        items: List[Dict],
        shipping_address: Dict,
        payment_method: str,
        notes: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict:
        """Reserve stock and persist a pending order in one transaction."""
        with self._session_factory() as session:
            # a repeated request id returns the order it already created
            if request_id:
                existing = session.query(Order).filter(Order.request_id == request_id).first()
                if existing:
                    if existing.user_id != user_id:
                        raise Forbidden("Request id belongs to another user's order")
                    return to_order_dto(existing)

            lines = []
            for item in items:
                product = self._inventory.get_product(item["product_id"], session=session)
                if product["stock"] < item["quantity"]:
                    raise InsufficientStock(product["id"], item["quantity"], product["stock"])
                lines.append(
                    {
                        "product_id": product["id"],
                        "name": product["name"],
                        "quantity": item["quantity"],
                        "price": product["price"],
                    }
                )
            # the read above only shapes the error; stock is taken here
            self._inventory.reserve_items(lines, session=session)

            now = self._clock()
            order = Order(
                id=str(uuid4()),
                user_id=user_id,
                items=lines,
                total_amount=sum(line["price"] * line["quantity"] for line in lines),
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                payment_method=payment_method,
                shipping_address=shipping_address,
                notes=notes,
                request_id=request_id,
                stock_reserved=True,
                created_at=now,
                updated_at=now,
            )
            session.add(order)
            session.flush()
            dto = to_order_dto(order)
        log_event("info", "order.created", order_id=dto["id"], items=len(lines), total=dto["total_amount"])
        return dto

    def _reserve_stock(self, session, order_id: str, items: List[Dict]) -> bool:
        flagged = session.execute(
            update(Order)
            .where(Order.id == order_id, Order.stock_reserved.is_(False))
            .values(stock_reserved=True)
            .execution_options(synchronize_session=False)
        )
        if flagged.rowcount != 1:
            return False
        self._inventory.reserve_items(items, session=session)
        return True

    def _try_reserve_stock(self, session, order_id: str, items: List[Dict]) -> bool:
        """Reserve inside a savepoint; a shortfall is logged, never raised."""
        try:
            with session.begin_nested():
                return self._reserve_stock(session, order_id, items)
        except (InsufficientStock, ProductNotFound) as exc:
            log_event("error", "inventory.oversold", order_id=order_id, error=str(exc))
            return False

    def _release_stock(self, session, order_id: str, items: List[Dict]) -> bool:
        flagged = session.execute(
            update(Order)
            .where(Order.id == order_id, Order.stock_reserved.is_(True))
            .values(stock_reserved=False)
            .execution_options(synchronize_session=False)
        )
        if flagged.rowcount != 1:
            return False
        self._inventory.release_items(items, session=session)
        return True

    # -- payment --------------------------------------------------------

    def create_payment_request(self, *, order_id: str, user_id: str) -> Dict:
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.user_id != user_id:
                raise Forbidden("You do not have access to this order")
            if order.payment_status == PaymentStatus.PAID:
                raise AlreadyPaid(order_id)
            if order.status == OrderStatus.CANCELLED:
                raise OrderCancelled(order_id)
            # a failed payment gave the stock back; take it again before charging
            self._reserve_stock(session, order_id, order.items)
            amount = order.total_amount

        request = self._gateway.create_request(
            amount=amount,
            description=f"Payment for order {order_id}",
            callback_url=self._callback_url(order_id),
            metadata={"order_id": order_id, "user_id": user_id},
        )

        with self._session_factory() as session:
            stored = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.payment_status != PaymentStatus.PAID)
                .values(payment_authority=request.authority, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if stored.rowcount != 1:
                raise AlreadyPaid(order_id)
        log_event("info", "payment.requested", order_id=order_id, authority=request.authority, amount=amount)
        return {"payment_url": request.redirect_url, "authority": request.authority}

    def verify_payment(self, *, authority: str, gateway_status: str) -> Dict:
        """Settle a gateway callback; safe to call any number of times."""
        with self._session_factory() as session:
            order = session.query(Order).filter(Order.payment_authority == authority).first()
            if order is None:
                log_event("warning", "payment.unknown_authority", authority=authority)
                raise OrderNotFound(authority)
            order_id = order.id
            items = list(order.items)
            amount = order.total_amount
            if order.payment_status == PaymentStatus.PAID:
                return {"outcome": "already_paid", "order_id": order_id, "ref_id": order.payment_ref_id}

        if gateway_status != GATEWAY_STATUS_OK:
            # user backed out at the gateway; the order stays payable
            log_event("info", "payment.cancelled", order_id=order_id, authority=authority)
            return {"outcome": "cancelled", "order_id": order_id, "ref_id": None}

        # expected amount comes from the order, never from the callback
        verification = self._gateway.verify(authority, amount)

        with self._session_factory() as session:
            if verification.success:
                applied = on_payment_verified(
                    session, order_id=order_id, authority=authority, ref_id=verification.ref_id, now=self._clock()
                )
                current = session.get(Order, order_id)
                if not applied:
                    return {"outcome": "already_paid", "order_id": order_id, "ref_id": current.payment_ref_id}
                if current.status == OrderStatus.CANCELLED:
                    # cancelled before the money arrived; nothing ships, so no stock is taken
                    log_event("error", "payment.refund_required", order_id=order_id, ref_id=verification.ref_id)
                else:
                    self._try_reserve_stock(session, order_id, items)
                log_event("info", "payment.verified", order_id=order_id, authority=authority, ref_id=verification.ref_id)
                return {"outcome": "paid", "order_id": order_id, "ref_id": verification.ref_id}

            failed = session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.payment_authority == authority,
                    Order.payment_status != PaymentStatus.PAID,
                )
                .values(payment_status=PaymentStatus.FAILED, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if failed.rowcount == 1:
                self._release_stock(session, order_id, items)
        log_event(
            "warning",
            "payment.failed",
            order_id=order_id,
            authority=authority,
            error_code=verification.error_code,
            error=verification.error_message,
        )
        return {
            "outcome": "failed",
            "order_id": order_id,
            "ref_id": None,
            "error_code": verification.error_code,
            "error": verification.error_message,
        }

    # -- admin ----------------------------------------------------------

    def update_order_status(
        self,
        *,
        order_id: str,
        new_status: str,
        actor_id: str,
        tracking_number: Optional[str] = None,
    ) -> Dict:
        with self._session_factory() as session:
            order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
            if order is None:
                raise OrderNotFound(order_id)
            old_status = order.status
            if new_status == OrderStatus.CANCELLED:
                self._release_stock(session, order_id, order.items)
            elif old_status == OrderStatus.CANCELLED:
                self._try_reserve_stock(session, order_id, order.items)
            order.status = new_status
            if tracking_number:
                order.tracking_number = tracking_number
            if new_status == OrderStatus.DELIVERED:
                order.delivered_at = self._clock()
            order.updated_at = self._clock()
            session.flush()
            dto = to_order_dto(order)

        log_event("info", "order.status_changed", order_id=order_id, old_status=old_status, new_status=new_status)
        if self._audit is not None:
            self._audit.record(
                actor_id=actor_id,
                action="order_status_change",
                entity="order",
                entity_id=order_id,
                description=f"Order {order_id} status changed to {new_status}",
                metadata={"order_id": order_id, "old_status": old_status, "new_status": new_status},
            )
        return dto

    # -- reads ----------------------------------------------------------

    def get_order(self, order_id: str, *, user_id: str, is_admin: bool = False) -> Dict:
        with self._session_factory() as session:
            q = session.query(Order).filter(Order.id == order_id)
            if not is_admin:
                q = q.filter(Order.user_id == user_id)
            order = q.first()
            if order is None:
                raise OrderNotFound(order_id)
            return to_order_dto(order)

    def get_payment_status(self, order_id: str, *, user_id: str) -> Dict:
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.user_id != user_id:
                raise Forbidden("You do not have access to this order")
            return to_payment_status_dto(order)

    def list_orders(
        self,
        *,
        user_id: str,
        is_admin: bool = False,
        owner_id: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        min_amount: Optional[int] = None,
        max_amount: Optional[int] = None,
        page: int = 1,
        limit: int = 10,
        sort: str = "createdAt-desc",
    ) -> Dict:
        p, ps = normalize_paging(page, limit)
        with self._session_factory() as session:
            q = session.query(Order)
            if not is_admin:
                q = q.filter(Order.user_id == user_id)
            elif owner_id:
                q = q.filter(Order.user_id == owner_id)
            if status:
                q = q.filter(Order.status == status)
            if date_from:
                q = q.filter(Order.created_at >= date_from)
            if date_to:
                q = q.filter(Order.created_at <= date_to)
            if min_amount is not None:
                q = q.filter(Order.total_amount >= min_amount)
            if max_amount is not None:
                q = q.filter(Order.total_amount <= max_amount)
            total = q.count()
            rows = (
                q.order_by(*SORT_OPTIONS.get(sort, SORT_OPTIONS["createdAt-desc"]))
                .offset((p - 1) * ps)
                .limit(ps)
                .all()
            )
            return {"orders": [to_order_dto(r) for r in rows], "pagination": page_info(p, ps, total)}
