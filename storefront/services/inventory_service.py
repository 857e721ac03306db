from contextlib import contextmanager
from typing import Dict, Iterable

from sqlalchemy import select, update

from ..db.session import get_session
from ..errors import InsufficientStock, ProductNotFound
from ..models.product import Product
from .logging import log_event


class InventoryService:
    """Source of truth for product price and stock.

    Reservations are single conditional UPDATE statements, so concurrent
    callers can never jointly drive stock below zero. Methods accept an
    open session to join the caller's transaction; without one they run
    in their own.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    @contextmanager
    def _scope(self, session=None):
        if session is not None:
            yield session
            return
        with self._session_factory() as own:
            yield own

    def get_product(self, product_id: str, session=None) -> Dict:
        with self._scope(session) as s:
            row = s.execute(
                select(Product.id, Product.name, Product.price, Product.stock, Product.is_accessory).where(
                    Product.id == product_id, Product.is_active.is_(True)
                )
            ).first()
            if row is None:
                raise ProductNotFound(product_id)
            return {
                "id": row.id,
                "name": row.name,
                "price": int(row.price),
                "stock": int(row.stock),
                "is_accessory": bool(row.is_accessory),
            }

    def get_price(self, product_id: str, session=None) -> int:
        return self.get_product(product_id, session=session)["price"]

    def get_stock(self, product_id: str, session=None) -> int:
        return self.get_product(product_id, session=session)["stock"]

    def try_reserve(self, product_id: str, quantity: int, session=None) -> bool:
        """Decrement stock by ``quantity`` only if enough is left."""
        with self._scope(session) as s:
            result = s.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.is_active.is_(True),
                    Product.stock >= quantity,
                )
                .values(stock=Product.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def release(self, product_id: str, quantity: int, session=None) -> None:
        with self._scope(session) as s:
            s.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock=Product.stock + quantity)
                .execution_options(synchronize_session=False)
            )

    def reserve_items(self, items: Iterable[Dict], session) -> None:
        """Reserve every line or raise; the caller's rollback undoes partial work."""
        for item in items:
            if not self.try_reserve(item["product_id"], item["quantity"], session=session):
                # raises ProductNotFound when the product vanished or was deactivated
                available = self.get_stock(item["product_id"], session=session)
                raise InsufficientStock(item["product_id"], item["quantity"], available)

    def release_items(self, items: Iterable[Dict], session) -> None:
        for item in items:
            self.release(item["product_id"], item["quantity"], session=session)
            log_event("info", "inventory.released", product_id=item["product_id"], quantity=item["quantity"])
