"""Customer-facing order reads and cancellation."""

import logging
from dataclasses import replace
from typing import Callable, Optional

from .domain import Order, OrderPage, OrderStatus, ensure_transition
from .errors import InvalidTransition, NotFound
from .identity import Principal, require_customer, require_principal
from .repo import UnitOfWork, utcnow
from .review import validate_page

logger = logging.getLogger(__name__)


class OrderDesk:
    """Lets customers read their own orders and cancel unpaid ones."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self.uow_factory = uow_factory

    def get_order(self, principal: Optional[Principal], order_id: str) -> Order:
        """Return an order the caller may see.

        Customers get ``NotFound`` for orders of other customers so order
        ids cannot be probed.
        """
        p = require_principal(principal)
        with self.uow_factory() as uow:
            order = uow.orders.get(order_id)
        if order is None or (not p.is_admin and order.user_id != p.id):
            raise NotFound("order", order_id)
        return order

    def list_orders(self, principal: Optional[Principal], page: int = 1, page_size: int = 20) -> OrderPage:
        customer = require_customer(principal)
        validate_page(page, page_size)
        with self.uow_factory() as uow:
            count, orders = uow.orders.search(user_id=customer.id, page=page, page_size=page_size)
        return OrderPage(count=count, page=page, page_size=page_size, results=tuple(orders))

    def cancel(self, principal: Optional[Principal], order_id: str, notes: Optional[str] = None) -> Order:
        """Cancel a ``pending`` order.

        The owning customer or an administrator may cancel. Once a payment
        proof has been submitted the order can no longer be cancelled here.

        Raises:
            NotFound: Unknown order, or an order of another customer.
            InvalidTransition: The order is not ``pending``.
        """
        p = require_principal(principal)
        with self.uow_factory() as uow:
            order = uow.orders.get(order_id)
            if order is None or (not p.is_admin and order.user_id != p.id):
                raise NotFound("order", order_id)
            ensure_transition(order.status, OrderStatus.CANCELLED)
            # customers do not overwrite administrative notes
            set_notes = p.is_admin
            if not uow.orders.transition(
                order_id, order.status, OrderStatus.CANCELLED, notes=notes, set_notes=set_notes
            ):
                current = uow.orders.status_of(order_id) or order.status
                raise InvalidTransition(current.value, OrderStatus.CANCELLED.value)
            if p.is_admin:
                uow.audit.record(
                    p.id,
                    "CANCEL_ORDER",
                    "orders",
                    order_id,
                    old_data={"status": order.status.value},
                    new_data={"status": OrderStatus.CANCELLED.value, "admin_notes": notes},
                )
            uow.commit()
        logger.info(
            "order cancelled",
            extra={"order_id": order_id, "by": p.kind.value, "principal_id": p.id},
        )
        admin_notes = notes if p.is_admin else order.admin_notes
        return replace(order, status=OrderStatus.CANCELLED, admin_notes=admin_notes, updated_at=utcnow())
