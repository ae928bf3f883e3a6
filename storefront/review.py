"""Administrative review and fulfillment of paid orders.

``OrderReviewAuthority`` is the only component that approves or rejects an
order, and approval is the only place stock is committed. The decrement is a
conditional update per product inside the same transaction as the status
change: if any product cannot cover its frozen quantity the whole decision
rolls back, the order stays ``paid`` and ``StockConflict`` reports every
short product for manual resolution.

``OrderFulfillment`` carries approved orders through shipping and delivery.
"""

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Callable, Dict, Iterable, Optional

from .domain import (
    DashboardStats,
    Order,
    OrderItem,
    OrderPage,
    OrderStatus,
    ProofStatus,
    ensure_transition,
)
from .errors import InvalidTransition, StockConflict, StockShortfall, ValidationError
from .identity import Principal, require_admin, require_super_admin
from .repo import UnitOfWork, utcnow

logger = logging.getLogger(__name__)

REVENUE_STATUSES = (OrderStatus.APPROVED, OrderStatus.SHIPPED, OrderStatus.DELIVERED)
MAX_PAGE_SIZE = 100


def quantities_by_product(items: Iterable[OrderItem]) -> Dict[str, int]:
    """Aggregate frozen quantities per product, sorted by product id.

    Sorting keeps the lock order stable across concurrent approvals.
    """
    totals: Dict[str, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return OrderedDict(sorted(totals.items()))


def validate_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1", field="page")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}", field="page_size")


def _move(
    uow: UnitOfWork,
    order: Order,
    target: OrderStatus,
    notes: Optional[str],
) -> None:
    """Conditionally move ``order`` to ``target`` inside ``uow``.

    Raises:
        InvalidTransition: The transition is not allowed, or another writer
            changed the status since ``order`` was read.
    """
    ensure_transition(order.status, target)
    if not uow.orders.transition(order.id, order.status, target, notes=notes, set_notes=True):
        current = uow.orders.status_of(order.id) or order.status
        raise InvalidTransition(current.value, target.value)


class OrderReviewAuthority:
    """Approve or reject paid orders; read-only order administration.

    Args:
        uow_factory: Callable returning a fresh ``UnitOfWork``.
        decrement_stock_on_approve: Default stock policy for ``approve``.
        low_stock_threshold: Stock level below which a product counts as
            low stock on the dashboard.
        currency: Currency reported on the dashboard.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        decrement_stock_on_approve: bool = True,
        low_stock_threshold: int = 10,
        currency: str = "AOA",
    ):
        self.uow_factory = uow_factory
        self.decrement_stock_on_approve = decrement_stock_on_approve
        self.low_stock_threshold = low_stock_threshold
        self.currency = currency

    def approve(
        self,
        principal: Optional[Principal],
        order_id: str,
        notes: Optional[str] = None,
        decrement_stock: Optional[bool] = None,
    ) -> Order:
        """Approve a paid order and, per policy, commit its stock.

        Args:
            principal: Calling administrator.
            order_id: Order to approve.
            notes: Free-text rationale stored on the order.
            decrement_stock: Per-call override of the stock policy; only a
                super-admin may pass it.

        Returns:
            Order: The order in ``approved`` status.

        Raises:
            Unauthorized: Caller is not an admin, or an ordinary admin tried
                to override the stock policy.
            NotFound: Unknown order.
            InvalidTransition: Order is not ``paid``.
            StockConflict: A product cannot cover its frozen quantity; the
                order stays ``paid`` and no stock changes.
        """
        admin = require_admin(principal)
        if decrement_stock is not None:
            require_super_admin(admin)
        commit_stock = self.decrement_stock_on_approve if decrement_stock is None else decrement_stock

        with self.uow_factory() as uow:
            order = uow.orders.require(order_id)
            _move(uow, order, OrderStatus.APPROVED, notes)

            if commit_stock:
                shortfalls = []
                for product_id, qty in quantities_by_product(order.items).items():
                    if not uow.products.decrement(product_id, qty):
                        shortfalls.append(StockShortfall(product_id, qty, uow.products.stock_of(product_id)))
                if shortfalls:
                    logger.warning(
                        "approval stock conflict",
                        extra={"order_id": order_id, "admin_id": admin.id, "products": [s.as_dict() for s in shortfalls]},
                    )
                    raise StockConflict(order_id, shortfalls)

            uow.proofs.review(order_id, ProofStatus.APPROVED, notes)
            uow.audit.record(
                admin.id,
                "APPROVE_ORDER",
                "orders",
                order_id,
                old_data={"status": order.status.value},
                new_data={"status": OrderStatus.APPROVED.value, "admin_notes": notes, "stock_committed": commit_stock},
            )
            uow.commit()

        logger.info(
            "order approved",
            extra={"order_id": order_id, "admin_id": admin.id, "stock_committed": commit_stock},
        )
        return replace(order, status=OrderStatus.APPROVED, admin_notes=notes, updated_at=utcnow())

    def reject(self, principal: Optional[Principal], order_id: str, notes: Optional[str] = None) -> Order:
        """Reject a paid order. Stock is never touched."""
        admin = require_admin(principal)
        with self.uow_factory() as uow:
            order = uow.orders.require(order_id)
            _move(uow, order, OrderStatus.REJECTED, notes)
            uow.proofs.review(order_id, ProofStatus.REJECTED, notes)
            uow.audit.record(
                admin.id,
                "REJECT_ORDER",
                "orders",
                order_id,
                old_data={"status": order.status.value},
                new_data={"status": OrderStatus.REJECTED.value, "admin_notes": notes},
            )
            uow.commit()
        logger.info("order rejected", extra={"order_id": order_id, "admin_id": admin.id})
        return replace(order, status=OrderStatus.REJECTED, admin_notes=notes, updated_at=utcnow())

    def get_order(self, principal: Optional[Principal], order_id: str) -> Order:
        require_admin(principal)
        with self.uow_factory() as uow:
            return uow.orders.require(order_id)

    def list_orders(
        self,
        principal: Optional[Principal],
        status: Optional[OrderStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> OrderPage:
        """List orders newest first, optionally filtered by status."""
        require_admin(principal)
        validate_page(page, page_size)
        with self.uow_factory() as uow:
            count, orders = uow.orders.search(status=status, page=page, page_size=page_size)
        return OrderPage(count=count, page=page, page_size=page_size, results=tuple(orders))

    def dashboard(self, principal: Optional[Principal]) -> DashboardStats:
        require_admin(principal)
        with self.uow_factory() as uow:
            by_status = {s.value: 0 for s in OrderStatus}
            by_status.update(uow.orders.count_by_status())
            revenue = uow.orders.revenue(REVENUE_STATUSES)
            products = uow.products.count()
            low = uow.products.count_low_stock(self.low_stock_threshold)
        return DashboardStats(
            total_orders=sum(by_status.values()),
            orders_by_status=by_status,
            total_revenue_cents=revenue,
            total_products=products,
            low_stock_products=low,
            currency=self.currency,
        )

    def audit_trail(self, principal: Optional[Principal], order_id: str) -> list:
        """Administrative actions recorded against an order, oldest first."""
        require_admin(principal)
        with self.uow_factory() as uow:
            return [
                {
                    "admin_id": e.admin_id,
                    "action": e.action,
                    "old_data": e.old_data,
                    "new_data": e.new_data,
                    "created_at": e.created_at,
                }
                for e in uow.audit.entries(record_id=order_id)
            ]


class OrderFulfillment:
    """Downstream shipping and delivery of approved orders."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self.uow_factory = uow_factory

    def ship(self, principal: Optional[Principal], order_id: str, notes: Optional[str] = None) -> Order:
        return self._advance(principal, order_id, OrderStatus.SHIPPED, "SHIP_ORDER", notes)

    def deliver(self, principal: Optional[Principal], order_id: str, notes: Optional[str] = None) -> Order:
        return self._advance(principal, order_id, OrderStatus.DELIVERED, "DELIVER_ORDER", notes)

    def _advance(self, principal, order_id, target, action, notes):
        admin = require_admin(principal)
        with self.uow_factory() as uow:
            order = uow.orders.require(order_id)
            notes = notes if notes is not None else order.admin_notes
            _move(uow, order, target, notes)
            uow.audit.record(
                admin.id,
                action,
                "orders",
                order_id,
                old_data={"status": order.status.value},
                new_data={"status": target.value},
            )
            uow.commit()
        logger.info("order %s", target.value, extra={"order_id": order_id, "admin_id": admin.id})
        return replace(order, status=target, admin_notes=notes, updated_at=utcnow())
