"""SQLAlchemy persistence for products, carts, orders and payment proofs.

This module provides the database schema and thin repositories over a
shared ``Session``. ``UnitOfWork`` groups the repositories of one logical
operation into a single transaction: either everything it wrote is
committed or nothing is. Repositories return domain dataclasses, never ORM
rows, so services stay decoupled from SQLAlchemy.

Stock is only ever decremented through ``ProductRepository.decrement``, a
conditional ``UPDATE ... WHERE stock_quantity >= :qty`` that cannot drive the
counter negative even when several approvals race.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from .domain import (
    CartLine,
    ContactInfo,
    Order,
    OrderItem,
    OrderStatus,
    PaymentProof,
    Product,
    ProofStatus,
)
from .errors import NotFound, TemporaryFailure

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ProductRow(Base):
    """Catalog product with its live stock counter."""

    __tablename__ = "products"
    id = mapped_column(String(64), primary_key=True)
    name = mapped_column(String(255), nullable=False)
    price_cents = mapped_column(Integer, nullable=False)
    stock_quantity = mapped_column(Integer, nullable=False, default=0)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    updated_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
    )


class CartRow(Base):
    """Per-customer cart header; ``version`` changes on every mutation."""

    __tablename__ = "carts"
    user_id = mapped_column(String(64), primary_key=True)
    version = mapped_column(Integer, nullable=False, default=0)


class CartItemRow(Base):
    __tablename__ = "cart_items"
    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id = mapped_column(String(64), nullable=False, index=True)
    product_id = mapped_column(String(64), nullable=False)
    quantity = mapped_column(Integer, nullable=False)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="ux_cart_items_user_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )


class OrderRow(Base):
    __tablename__ = "orders"
    id = mapped_column(String(36), primary_key=True)
    user_id = mapped_column(String(64), nullable=False, index=True)
    total_cents = mapped_column(Integer, nullable=False)
    currency = mapped_column(String(3), nullable=False)
    status = mapped_column(String(16), nullable=False, index=True)
    customer_name = mapped_column(String(255), nullable=False)
    customer_email = mapped_column(String(255), nullable=False)
    customer_phone = mapped_column(String(64), nullable=False)
    shipping_address = mapped_column(Text, nullable=False)
    payment_method = mapped_column(String(32), nullable=False)
    bank_name = mapped_column(String(64), nullable=False)
    admin_notes = mapped_column(Text, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    items = relationship(
        "OrderItemRow",
        order_by="OrderItemRow.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class OrderItemRow(Base):
    __tablename__ = "order_items"
    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id = mapped_column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = mapped_column(Integer, nullable=False)
    product_id = mapped_column(String(64), nullable=False)
    product_name = mapped_column(String(255), nullable=False)
    product_price_cents = mapped_column(Integer, nullable=False)
    quantity = mapped_column(Integer, nullable=False)


class PaymentProofRow(Base):
    __tablename__ = "payment_proofs"
    id = mapped_column(String(36), primary_key=True)
    order_id = mapped_column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    file_url = mapped_column(Text, nullable=False)
    file_name = mapped_column(String(255), nullable=False)
    file_size = mapped_column(Integer, nullable=False)
    content_type = mapped_column(String(64), nullable=False)
    upload_date = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    status = mapped_column(String(16), nullable=False, default=ProofStatus.PENDING.value)
    admin_notes = mapped_column(Text, nullable=True)


class IdempotencyKeyRow(Base):
    """Persisted checkout idempotency records.

    Attributes:
        key: Client-provided key, or one derived from the cart snapshot.
        request_hash: Canonical SHA-256 hex digest of the checkout request.
        order_id: Order created by the first request with this key.
    """

    __tablename__ = "idempotency_keys"
    key = mapped_column(String(200), primary_key=True)
    request_hash = mapped_column(String(64), nullable=False)
    order_id = mapped_column(String(36), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AdminLogRow(Base):
    """Audit trail of administrative actions."""

    __tablename__ = "admin_logs"
    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id = mapped_column(String(64), nullable=False, index=True)
    action = mapped_column(String(32), nullable=False)
    table_name = mapped_column(String(64), nullable=True)
    record_id = mapped_column(String(64), nullable=True)
    old_data = mapped_column(JSON, nullable=True)
    new_data = mapped_column(JSON, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------- Engine / sessions ---------------- #

def make_engine(url: str, **kwargs) -> Engine:
    """Create an engine for ``url``.

    SQLite connections are shared across threads; an in-memory database uses
    a single static connection so every session sees the same data.
    """
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 15}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            return create_engine(url, connect_args=connect_args, poolclass=StaticPool, **kwargs)
        return create_engine(url, connect_args=connect_args, **kwargs)
    return create_engine(url, pool_pre_ping=True, **kwargs)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


# ---------------- Mapping helpers ---------------- #

def _product(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        price_cents=row.price_cents,
        stock_quantity=row.stock_quantity,
        is_active=row.is_active,
    )


def _order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        items=tuple(
            OrderItem(
                product_id=i.product_id,
                product_name=i.product_name,
                product_price_cents=i.product_price_cents,
                quantity=i.quantity,
            )
            for i in row.items
        ),
        total_cents=row.total_cents,
        status=OrderStatus(row.status),
        contact=ContactInfo(
            name=row.customer_name,
            email=row.customer_email,
            phone=row.customer_phone,
            shipping_address=row.shipping_address,
        ),
        bank_name=row.bank_name,
        currency=row.currency,
        payment_method=row.payment_method,
        admin_notes=row.admin_notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _proof(row: PaymentProofRow) -> PaymentProof:
    return PaymentProof(
        id=row.id,
        order_id=row.order_id,
        file_url=row.file_url,
        file_name=row.file_name,
        file_size=row.file_size,
        content_type=row.content_type,
        status=ProofStatus(row.status),
        upload_date=row.upload_date,
        admin_notes=row.admin_notes,
    )


# ---------------- Repositories ---------------- #

class ProductRepository:
    """Product rows and the atomic stock counter."""

    def __init__(self, session: Session):
        self.s = session

    def get(self, product_id: str) -> Optional[Product]:
        row = self.s.get(ProductRow, product_id)
        return _product(row) if row else None

    def add(self, product: Product) -> None:
        self.s.add(
            ProductRow(
                id=product.id,
                name=product.name,
                price_cents=product.price_cents,
                stock_quantity=product.stock_quantity,
                is_active=product.is_active,
            )
        )
        self.s.flush()

    def stock_of(self, product_id: str) -> int:
        qty = self.s.execute(
            select(ProductRow.stock_quantity).where(ProductRow.id == product_id)
        ).scalar_one_or_none()
        return qty or 0

    def decrement(self, product_id: str, quantity: int) -> bool:
        """Atomically take ``quantity`` units out of stock.

        The update only matches while enough stock remains, so concurrent
        callers can never jointly oversell.

        Returns:
            bool: True when the row was decremented, False when the product
                is missing or has fewer than ``quantity`` units.
        """
        res = self.s.execute(
            update(ProductRow)
            .where(ProductRow.id == product_id, ProductRow.stock_quantity >= quantity)
            .values(stock_quantity=ProductRow.stock_quantity - quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def count(self) -> int:
        return self.s.execute(select(func.count()).select_from(ProductRow)).scalar_one()

    def count_low_stock(self, threshold: int) -> int:
        return self.s.execute(
            select(func.count()).select_from(ProductRow).where(ProductRow.stock_quantity < threshold)
        ).scalar_one()


class CartRepository:
    def __init__(self, session: Session):
        self.s = session

    def lines(self, user_id: str) -> List[CartLine]:
        rows = self.s.execute(
            select(CartItemRow)
            .where(CartItemRow.user_id == user_id)
            .order_by(CartItemRow.created_at, CartItemRow.id)
        ).scalars()
        return [CartLine(product_id=r.product_id, quantity=r.quantity) for r in rows]

    def quantity_of(self, user_id: str, product_id: str) -> int:
        qty = self.s.execute(
            select(CartItemRow.quantity).where(
                CartItemRow.user_id == user_id, CartItemRow.product_id == product_id
            )
        ).scalar_one_or_none()
        return qty or 0

    def put(self, user_id: str, product_id: str, quantity: int) -> None:
        """Create the line or replace its quantity."""
        row = self.s.execute(
            select(CartItemRow).where(
                CartItemRow.user_id == user_id, CartItemRow.product_id == product_id
            )
        ).scalar_one_or_none()
        if row is None:
            self.s.add(CartItemRow(user_id=user_id, product_id=product_id, quantity=quantity))
        else:
            row.quantity = quantity
        self._bump(user_id)
        self.s.flush()

    def remove(self, user_id: str, product_id: str) -> bool:
        res = self.s.execute(
            delete(CartItemRow).where(
                CartItemRow.user_id == user_id, CartItemRow.product_id == product_id
            )
        )
        if res.rowcount:
            self._bump(user_id)
        return bool(res.rowcount)

    def clear(self, user_id: str) -> int:
        res = self.s.execute(delete(CartItemRow).where(CartItemRow.user_id == user_id))
        self._bump(user_id)
        return res.rowcount

    def version(self, user_id: str) -> int:
        v = self.s.execute(select(CartRow.version).where(CartRow.user_id == user_id)).scalar_one_or_none()
        return v or 0

    def _bump(self, user_id: str) -> None:
        row = self.s.get(CartRow, user_id)
        if row is None:
            self.s.add(CartRow(user_id=user_id, version=1))
        else:
            row.version = row.version + 1


class OrderRepository:
    def __init__(self, session: Session):
        self.s = session

    def add(self, order: Order) -> None:
        """Stage an order and its frozen lines in the current transaction."""
        now = utcnow()
        row = OrderRow(
            id=order.id,
            user_id=order.user_id,
            total_cents=order.total_cents,
            currency=order.currency,
            status=order.status.value,
            customer_name=order.contact.name,
            customer_email=order.contact.email,
            customer_phone=order.contact.phone,
            shipping_address=order.contact.shipping_address,
            payment_method=order.payment_method,
            bank_name=order.bank_name,
            admin_notes=order.admin_notes,
            created_at=order.created_at or now,
            updated_at=order.updated_at or now,
        )
        row.items = [
            OrderItemRow(
                position=pos,
                product_id=i.product_id,
                product_name=i.product_name,
                product_price_cents=i.product_price_cents,
                quantity=i.quantity,
            )
            for pos, i in enumerate(order.items)
        ]
        self.s.add(row)
        self.s.flush()

    def get(self, order_id: str) -> Optional[Order]:
        row = self.s.get(OrderRow, order_id)
        return _order(row) if row else None

    def status_of(self, order_id: str) -> Optional[OrderStatus]:
        """Read the committed status, bypassing the session identity map."""
        raw = self.s.execute(select(OrderRow.status).where(OrderRow.id == order_id)).scalar_one_or_none()
        return OrderStatus(raw) if raw else None

    def require(self, order_id: str) -> Order:
        order = self.get(order_id)
        if order is None:
            raise NotFound("order", order_id)
        return order

    def transition(
        self,
        order_id: str,
        expected: OrderStatus,
        target: OrderStatus,
        notes: Optional[str] = None,
        set_notes: bool = False,
    ) -> bool:
        """Move an order from ``expected`` to ``target`` if it is still there.

        Returns:
            bool: False when another writer changed the status first.
        """
        values = {"status": target.value, "updated_at": utcnow()}
        if set_notes:
            values["admin_notes"] = notes
        res = self.s.execute(
            update(OrderRow)
            .where(OrderRow.id == order_id, OrderRow.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def search(
        self,
        status: Optional[OrderStatus] = None,
        user_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[int, List[Order]]:
        q = select(OrderRow)
        cq = select(func.count()).select_from(OrderRow)
        if status is not None:
            q = q.where(OrderRow.status == status.value)
            cq = cq.where(OrderRow.status == status.value)
        if user_id is not None:
            q = q.where(OrderRow.user_id == user_id)
            cq = cq.where(OrderRow.user_id == user_id)
        count = self.s.execute(cq).scalar_one()
        rows = self.s.execute(
            q.order_by(OrderRow.created_at.desc(), OrderRow.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()
        return count, [_order(r) for r in rows]

    def count_by_status(self) -> Dict[str, int]:
        rows = self.s.execute(select(OrderRow.status, func.count()).group_by(OrderRow.status)).all()
        return {status: n for status, n in rows}

    def revenue(self, statuses: Iterable[OrderStatus]) -> int:
        total = self.s.execute(
            select(func.coalesce(func.sum(OrderRow.total_cents), 0)).where(
                OrderRow.status.in_([s.value for s in statuses])
            )
        ).scalar_one()
        return int(total)


class ProofRepository:
    def __init__(self, session: Session):
        self.s = session

    def add(self, proof: PaymentProof) -> None:
        self.s.add(
            PaymentProofRow(
                id=proof.id,
                order_id=proof.order_id,
                file_url=proof.file_url,
                file_name=proof.file_name,
                file_size=proof.file_size,
                content_type=proof.content_type,
                status=proof.status.value,
                upload_date=proof.upload_date or utcnow(),
            )
        )
        self.s.flush()

    def for_order(self, order_id: str) -> List[PaymentProof]:
        rows = self.s.execute(
            select(PaymentProofRow)
            .where(PaymentProofRow.order_id == order_id)
            .order_by(PaymentProofRow.upload_date)
        ).scalars()
        return [_proof(r) for r in rows]

    def review(self, order_id: str, status: ProofStatus, notes: Optional[str]) -> int:
        """Mirror a review decision onto the order's pending proofs."""
        res = self.s.execute(
            update(PaymentProofRow)
            .where(
                PaymentProofRow.order_id == order_id,
                PaymentProofRow.status == ProofStatus.PENDING.value,
            )
            .values(status=status.value, admin_notes=notes)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount


class IdempotencyRepository:
    def __init__(self, session: Session):
        self.s = session

    def get(self, key: str) -> Optional[IdempotencyKeyRow]:
        return self.s.get(IdempotencyKeyRow, key)

    def add(self, key: str, request_hash: str, order_id: str) -> None:
        """Claim ``key``.

        Raises:
            IntegrityError: When another transaction already claimed it.
        """
        self.s.add(IdempotencyKeyRow(key=key, request_hash=request_hash, order_id=order_id))
        self.s.flush()


class AuditLog:
    def __init__(self, session: Session):
        self.s = session

    def record(
        self,
        admin_id: str,
        action: str,
        table_name: Optional[str] = None,
        record_id: Optional[str] = None,
        old_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
    ) -> None:
        self.s.add(
            AdminLogRow(
                admin_id=admin_id,
                action=action,
                table_name=table_name,
                record_id=record_id,
                old_data=old_data,
                new_data=new_data,
            )
        )

    def entries(self, record_id: Optional[str] = None) -> List[AdminLogRow]:
        q = select(AdminLogRow).order_by(AdminLogRow.id)
        if record_id is not None:
            q = q.where(AdminLogRow.record_id == record_id)
        return list(self.s.execute(q).scalars())


# ---------------- Unit of work ---------------- #

class UnitOfWork:
    """One transaction over all repositories.

    Usage::

        with uow_factory() as uow:
            uow.orders.add(order)
            uow.carts.clear(user_id)
            uow.commit()

    Leaving the block without ``commit()`` rolls back. Database faults other
    than integrity violations surface as ``TemporaryFailure``; integrity
    violations propagate so callers can resolve races (e.g. idempotency).
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self.session: Optional[Session] = None

    def __enter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        s = self.session
        self.products = ProductRepository(s)
        self.carts = CartRepository(s)
        self.orders = OrderRepository(s)
        self.proofs = ProofRepository(s)
        self.idempotency = IdempotencyRepository(s)
        self.audit = AuditLog(s)
        return self

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def __exit__(self, exc_type, exc, tb):
        try:
            self.session.rollback()
        finally:
            self.session.close()
        if exc is not None and isinstance(exc, SQLAlchemyError) and not isinstance(exc, IntegrityError):
            logger.error("persistence failure", extra={"error": type(exc).__name__})
            raise TemporaryFailure("PERSISTENCE_UNAVAILABLE", cause=exc) from exc
        return False


def unit_of_work_factory(session_factory: Callable[[], Session]) -> Callable[[], UnitOfWork]:
    return lambda: UnitOfWork(session_factory)


class SqlCatalog:
    """``CatalogPort`` backed by the products table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get_product(self, product_id: str) -> Product:
        try:
            with self._session_factory() as s:
                product = ProductRepository(s).get(product_id)
        except SQLAlchemyError as e:
            raise TemporaryFailure("CATALOG_UNAVAILABLE", cause=e) from e
        if product is None:
            raise NotFound("product", product_id)
        return product


def new_id() -> str:
    return str(uuid.uuid4())
