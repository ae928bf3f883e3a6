"""Storefront API built with FastAPI.

The API is a thin layer over the domain services: it resolves the calling
principal from gateway headers, validates payloads with Pydantic, delegates
to the services obtained from ``get_services`` and renders results. Every
``StorefrontError`` is rendered as ``{"detail": CODE, "message": ..., ...}``
with the status code the error class declares.

Idempotency: ``POST /checkout`` honours an ``Idempotency-Key`` header. A
retry with the same key and payload returns the stored order with HTTP 200
and ``Idempotent-Replay: true``; the same key with a different payload is a
409. Without a header, concurrent duplicate compiles of one cart snapshot
still collapse into a single order, but a sequential retry after success
finds the cart empty and gets a 400 ``VALIDATION_ERROR`` on field ``cart``.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .config import Settings, get_settings
from .domain import Artifact, OrderStatus
from .errors import StorefrontError, ValidationError
from .identity import Principal, principal_from_headers
from .logging_filters import configure_logging
from .middleware import request_id_middleware, size_limit_middleware
from .providers import Services, build_services
from .schemas import (
    AddItemIn,
    BankOut,
    CartOut,
    CheckoutIn,
    DashboardOut,
    DecisionIn,
    NotesIn,
    OrderPageOut,
    OrderReadDTO,
    ProofOut,
    SetQuantityIn,
)

logger = logging.getLogger(__name__)

FILE_NAME_HEADER = "X-File-Name"


def get_services(request: Request) -> Services:
    """Return the services bound to the app, building them on first use."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services(request.app.state.settings)
        request.app.state.services = services
    return services


def current_principal(request: Request) -> Optional[Principal]:
    return principal_from_headers(request.headers)


ServicesDep = Annotated[Services, Depends(get_services)]
PrincipalDep = Annotated[Optional[Principal], Depends(current_principal)]


def _parse_status(raw: Optional[str]) -> Optional[OrderStatus]:
    if raw is None or raw == "all":
        return None
    try:
        return OrderStatus(raw)
    except ValueError:
        raise ValidationError(f"Unknown status: {raw}", field="status")


async def read_limited_body(request: Request, max_bytes: int) -> bytes:
    """Read the request body, refusing it as soon as it exceeds ``max_bytes``.

    Chunked uploads carry no ``Content-Length`` and are not caught by the size
    middleware, so the limit is enforced while streaming.
    """
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise ValidationError(f"File too large, maximum is {max_bytes} bytes", field="file")
    return bytes(body)


async def storefront_error_handler(request: Request, exc: StorefrontError):
    level = logging.WARNING if exc.http_status >= 500 else logging.INFO
    logger.log(level, "request failed", extra={"code": exc.code, "path": request.url.path})
    return JSONResponse(exc.to_dict(), status_code=exc.http_status)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse({"detail": ValidationError.code, "errors": errors}, status_code=400)


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        services: Pre-wired services (tests); built lazily when omitted.
        settings: Settings used for logging, limits and lazy wiring.
    """
    settings = settings or (services.settings if services else get_settings())
    configure_logging(settings.log_level)

    app = FastAPI(title="Storefront Service")
    app.state.settings = settings
    app.state.services = services

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.middleware("http")(size_limit_middleware(settings.api_max_bytes))
    app.middleware("http")(request_id_middleware)

    # ---- health / reference data ----
    @app.get("/health")
    def health(svc: ServicesDep):
        db_ok = False
        try:
            with svc.engine.connect() as conn:
                conn.execute(text("select 1"))
            db_ok = True
        except Exception:
            logger.exception("health check failed")
        return JSONResponse(
            {"ok": db_ok, "components": {"db": {"ok": db_ok}}},
            status_code=200 if db_ok else 503,
        )

    @app.get("/banks", response_model=list[BankOut])
    def banks(svc: ServicesDep):
        return [BankOut.from_domain(b) for b in svc.settings.banks.values()]

    # ---- cart ----
    @app.get("/cart", response_model=CartOut)
    def get_cart(svc: ServicesDep, principal: PrincipalDep):
        return CartOut.from_domain(svc.cart.view(principal))

    @app.post("/cart/items", response_model=CartOut)
    def add_item(body: AddItemIn, svc: ServicesDep, principal: PrincipalDep):
        return CartOut.from_domain(svc.cart.add_item(principal, body.product_id, body.quantity))

    @app.put("/cart/items/{product_id}", response_model=CartOut)
    def set_quantity(product_id: str, body: SetQuantityIn, svc: ServicesDep, principal: PrincipalDep):
        return CartOut.from_domain(svc.cart.set_quantity(principal, product_id, body.quantity))

    @app.delete("/cart/items/{product_id}", response_model=CartOut)
    def remove_item(product_id: str, svc: ServicesDep, principal: PrincipalDep):
        return CartOut.from_domain(svc.cart.remove_item(principal, product_id))

    @app.delete("/cart", response_model=CartOut)
    def clear_cart(svc: ServicesDep, principal: PrincipalDep):
        return CartOut.from_domain(svc.cart.clear(principal))

    # ---- checkout / customer orders ----
    @app.post("/checkout", response_model=OrderReadDTO, status_code=status.HTTP_201_CREATED)
    def checkout(
        body: CheckoutIn,
        response: Response,
        svc: ServicesDep,
        principal: PrincipalDep,
        idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
    ):
        result = svc.checkout.compile(principal, body.contact(), body.bank_name, idempotency_key=idempotency_key)
        if result.replayed:
            response.status_code = status.HTTP_200_OK
            response.headers["Idempotent-Replay"] = "true"
        return OrderReadDTO.from_domain(result.order)

    @app.get("/orders", response_model=OrderPageOut)
    def my_orders(svc: ServicesDep, principal: PrincipalDep, page: int = 1, page_size: int = 20):
        return OrderPageOut.from_domain(svc.orders.list_orders(principal, page=page, page_size=page_size))

    @app.get("/orders/{order_id}", response_model=OrderReadDTO)
    def my_order(order_id: str, svc: ServicesDep, principal: PrincipalDep):
        return OrderReadDTO.from_domain(svc.orders.get_order(principal, order_id))

    @app.post("/orders/{order_id}/cancel", response_model=OrderReadDTO)
    def cancel_order(order_id: str, svc: ServicesDep, principal: PrincipalDep):
        return OrderReadDTO.from_domain(svc.orders.cancel(principal, order_id))

    @app.post("/orders/{order_id}/payment-proof", response_model=ProofOut, status_code=status.HTTP_201_CREATED)
    async def submit_proof(order_id: str, request: Request, svc: ServicesDep, principal: PrincipalDep):
        file_name = request.headers.get(FILE_NAME_HEADER)
        if not file_name:
            raise ValidationError(f"{FILE_NAME_HEADER} header is required", field="file")
        artifact = Artifact(
            file_name=file_name,
            content_type=request.headers.get("content-type", ""),
            data=await read_limited_body(request, svc.payments.max_bytes),
        )
        proof = await run_in_threadpool(svc.payments.submit_proof, principal, order_id, artifact)
        return ProofOut.from_domain(proof)

    @app.get("/orders/{order_id}/payment-proofs", response_model=list[ProofOut])
    def order_proofs(order_id: str, svc: ServicesDep, principal: PrincipalDep):
        return [ProofOut.from_domain(p) for p in svc.payments.proofs_for(principal, order_id)]

    # ---- administration ----
    @app.get("/admin/orders", response_model=OrderPageOut)
    def admin_orders(
        svc: ServicesDep,
        principal: PrincipalDep,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ):
        page_obj = svc.review.list_orders(principal, status=_parse_status(status), page=page, page_size=page_size)
        return OrderPageOut.from_domain(page_obj)

    @app.get("/admin/orders/{order_id}", response_model=OrderReadDTO)
    def admin_order(order_id: str, svc: ServicesDep, principal: PrincipalDep):
        return OrderReadDTO.from_domain(svc.review.get_order(principal, order_id))

    @app.post("/admin/orders/{order_id}/approve", response_model=OrderReadDTO)
    def approve(order_id: str, body: DecisionIn, svc: ServicesDep, principal: PrincipalDep):
        order = svc.review.approve(principal, order_id, notes=body.notes, decrement_stock=body.decrement_stock)
        return OrderReadDTO.from_domain(order)

    @app.post("/admin/orders/{order_id}/reject", response_model=OrderReadDTO)
    def reject(order_id: str, body: NotesIn, svc: ServicesDep, principal: PrincipalDep):
        return OrderReadDTO.from_domain(svc.review.reject(principal, order_id, notes=body.notes))

    @app.post("/admin/orders/{order_id}/ship", response_model=OrderReadDTO)
    def ship(order_id: str, body: NotesIn, svc: ServicesDep, principal: PrincipalDep):
        return OrderReadDTO.from_domain(svc.fulfillment.ship(principal, order_id, notes=body.notes))

    @app.post("/admin/orders/{order_id}/deliver", response_model=OrderReadDTO)
    def deliver(order_id: str, body: NotesIn, svc: ServicesDep, principal: PrincipalDep):
        return OrderReadDTO.from_domain(svc.fulfillment.deliver(principal, order_id, notes=body.notes))

    @app.post("/admin/orders/{order_id}/cancel", response_model=OrderReadDTO)
    def admin_cancel(order_id: str, body: NotesIn, svc: ServicesDep, principal: PrincipalDep):
        return OrderReadDTO.from_domain(svc.orders.cancel(principal, order_id, notes=body.notes))

    @app.get("/admin/orders/{order_id}/audit")
    def audit(order_id: str, svc: ServicesDep, principal: PrincipalDep):
        entries = svc.review.audit_trail(principal, order_id)
        for e in entries:
            e["created_at"] = e["created_at"].isoformat() if e["created_at"] else None
        return entries

    @app.get("/admin/dashboard", response_model=DashboardOut)
    def dashboard(svc: ServicesDep, principal: PrincipalDep):
        return DashboardOut.from_domain(svc.review.dashboard(principal))

    return app


app = create_app()
