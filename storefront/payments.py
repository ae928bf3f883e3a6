"""Payment-proof intake for orders settled by offline bank transfer.

The owning customer uploads one evidentiary artifact (a transfer receipt)
while the order is ``pending``. The artifact is stored through the storage
port, the proof is recorded and the order moves to ``paid``. From then on
the customer can only read the order.
"""

import logging
import time
from typing import Callable, Optional

from .config import PROOF_EXTENSIONS
from .domain import Artifact, OrderStatus, PaymentProof, ProofStatus, StoragePort
from .errors import InvalidState, Unauthorized, ValidationError
from .identity import Principal, require_customer, require_principal
from .repo import UnitOfWork, new_id, utcnow

logger = logging.getLogger(__name__)

PROOF_PREFIX = "payment-proofs"


def validate_artifact(artifact: Artifact, max_bytes: int) -> None:
    """Check size and type constraints of a payment-proof artifact.

    Raises:
        ValidationError: Empty or oversize file, or an extension/content
            type outside PDF, JPEG and PNG.
    """
    if artifact.size == 0:
        raise ValidationError("Empty file", field="file")
    if artifact.size > max_bytes:
        raise ValidationError(f"File too large, maximum is {max_bytes} bytes", field="file")
    allowed = PROOF_EXTENSIONS.get(artifact.extension)
    if allowed is None:
        raise ValidationError("Accepted formats: PDF, JPG, PNG", field="file")
    content_type = (artifact.content_type or "").split(";")[0].strip().lower()
    if content_type not in allowed:
        raise ValidationError(f"Content type {content_type or '-'} does not match .{artifact.extension}", field="file")


def storage_key(order_id: str, artifact: Artifact) -> str:
    return f"{PROOF_PREFIX}/{order_id}-{int(time.time() * 1000)}.{artifact.extension}"


class PaymentProofIntake:
    """Accepts a payment proof and advances the order from pending to paid.

    Args:
        uow_factory: Callable returning a fresh ``UnitOfWork``.
        storage: ``StoragePort`` that receives the artifact bytes.
        max_bytes: Largest accepted artifact.
    """

    def __init__(self, uow_factory: Callable[[], UnitOfWork], storage: StoragePort, max_bytes: int = 5 * 1024 * 1024):
        self.uow_factory = uow_factory
        self.storage = storage
        self.max_bytes = max_bytes

    def submit_proof(self, principal: Optional[Principal], order_id: str, artifact: Artifact) -> PaymentProof:
        """Record a payment proof for a pending order.

        Args:
            principal: The order's owning customer.
            order_id: Order being paid.
            artifact: Uploaded file.

        Returns:
            PaymentProof: The recorded proof, in ``pending`` review status.

        Raises:
            NotFound: Unknown order.
            Unauthorized: The caller does not own the order.
            InvalidState: The order is no longer ``pending``.
            ValidationError: The artifact violates size/type constraints.
            TemporaryFailure: Storage is unavailable.
        """
        customer = require_customer(principal)
        with self.uow_factory() as uow:
            order = uow.orders.require(order_id)
        if order.user_id != customer.id:
            raise Unauthorized("Order belongs to another customer")
        if order.status is not OrderStatus.PENDING:
            raise InvalidState(f"Payment proof not accepted for {order.status.value} orders", status=order.status.value)
        validate_artifact(artifact, self.max_bytes)

        url = self.storage.store(artifact.data, storage_key(order_id, artifact), artifact.content_type)

        proof = PaymentProof(
            id=new_id(),
            order_id=order_id,
            file_url=url,
            file_name=artifact.file_name,
            file_size=artifact.size,
            content_type=artifact.content_type,
            status=ProofStatus.PENDING,
            upload_date=utcnow(),
        )
        with self.uow_factory() as uow:
            if not uow.orders.transition(order_id, OrderStatus.PENDING, OrderStatus.PAID):
                current = (uow.orders.status_of(order_id) or OrderStatus.PENDING).value
                logger.warning(
                    "payment proof lost race",
                    extra={"order_id": order_id, "status": current, "file_url": url},
                )
                raise InvalidState(f"Payment proof not accepted for {current} orders", status=current)
            uow.proofs.add(proof)
            uow.commit()

        logger.info(
            "payment proof submitted",
            extra={"order_id": order_id, "user_id": customer.id, "file_size": proof.file_size},
        )
        return proof

    def proofs_for(self, principal: Optional[Principal], order_id: str):
        """Return the proofs of an order the caller owns or administers."""
        p = require_principal(principal)
        with self.uow_factory() as uow:
            order = uow.orders.require(order_id)
            if not p.is_admin and order.user_id != p.id:
                raise Unauthorized("Order belongs to another customer")
            return uow.proofs.for_order(order_id)
