"""
人工转账凭证流程 - 顾客提交凭证，审核员批准或拒绝

凭证只能被审核一次：审核结果以 `WHERE status='pending'` 条件写入，
两个审核员并发操作时只有一个成功，另一个得到 AlreadyDecided。
"""
from __future__ import annotations

import mimetypes
from typing import Callable, Optional
from urllib.parse import urlparse

from application.dtos.orders import OrderResponse, PaymentProofResponse, SubmitProofRequest
from application.ports.audit import AuditPort
from application.services.common import load_order, publish_events, utcnow
from core.config import StoreSettings
from core.logging_config import get_logger
from domain.common.exceptions import (
    AlreadyDecided,
    ConcurrentModification,
    InvalidProofArtifact,
    OrderNotFound,
    PaymentProofNotFound,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import PaymentProof
from domain.order.events import ProofApproved, ProofRejected, ProofSubmitted


logger = get_logger(__name__)


class PaymentProofService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        store: StoreSettings,
        *,
        audit: Optional[AuditPort] = None,
    ):
        self._uow_factory = uow_factory
        self._store = store
        self._audit = audit

    def validate_artifact(self, request: SubmitProofRequest) -> str:
        """校验凭证引用；返回最终的 content_type"""
        url = request.proof_url.strip()
        parsed = urlparse(url)
        if parsed.scheme:
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise InvalidProofArtifact("Proof must be an http(s) URL or a relative storage path")
        elif url.startswith("//") or ".." in parsed.path.split("/"):
            raise InvalidProofArtifact("Proof path must not escape the storage root")

        content_type = (request.content_type or mimetypes.guess_type(parsed.path)[0] or "").lower()
        if content_type not in self._store.proof_allowed_types:
            raise InvalidProofArtifact(
                f"Unsupported proof type: {content_type or 'unknown'}",
                field="content_type",
                details={"allowed": list(self._store.proof_allowed_types)},
            )
        if request.size_bytes is not None and request.size_bytes > self._store.proof_max_bytes:
            raise InvalidProofArtifact(
                "Proof file is too large",
                field="size_bytes",
                details={"max_bytes": self._store.proof_max_bytes},
            )
        return content_type

    async def submit_proof(self, order_id: str, user_id: str, request: SubmitProofRequest) -> PaymentProofResponse:
        content_type = self.validate_artifact(request)
        now = utcnow()
        async with self._uow_factory() as uow:
            order = await load_order(uow, order_id, user_id)
            expected = order.version
            order.submit_for_review(now)
            if not await uow.order_repository.save(order, expected_version=expected, require_unpaid=True):
                raise ConcurrentModification(order.id)
            submitter = request.submitter.to_contact()
            if not any((submitter.name, submitter.email, submitter.phone)):
                submitter = order.customer
            proof = await uow.payment_proof_repository.add(PaymentProof.submit(
                order,
                proof_url=request.proof_url.strip(),
                submitter=submitter,
                content_type=content_type,
                size_bytes=request.size_bytes,
                now=now,
            ))

        logger.info("payment_proof_submitted", order_id=order.id, proof_id=proof.id)
        await publish_events(
            self._audit,
            [*order.pull_events(), ProofSubmitted(order_id=order.id, proof_id=proof.id)],
            actor=user_id,
        )
        return PaymentProofResponse.from_entity(proof)

    async def list_pending(self, *, page: int = 1, size: int = 20) -> tuple[list[PaymentProofResponse], int]:
        async with self._uow_factory(readonly=True) as uow:
            proofs = await uow.payment_proof_repository.list_pending(skip=(page - 1) * size, limit=size)
            total = await uow.payment_proof_repository.count_pending()
        return [PaymentProofResponse.from_entity(p) for p in proofs], total

    async def approve(self, proof_id: int, reviewer_id: str) -> OrderResponse:
        now = utcnow()
        async with self._uow_factory() as uow:
            proof = await uow.payment_proof_repository.get_by_id(proof_id)
            if proof is None:
                raise PaymentProofNotFound(proof_id)
            proof.approve(reviewer_id, now)
            order = await uow.order_repository.get_by_id(proof.order_id)
            if order is None:
                raise OrderNotFound(proof.order_id)
            expected = order.version
            order.approve_review(now)
            if not await uow.payment_proof_repository.record_decision(proof):
                raise AlreadyDecided(proof.id)
            if not await uow.order_repository.save(order, expected_version=expected, require_unpaid=True):
                raise ConcurrentModification(order.id)

        logger.info("payment_proof_approved", proof_id=proof.id, order_id=order.id, reviewer_id=reviewer_id)
        await publish_events(
            self._audit,
            [ProofApproved(order_id=order.id, proof_id=proof.id, reviewer_id=reviewer_id), *order.pull_events()],
            actor=reviewer_id,
        )
        return OrderResponse.from_entity(order)

    async def reject(self, proof_id: int, reviewer_id: str, reason: Optional[str] = None) -> OrderResponse:
        reason = (reason or "").strip() or None
        now = utcnow()
        async with self._uow_factory() as uow:
            proof = await uow.payment_proof_repository.get_by_id(proof_id)
            if proof is None:
                raise PaymentProofNotFound(proof_id)
            proof.reject(reviewer_id, reason, now)
            order = await uow.order_repository.get_by_id(proof.order_id)
            if order is None:
                raise OrderNotFound(proof.order_id)
            expected = order.version
            order.reject_review(now, reason)
            if not await uow.payment_proof_repository.record_decision(proof):
                raise AlreadyDecided(proof.id)
            if not await uow.order_repository.save(order, expected_version=expected, require_unpaid=True):
                raise ConcurrentModification(order.id)

        logger.info("payment_proof_rejected", proof_id=proof.id, order_id=order.id, reviewer_id=reviewer_id)
        await publish_events(
            self._audit,
            [ProofRejected(order_id=order.id, proof_id=proof.id, reviewer_id=reviewer_id, reason=reason),
             *order.pull_events()],
            actor=reviewer_id,
        )
        return OrderResponse.from_entity(order)
