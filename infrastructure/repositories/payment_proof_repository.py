"""
支付凭证仓储实现
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.order.entity import CustomerContact, PaymentProof, ProofStatus
from domain.order.repository import PaymentProofRepository
from infrastructure.models.order import PaymentProofModel


logger = get_logger(__name__)


class SQLAlchemyPaymentProofRepository(PaymentProofRepository):
    """支付凭证仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentProofModel) -> PaymentProof:
        return PaymentProof(
            id=model.id,
            order_id=model.order_id,
            user_id=model.user_id,
            proof_url=model.proof_url,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=ProofStatus(model.status),
            submitter=CustomerContact(
                name=model.submitter_name,
                email=model.submitter_email,
                phone=model.submitter_phone,
            ),
            content_type=model.content_type,
            size_bytes=model.size_bytes,
            notes=model.notes,
            reviewed_by=model.reviewed_by,
            reviewed_at=model.reviewed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: PaymentProof) -> PaymentProofModel:
        return PaymentProofModel(
            id=entity.id,
            order_id=entity.order_id,
            user_id=entity.user_id,
            proof_url=entity.proof_url,
            content_type=entity.content_type,
            size_bytes=entity.size_bytes,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            submitter_name=entity.submitter.name,
            submitter_email=entity.submitter.email,
            submitter_phone=entity.submitter.phone,
            notes=entity.notes,
            reviewed_by=entity.reviewed_by,
            reviewed_at=entity.reviewed_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    def _select(self):
        return select(PaymentProofModel).execution_options(populate_existing=True)

    async def add(self, proof: PaymentProof) -> PaymentProof:
        db_proof = self._to_model(proof)
        self.session.add(db_proof)
        await self.session.flush()
        logger.info("payment_proof_created", proof_id=db_proof.id, order_id=db_proof.order_id)
        return self._to_entity(db_proof)

    async def get_by_id(self, proof_id: int) -> Optional[PaymentProof]:
        result = await self.session.execute(self._select().where(PaymentProofModel.id == proof_id))
        db_proof = result.scalar_one_or_none()
        return self._to_entity(db_proof) if db_proof else None

    async def list_by_order(self, order_id: str) -> List[PaymentProof]:
        result = await self.session.execute(
            self._select()
            .where(PaymentProofModel.order_id == order_id)
            .order_by(PaymentProofModel.created_at.asc(), PaymentProofModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_pending(self, skip: int = 0, limit: int = 20) -> List[PaymentProof]:
        result = await self.session.execute(
            self._select()
            .where(PaymentProofModel.status == ProofStatus.PENDING.value)
            .order_by(PaymentProofModel.created_at.asc(), PaymentProofModel.id.asc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_pending(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(PaymentProofModel)
            .where(PaymentProofModel.status == ProofStatus.PENDING.value)
        )
        return int(result.scalar_one())

    async def record_decision(self, proof: PaymentProof) -> bool:
        """只有仍处于 pending 的凭证才会被写入审核结果"""
        result = await self.session.execute(
            update(PaymentProofModel)
            .where(
                PaymentProofModel.id == proof.id,
                PaymentProofModel.status == ProofStatus.PENDING.value,
            )
            .values(
                status=proof.status.value,
                notes=proof.notes,
                reviewed_by=proof.reviewed_by,
                reviewed_at=proof.reviewed_at,
                updated_at=proof.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        decided = result.rowcount == 1
        if not decided:
            logger.info("payment_proof_decision_conflict", proof_id=proof.id, status=proof.status.value)
        return decided

    async def reject_pending_for_order(self, order_id: str, *, reason: str, reviewed_at: datetime) -> int:
        result = await self.session.execute(
            update(PaymentProofModel)
            .where(
                PaymentProofModel.order_id == order_id,
                PaymentProofModel.status == ProofStatus.PENDING.value,
            )
            .values(
                status=ProofStatus.REJECTED.value,
                notes=reason,
                reviewed_at=reviewed_at,
                updated_at=reviewed_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("payment_proofs_closed", order_id=order_id, count=result.rowcount)
        return result.rowcount
