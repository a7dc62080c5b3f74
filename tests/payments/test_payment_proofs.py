import pytest

from application.dtos.orders import SubmitProofRequest
from domain.common.exceptions import (
    AlreadyDecided,
    InvalidProofArtifact,
    InvalidStateTransition,
    PaymentProofNotFound,
    ProofNotAccepted,
)
from domain.order.state_machine import OrderStatus, PaymentStatus


def _proof(url="proofs/2026/transfer.jpg", **kwargs):
    return SubmitProofRequest(proof_url=url, **kwargs)


@pytest.mark.asyncio
async def test_reject_then_resubmit_then_approve(place_order, proof_service, order_service, load_order, audit):
    created = await place_order("bank_transfer", customer={"name": "Sari", "email": "sari@example.com"})

    first = await proof_service.submit_proof(created.id, "user-1", _proof())
    assert first.status == "pending"
    assert first.amount == created.total
    assert (await load_order(created.id)).status is OrderStatus.PAYMENT_REVIEW

    rejected = await proof_service.reject(first.id, "reviewer-1", "Amount does not match")
    assert rejected.status == "pending_payment"
    assert rejected.payment_last_error == "Amount does not match"

    second = await proof_service.submit_proof(created.id, "user-1", _proof("https://cdn.example.com/p/2.png"))
    approved = await proof_service.approve(second.id, "reviewer-2")
    assert approved.status == "paid"
    assert approved.payment_status == "paid"
    assert approved.paid_at is not None

    detail = await order_service.get_order(created.id, "user-1")
    assert [(p.id, p.status) for p in detail.proofs] == [(first.id, "rejected"), (second.id, "approved")]
    assert detail.proofs[1].reviewed_by == "reviewer-2"
    assert "ProofRejected" in audit.names
    assert audit.names[-1] == "OrderPaid"


@pytest.mark.asyncio
async def test_decided_proof_cannot_be_decided_again(place_order, proof_service):
    created = await place_order("bank_transfer")
    proof = await proof_service.submit_proof(created.id, "user-1", _proof())
    await proof_service.approve(proof.id, "reviewer-1")

    with pytest.raises(AlreadyDecided):
        await proof_service.reject(proof.id, "reviewer-2", "too late")
    with pytest.raises(AlreadyDecided):
        await proof_service.approve(proof.id, "reviewer-2")


@pytest.mark.asyncio
async def test_no_second_proof_while_in_review(place_order, proof_service):
    created = await place_order("bank_transfer")
    await proof_service.submit_proof(created.id, "user-1", _proof())
    with pytest.raises(InvalidStateTransition):
        await proof_service.submit_proof(created.id, "user-1", _proof())


@pytest.mark.asyncio
async def test_paid_order_does_not_accept_proofs(place_order, proof_service, load_order):
    created = await place_order("bank_transfer")
    proof = await proof_service.submit_proof(created.id, "user-1", _proof())
    await proof_service.approve(proof.id, "reviewer-1")

    with pytest.raises(ProofNotAccepted):
        await proof_service.submit_proof(created.id, "user-1", _proof())
    assert (await load_order(created.id)).payment_status is PaymentStatus.PAID


@pytest.mark.asyncio
async def test_gateway_order_does_not_accept_proofs(place_order, proof_service):
    created = await place_order("stripe")
    with pytest.raises(ProofNotAccepted):
        await proof_service.submit_proof(created.id, "user-1", _proof())


@pytest.mark.asyncio
async def test_unknown_proof(proof_service):
    with pytest.raises(PaymentProofNotFound):
        await proof_service.approve(404, "reviewer-1")


@pytest.mark.asyncio
async def test_pending_queue(place_order, proof_service):
    a = await place_order("bank_transfer")
    b = await place_order("bank_transfer", user_id="user-2")
    proof_a = await proof_service.submit_proof(a.id, "user-1", _proof())
    proof_b = await proof_service.submit_proof(b.id, "user-2", _proof())
    await proof_service.reject(proof_a.id, "reviewer-1", "unreadable")

    pending, total = await proof_service.list_pending(page=1, size=10)
    assert total == 1
    assert [p.id for p in pending] == [proof_b.id]


@pytest.mark.parametrize(
    "request_kwargs,field",
    [
        ({"url": "ftp://files.example.com/p.jpg"}, "proof_url"),
        ({"url": "javascript:alert(1)"}, "proof_url"),
        ({"url": "//evil.example.com/p.jpg"}, "proof_url"),
        ({"url": "proofs/../../etc/passwd.png"}, "proof_url"),
        ({"url": "proofs/statement.pdf"}, "content_type"),
        ({"url": "proofs/blob"}, "content_type"),
        ({"url": "proofs/p.jpg", "size_bytes": 6 * 1024 * 1024}, "size_bytes"),
    ],
)
def test_invalid_artifacts(proof_service, request_kwargs, field):
    with pytest.raises(InvalidProofArtifact) as exc_info:
        proof_service.validate_artifact(_proof(**request_kwargs))
    assert exc_info.value.field == field


def test_content_type_is_inferred_or_taken_from_request(proof_service):
    assert proof_service.validate_artifact(_proof("proofs/p.PNG")) == "image/png"
    assert proof_service.validate_artifact(_proof("proofs/blob", content_type="image/webp")) == "image/webp"
