"""Order aggregate: entity, state machine, events and repository contracts."""
from .entity import CustomerContact, Order, OrderItem, PaymentProof, ProofStatus
from .state_machine import OrderStatus, PaymentStatus

__all__ = [
    "CustomerContact",
    "Order",
    "OrderItem",
    "PaymentProof",
    "ProofStatus",
    "OrderStatus",
    "PaymentStatus",
]
