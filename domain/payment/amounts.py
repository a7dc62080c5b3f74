"""
金额规范化 - 将订单金额转换为网关的最小货币单位

每个网关对同一币种的最小单位约定可能不同（例如 Stripe 将 IDR 视为两位小数），
因此指数来自网关自己的配置表，而不是按币种代码推断。
构建出的逐行金额之和必须与订单总额严格一致，否则抛出 AmountMismatch。
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from domain.common.exceptions import AmountMismatch, AmountTooSmall, CurrencyNotSupported
from domain.order.entity import OrderItem


@dataclass(frozen=True)
class NormalizedLine:
    product_id: str
    name: str
    quantity: int
    unit_amount: int  # minor units

    @property
    def amount(self) -> int:
        return self.unit_amount * self.quantity


@dataclass(frozen=True)
class NormalizedAmount:
    provider: str
    currency: str
    exponent: int
    lines: tuple[NormalizedLine, ...]
    total_minor: int

    def format_minor(self, minor: int) -> str:
        """最小单位 -> 十进制字符串（PayPal 等按字符串传金额的网关使用）"""
        return format_minor_units(minor, self.exponent)


def unit_exponent(provider: str, currency: str, unit_exponents: Mapping[str, int]) -> int:
    exponent = unit_exponents.get(currency.upper())
    if exponent is None:
        raise CurrencyNotSupported(provider, currency.upper())
    return int(exponent)


def to_minor_units(amount: Decimal, exponent: int) -> int:
    """精确转换；存在无法表示的小数位时抛出 AmountMismatch，绝不四舍五入"""
    scaled = Decimal(amount).scaleb(exponent)
    if scaled != scaled.to_integral_value():
        raise AmountMismatch(
            f"Amount {amount} cannot be expressed with {exponent} decimal places",
            details={"amount": str(amount), "exponent": exponent},
        )
    return int(scaled)


def format_minor_units(minor: int, exponent: int) -> str:
    value = Decimal(minor).scaleb(-exponent)
    return f"{value:.{exponent}f}"


def ensure_minimum(
    provider: str,
    total: Decimal,
    currency: str,
    minimums: Mapping[str, Decimal],
    default_minimum: Optional[Decimal] = None,
) -> None:
    """网关最低金额校验（业务单位），必须在任何外部调用之前执行"""
    minimum = minimums.get(currency.upper(), default_minimum)
    if minimum is not None and total < Decimal(minimum):
        raise AmountTooSmall(provider, total, Decimal(minimum), currency.upper())


def normalize_order_amount(
    *,
    provider: str,
    total: Decimal,
    currency: str,
    items: Iterable[OrderItem],
    unit_exponents: Mapping[str, int],
) -> NormalizedAmount:
    exponent = unit_exponent(provider, currency, unit_exponents)
    lines = tuple(
        NormalizedLine(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            unit_amount=to_minor_units(item.unit_price, exponent),
        )
        for item in items
    )
    total_minor = to_minor_units(total, exponent)
    reconstructed = sum(line.amount for line in lines)
    if reconstructed != total_minor:
        raise AmountMismatch(
            "Normalized line items do not reconstruct the order total",
            details={
                "provider": provider,
                "currency": currency.upper(),
                "expected_minor": total_minor,
                "reconstructed_minor": reconstructed,
            },
        )
    return NormalizedAmount(
        provider=provider,
        currency=currency.upper(),
        exponent=exponent,
        lines=lines,
        total_minor=total_minor,
    )
