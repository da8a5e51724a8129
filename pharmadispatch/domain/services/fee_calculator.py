"""
Fee Calculator - Order pricing

Pure functions over an injected MarketplaceConfig. All amounts are whole
currency units (XOF has no minor unit); every percentage is rounded up.
"""
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_CEILING
from typing import Union

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import ValidationException
from pharmadispatch.db.models.order import PaymentMode

Number = Union[int, float, Decimal]

# Aliases accepted from clients
PAYMENT_MODE_ALIASES = {
    "platform": PaymentMode.MOBILE_MONEY,
    "on_delivery": PaymentMode.CASH,
}


def normalize_payment_mode(value: Union[str, PaymentMode]) -> PaymentMode:
    if isinstance(value, PaymentMode):
        return value
    if value in PAYMENT_MODE_ALIASES:
        return PAYMENT_MODE_ALIASES[value]
    try:
        return PaymentMode(value)
    except ValueError:
        raise ValidationException(
            f"Unsupported payment mode: {value}",
            field="payment_mode",
        )


def _ceil(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_CEILING)


def _clamp(value: Decimal, lower: Number, upper: Number) -> Decimal:
    return min(Decimal(upper), max(Decimal(lower), value))


@dataclass(frozen=True)
class FeeBreakdown:
    subtotal: Decimal
    delivery_fee: Decimal
    service_fee: Decimal
    payment_fee: Decimal
    total_amount: Decimal

    @property
    def pharmacy_amount(self) -> Decimal:
        return self.subtotal

    def to_dict(self) -> dict:
        data = asdict(self)
        data["pharmacy_amount"] = self.pharmacy_amount
        return data


class FeeCalculator:
    """Delivery, service and payment-processing fees for one order"""

    def __init__(self, config: MarketplaceConfig):
        self.config = config

    def delivery_fee(self, distance_km: Number) -> Decimal:
        """clamp(base + ceil(distance * per_km), min, max)"""
        distance = Decimal(str(distance_km))
        if distance < 0:
            raise ValidationException("Distance must not be negative", field="distance_km")

        fee = Decimal(self.config.delivery_fee_base) + _ceil(
            distance * Decimal(self.config.delivery_fee_per_km)
        )
        return _clamp(fee, self.config.delivery_fee_min, self.config.delivery_fee_max)

    def service_fee(self, subtotal: Number) -> Decimal:
        """clamp(ceil(subtotal * percentage / 100), min, max), or 0 when disabled"""
        if not self.config.apply_service_fee:
            return Decimal("0")

        fee = _ceil(Decimal(str(subtotal)) * self.config.service_fee_percentage / 100)
        return _clamp(fee, self.config.service_fee_min, self.config.service_fee_max)

    def payment_fee(self, amount: Number, payment_mode: Union[str, PaymentMode]) -> Decimal:
        """
        Online payment processing fee on the amount including prior fees.

        Cash is never charged.
        """
        mode = normalize_payment_mode(payment_mode)
        if mode == PaymentMode.CASH or not self.config.apply_payment_fee:
            return Decimal("0")

        percentage_fee = _ceil(
            Decimal(str(amount)) * self.config.payment_processing_percentage / 100
        )
        return Decimal(self.config.payment_processing_fee) + percentage_fee

    def calculate_all(
        self,
        subtotal: Number,
        delivery_fee: Number,
        payment_mode: Union[str, PaymentMode],
    ) -> FeeBreakdown:
        subtotal_dec = Decimal(str(subtotal))
        delivery_dec = Decimal(str(delivery_fee))
        if subtotal_dec < 0 or delivery_dec < 0:
            raise ValidationException("Amounts must not be negative")

        service = self.service_fee(subtotal_dec)
        with_fees = subtotal_dec + delivery_dec + service
        payment = self.payment_fee(with_fees, payment_mode)

        return FeeBreakdown(
            subtotal=subtotal_dec,
            delivery_fee=delivery_dec,
            service_fee=service,
            payment_fee=payment,
            total_amount=with_fees + payment,
        )

    def pricing_parameters(self) -> dict:
        """Published tariff so clients can preview fees before ordering"""
        c = self.config
        return {
            "delivery": {
                "base_fee": c.delivery_fee_base,
                "fee_per_km": c.delivery_fee_per_km,
                "min_fee": c.delivery_fee_min,
                "max_fee": c.delivery_fee_max,
            },
            "service": {
                "service_fee": {
                    "enabled": c.apply_service_fee,
                    "percentage": c.service_fee_percentage,
                    "min": c.service_fee_min,
                    "max": c.service_fee_max,
                },
                "payment_fee": {
                    "enabled": c.apply_payment_fee,
                    "fixed_fee": c.payment_processing_fee,
                    "percentage": c.payment_processing_percentage,
                },
            },
            "currency": c.currency,
        }
