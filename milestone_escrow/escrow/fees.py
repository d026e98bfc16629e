from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings


def apply_rate(amount: int, rate: Decimal) -> int:
    """Fee on ``amount`` minor units, rounded half-up to a whole minor unit."""
    return int((Decimal(amount) * rate).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class FeeBreakdown:
    platform: int = 0
    processing: int = 0
    payee: int = 0

    @property
    def total(self) -> int:
        return self.platform + self.processing + self.payee

    def as_dict(self) -> dict:
        return {
            'platform': self.platform,
            'processing': self.processing,
            'payee': self.payee,
            'total': self.total,
        }


NO_FEES = FeeBreakdown()


@dataclass(frozen=True)
class FeeSchedule:
    """
    Platform and processing fees are charged to the payer on top of a deposit.
    The payee fee is deducted from the payout when a milestone is released.
    """
    platform_rate: Decimal = Decimal('0')
    processing_rate: Decimal = Decimal('0')
    payee_rate: Decimal = Decimal('0')

    @classmethod
    def from_settings(cls):
        return cls(
            platform_rate=Decimal(str(settings.PLATFORM_FEE_RATE)),
            processing_rate=Decimal(str(settings.PROCESSING_FEE_RATE)),
            payee_rate=Decimal(str(settings.PAYEE_FEE_RATE)),
        )

    def payer_fees(self, amount: int) -> FeeBreakdown:
        return FeeBreakdown(
            platform=apply_rate(amount, self.platform_rate),
            processing=apply_rate(amount, self.processing_rate),
        )

    def payee_fees(self, amount: int) -> FeeBreakdown:
        return FeeBreakdown(payee=apply_rate(amount, self.payee_rate))
