import logging
from itertools import count

from milestone_escrow.exceptions import PaymentGatewayError
from .base import BasePaymentGateway

logger = logging.getLogger(__name__)


class LocalGateway(BasePaymentGateway):
    """
    In-process gateway with deterministic references.

    Every successful call is appended to ``calls``. ``fail_on(operation)``
    makes the next call of that operation raise PaymentGatewayError, which is
    how tests exercise rollback paths.
    """

    name = 'local'

    def __init__(self, prefix='local', **kwargs):
        super().__init__(**kwargs)
        self.prefix = prefix
        self.calls = []
        self._failures = {}
        self._sequence = count(1)

    def fail_on(self, operation, times=1, message='Gateway unavailable'):
        self._failures[operation] = (times, message)

    def _perform(self, operation, amount, currency, target):
        times, message = self._failures.get(operation, (0, ''))
        if times:
            if times == 1:
                del self._failures[operation]
            else:
                self._failures[operation] = (times - 1, message)
            logger.warning(f"Local gateway {operation} failed: {message}")
            raise PaymentGatewayError(message)

        reference = f"{self.prefix}-{operation}-{next(self._sequence)}"
        self.calls.append({
            'operation': operation,
            'amount': amount,
            'currency': currency,
            'target': target,
            'reference': reference,
        })
        logger.info(f"Local gateway {operation} {amount} {currency}: {reference}")
        return reference

    def charge_payer(self, amount, currency, method=None):
        return self._perform('charge', amount, currency, method)

    def pay_out_to_payee(self, amount, currency, destination):
        return self._perform('payout', amount, currency, destination)

    def refund_payer(self, amount, currency, destination):
        return self._perform('refund', amount, currency, destination)
