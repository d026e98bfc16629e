"""
Balance arithmetic for a project escrow.

``Balance`` is a frozen value; every movement returns a new one and the
constructor refuses any state where ``held + released + refunded != total``
or a bucket goes negative.
"""
from dataclasses import dataclass

from .exceptions import InsufficientHeldFunds, InvalidAmount, LedgerInvariantViolation

NOT_DEPOSITED = 'not_deposited'
PARTIALLY_FUNDED = 'partially_funded'
FUNDED = 'funded'


def require_positive(amount):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Expected a positive integer amount, got {amount!r}.")


@dataclass(frozen=True)
class Balance:
    held: int = 0
    released: int = 0
    refunded: int = 0
    total: int = 0

    def __post_init__(self):
        if min(self.held, self.released, self.refunded, self.total) < 0:
            raise LedgerInvariantViolation('Escrow bucket went negative.', **self.as_dict())
        if self.held + self.released + self.refunded != self.total:
            raise LedgerInvariantViolation(**self.as_dict())

    @classmethod
    def of(cls, account):
        return cls(
            held=account.held_amount,
            released=account.released_amount,
            refunded=account.refunded_amount,
            total=account.total_amount,
        )

    @property
    def committed(self):
        """Funds deposited and not returned to the payer."""
        return self.held + self.released

    def as_dict(self):
        return {
            'held': self.held,
            'released': self.released,
            'refunded': self.refunded,
            'total': self.total,
        }

    def deposit(self, amount):
        require_positive(amount)
        return Balance(self.held + amount, self.released, self.refunded, self.total + amount)

    def release(self, amount):
        require_positive(amount)
        self._require_held(amount)
        return Balance(self.held - amount, self.released + amount, self.refunded, self.total)

    def refund(self, amount):
        require_positive(amount)
        self._require_held(amount)
        return Balance(self.held - amount, self.released, self.refunded + amount, self.total)

    def split(self, to_payee, to_payer):
        if to_payee < 0 or to_payer < 0:
            raise InvalidAmount('Split legs cannot be negative.')
        self._require_held(to_payee + to_payer)
        return Balance(
            self.held - to_payee - to_payer,
            self.released + to_payee,
            self.refunded + to_payer,
            self.total,
        )

    def _require_held(self, amount):
        if self.held < amount:
            raise InsufficientHeldFunds(
                f"Escrow holds {self.held}, cannot move {amount}.",
                held=self.held,
                requested=amount,
            )


def funding_status(balance, budget):
    if balance.total == 0:
        return NOT_DEPOSITED
    if balance.committed >= budget:
        return FUNDED
    return PARTIALLY_FUNDED


def remaining_capacity(balance, budget):
    return max(budget - balance.committed, 0)
