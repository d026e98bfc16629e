from rest_framework import status

from milestone_escrow.exceptions import BusinessRuleError, InvariantViolation


class InvalidAmount(BusinessRuleError):
    default_detail = 'Amount must be a positive number of minor units.'
    default_code = 'invalid_amount'


class FundingLimitExceeded(BusinessRuleError):
    default_detail = 'Deposit would exceed the project budget.'
    default_code = 'funding_limit_exceeded'


class ResolutionAmountMismatch(BusinessRuleError):
    default_detail = 'Resolution amounts must add up to the milestone amount.'
    default_code = 'resolution_amount_mismatch'


class TransactionImmutable(BusinessRuleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Recorded transactions cannot be changed or deleted.'
    default_code = 'transaction_immutable'


class InsufficientHeldFunds(InvariantViolation):
    default_detail = 'Escrow does not hold enough funds for this movement.'
    default_code = 'insufficient_held_funds'


class LedgerInvariantViolation(InvariantViolation):
    default_detail = 'Escrow balances no longer add up.'
    default_code = 'ledger_invariant_violation'
