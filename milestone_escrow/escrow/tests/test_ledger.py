from decimal import Decimal

import pytest

from escrow.exceptions import InsufficientHeldFunds, InvalidAmount, LedgerInvariantViolation
from escrow.fees import FeeSchedule, apply_rate
from escrow.ledger import (
    Balance, FUNDED, NOT_DEPOSITED, PARTIALLY_FUNDED, funding_status, remaining_capacity,
)


def assert_balanced(balance):
    assert balance.held + balance.released + balance.refunded == balance.total


class TestBalance:
    def test_movements_keep_buckets_summing_to_total(self):
        balance = Balance().deposit(500_000)
        for step in (
            lambda b: b.release(100_000),
            lambda b: b.refund(50_000),
            lambda b: b.split(60_000, 40_000),
            lambda b: b.deposit(10_000),
        ):
            balance = step(balance)
            assert_balanced(balance)

        assert balance == Balance(held=260_000, released=160_000, refunded=90_000, total=510_000)

    def test_release_more_than_held_is_rejected(self):
        balance = Balance().deposit(1_000)
        with pytest.raises(InsufficientHeldFunds):
            balance.release(1_001)

    def test_split_requires_held_funds_for_both_legs(self):
        balance = Balance().deposit(1_000)
        with pytest.raises(InsufficientHeldFunds):
            balance.split(600, 500)

    def test_zero_leg_split_is_allowed(self):
        balance = Balance().deposit(1_000).split(1_000, 0)
        assert balance.released == 1_000
        assert balance.refunded == 0

    @pytest.mark.parametrize('amount', [0, -5, 1.5, '100', True])
    def test_amounts_must_be_positive_integers(self, amount):
        with pytest.raises(InvalidAmount):
            Balance().deposit(amount)

    def test_inconsistent_balance_cannot_be_built(self):
        with pytest.raises(LedgerInvariantViolation):
            Balance(held=10, released=0, refunded=0, total=11)


class TestFundingStatus:
    def test_status_follows_committed_funds(self):
        assert funding_status(Balance(), 1_000) == NOT_DEPOSITED
        assert funding_status(Balance().deposit(400), 1_000) == PARTIALLY_FUNDED
        assert funding_status(Balance().deposit(1_000), 1_000) == FUNDED

    def test_refund_reopens_funding(self):
        balance = Balance().deposit(1_000).refund(300)
        assert funding_status(balance, 1_000) == PARTIALLY_FUNDED
        assert remaining_capacity(balance, 1_000) == 300


class TestFees:
    def test_rates_round_half_up(self):
        assert apply_rate(50, Decimal('0.019')) == 1
        assert apply_rate(26, Decimal('0.019')) == 0
        assert apply_rate(100_000, Decimal('0.036')) == 3_600

    def test_payer_and_payee_fees_from_settings(self):
        fees = FeeSchedule.from_settings()

        deposit = fees.payer_fees(500_000)
        assert deposit.platform == 9_500
        assert deposit.processing == 0
        assert deposit.total == 9_500

        release = fees.payee_fees(100_000)
        assert release.as_dict() == {'platform': 0, 'processing': 0, 'payee': 3_600, 'total': 3_600}
