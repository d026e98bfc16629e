import logging

from django.db import transaction
from django.db.models import Sum

from milestone_escrow.clock import SystemClock
from milestone_escrow.exceptions import InvalidTransition, PaymentGatewayError
from notifications.events import record_transition
from payments.gateways import get_payment_gateway
from projects.models import Project
from .exceptions import (
    FundingLimitExceeded, InsufficientHeldFunds, LedgerInvariantViolation, ResolutionAmountMismatch,
)
from .fees import FeeSchedule, NO_FEES
from .ledger import Balance, FUNDED, remaining_capacity, require_positive
from .models import EscrowAccount, Transaction
from .serializers import DepositSerializer

logger = logging.getLogger(__name__)

SETTLEMENT_TYPES = (
    Transaction.MILESTONE_RELEASE,
    Transaction.REFUND,
    Transaction.DISPUTE_PAYMENT,
    Transaction.DISPUTE_REFUND,
)


class LedgerService:
    """
    Moves money between the payer, the project escrow and the payee.

    Every public mutation runs in one atomic block with the escrow row locked,
    performs the gateway call, updates the balances and writes exactly the
    Transaction rows that describe the movement. A gateway failure rolls the
    block back and leaves a FAILED Transaction behind for the audit trail.
    """

    def __init__(self, gateway=None, fee_schedule=None, clock=None, sink=None):
        self.gateway = gateway or get_payment_gateway()
        self.fees = fee_schedule or FeeSchedule.from_settings()
        self.clock = clock or SystemClock()
        self.sink = sink

    # Reads

    def get_balance(self, project_id) -> Balance:
        account = EscrowAccount.objects.filter(project_id=project_id).first()
        if account is None:
            return Balance()
        return account.balance

    def transactions_for(self, project_id):
        return Transaction.objects.filter(project_id=project_id).select_related('milestone', 'dispute')

    def unsettled_amount(self, milestone):
        """The part of ``milestone.amount`` not yet paid out or refunded."""
        settled = Transaction.objects.filter(
            milestone=milestone,
            status=Transaction.COMPLETED,
            transaction_type__in=SETTLEMENT_TYPES,
        ).aggregate(total=Sum('amount'))['total'] or 0
        return max(milestone.amount - settled, 0)

    # Mutations

    def deposit(self, project_id, amount, payment_method=None, actor=None):
        require_positive(amount)
        data = {'amount': amount}
        if payment_method is not None:
            data['payment_method'] = payment_method
        serializer = DepositSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        payment_method = serializer.validated_data.get('payment_method') or None

        project = Project.objects.select_related('payer').get(pk=project_id)
        fees = self.fees.payer_fees(amount)

        try:
            with transaction.atomic():
                account, _ = EscrowAccount.objects.select_for_update().get_or_create(
                    project=project,
                    defaults={'currency': project.currency},
                )
                if account.status == FUNDED:
                    raise InvalidTransition('escrow', account.status, 'deposit into')

                balance = account.balance
                capacity = remaining_capacity(balance, project.budget)
                if amount > capacity:
                    raise FundingLimitExceeded(
                        f"Deposit of {amount} exceeds the remaining budget of {capacity}."
                    )

                reference = self.gateway.charge_payer(amount + fees.total, project.currency, payment_method)
                entry = self._move(
                    account, project, balance.deposit(amount),
                    transaction_type=Transaction.DEPOSIT,
                    amount=amount,
                    net_amount=amount,
                    fees=fees,
                    source_party=project.payer,
                    reference=reference,
                    description=f"Deposit into escrow for {project.title}",
                    actor=actor,
                )
        except PaymentGatewayError as exc:
            self._record_failure(
                project, Transaction.DEPOSIT, amount, exc,
                fees=fees, source_party=project.payer,
            )
            raise

        logger.info(f"Deposited {amount} {project.currency} into escrow for project {project.pk}")
        return entry

    def release(self, milestone, amount, actor=None):
        require_positive(amount)
        project = milestone.project
        fees = self.fees.payee_fees(amount)

        try:
            with transaction.atomic():
                account = self._lock_account(project, amount)
                new_balance = account.balance.release(amount)
                reference = self.gateway.pay_out_to_payee(
                    amount - fees.total, project.currency, project.payee.payout_destination,
                )
                entry = self._move(
                    account, project, new_balance,
                    transaction_type=Transaction.MILESTONE_RELEASE,
                    amount=amount,
                    net_amount=amount - fees.total,
                    fees=fees,
                    destination_party=project.payee,
                    milestone=milestone,
                    reference=reference,
                    description=f"Release for milestone '{milestone.title}'",
                    actor=actor,
                )
        except PaymentGatewayError as exc:
            self._record_failure(
                project, Transaction.MILESTONE_RELEASE, amount, exc,
                fees=fees, destination_party=project.payee, milestone=milestone,
            )
            raise

        logger.info(f"Released {amount} for milestone {milestone.pk}, payee fee {fees.total}")
        return entry

    def refund(self, project_id, amount, reason, milestone=None, actor=None):
        """
        Return held funds to the payer. A refund larger than the latest deposit
        is drawn from several deposit charges, one Transaction per charge.
        """
        require_positive(amount)
        project = Project.objects.select_related('payer', 'payee').get(pk=project_id)

        try:
            with transaction.atomic():
                account = self._lock_account(project, amount)
                new_balance = account.balance.refund(amount)
                entries = self._refund_to_payer(
                    account, project, amount,
                    transaction_type=Transaction.REFUND,
                    milestone=milestone,
                    description=reason,
                )
                self._save_balance(account, project, new_balance, f"escrow.{Transaction.REFUND}", actor, {
                    'transaction_ids': [entry.pk for entry in entries],
                    'amount': amount,
                    'milestone_id': milestone.pk if milestone else None,
                })
        except PaymentGatewayError as exc:
            self._record_failure(
                project, Transaction.REFUND, amount, exc,
                destination_party=project.payer, milestone=milestone, description=reason,
            )
            raise

        logger.info(f"Refunded {amount} to payer of project {project.pk}: {reason}")
        return entries

    def split_on_dispute_resolution(self, dispute, amount_to_payee, amount_to_payer, actor=None):
        """
        Settle a disputed milestone. Zero legs are skipped; no platform fee is taken.
        Returns the Transaction rows written, payee leg first.
        """
        milestone = dispute.milestone
        project = milestone.project
        if amount_to_payee < 0 or amount_to_payer < 0 or amount_to_payee + amount_to_payer != milestone.amount:
            raise ResolutionAmountMismatch(
                f"{amount_to_payee} + {amount_to_payer} does not equal the milestone amount {milestone.amount}."
            )

        entries = []
        with transaction.atomic():
            account = self._lock_account(project, milestone.amount)
            new_balance = account.balance.split(amount_to_payee, amount_to_payer)

            if amount_to_payee:
                reference = self.gateway.pay_out_to_payee(
                    amount_to_payee, project.currency, project.payee.payout_destination,
                )
                entries.append(self._write(
                    account, project,
                    transaction_type=Transaction.DISPUTE_PAYMENT,
                    amount=amount_to_payee,
                    net_amount=amount_to_payee,
                    destination_party=project.payee,
                    milestone=milestone,
                    dispute=dispute,
                    reference=reference,
                    description=f"Dispute #{dispute.pk} settlement to payee",
                ))
            if amount_to_payer:
                entries.extend(self._refund_to_payer(
                    account, project, amount_to_payer,
                    transaction_type=Transaction.DISPUTE_REFUND,
                    milestone=milestone,
                    dispute=dispute,
                    description=f"Dispute #{dispute.pk} settlement to payer",
                ))

            self._save_balance(account, project, new_balance, 'escrow.dispute_settled', actor, {
                'dispute_id': dispute.pk,
                'milestone_id': milestone.pk,
                'amount_to_payee': amount_to_payee,
                'amount_to_payer': amount_to_payer,
            })

        logger.info(f"Settled dispute {dispute.pk}: {amount_to_payee} to payee, {amount_to_payer} to payer")
        return entries

    def record_fee(self, project, payer, amount, dispute=None, payment_method=None):
        """Charge a flat fee (e.g. the dispute filing fee). Escrow balances do not change."""
        require_positive(amount)
        description = f"Dispute #{dispute.pk} filing fee" if dispute else "Platform fee"
        try:
            with transaction.atomic():
                reference = self.gateway.charge_payer(amount, project.currency, payment_method)
                entry = Transaction.objects.create(
                    project=project,
                    escrow=EscrowAccount.objects.filter(project=project).first(),
                    dispute=dispute,
                    milestone=dispute.milestone if dispute else None,
                    transaction_type=Transaction.FEE,
                    amount=amount,
                    net_amount=amount,
                    currency=project.currency,
                    source_party=payer,
                    fee_breakdown=NO_FEES.as_dict(),
                    status=Transaction.COMPLETED,
                    gateway_reference=reference,
                    description=description,
                )
        except PaymentGatewayError as exc:
            self._record_failure(
                project, Transaction.FEE, amount, exc,
                source_party=payer, dispute=dispute, description=description,
            )
            raise
        return entry

    # Internals

    def _lock_account(self, project, amount):
        account = EscrowAccount.objects.select_for_update().filter(project=project).first()
        if account is None:
            raise InsufficientHeldFunds(
                f"Project {project.pk} has no escrow account.",
                project_id=project.pk,
                requested=amount,
            )
        return account

    def _refund_to_payer(self, account, project, amount, *, transaction_type, description, **parties):
        entries = []
        for charge, portion in self._refund_sources(project, amount):
            reference = self.gateway.refund_payer(portion, project.currency, charge)
            entries.append(self._write(
                account, project,
                transaction_type=transaction_type,
                amount=portion,
                net_amount=portion,
                destination_party=project.payer,
                reference=reference,
                charge_reference=charge,
                description=description,
                **parties,
            ))
        return entries

    def _refund_sources(self, project, amount):
        """Split ``amount`` over completed deposit charges, newest first, each capped by what it has left."""
        refunded = dict(
            Transaction.objects.filter(
                project=project,
                status=Transaction.COMPLETED,
                transaction_type__in=(Transaction.REFUND, Transaction.DISPUTE_REFUND),
            )
            .order_by()
            .values_list('charge_reference')
            .annotate(total=Sum('amount'))
        )
        deposits = Transaction.objects.filter(
            project=project,
            transaction_type=Transaction.DEPOSIT,
            status=Transaction.COMPLETED,
        ).order_by('-created_at', '-id')

        sources = []
        remaining = amount
        for deposit in deposits:
            available = deposit.amount - refunded.get(deposit.gateway_reference, 0)
            if available <= 0:
                continue
            portion = min(available, remaining)
            sources.append((deposit.gateway_reference, portion))
            remaining -= portion
            if not remaining:
                break

        if remaining:
            raise LedgerInvariantViolation(
                f"Deposits for project {project.pk} cannot cover a refund of {amount}; {remaining} unaccounted."
            )
        return sources

    def _move(self, account, project, new_balance, *, fees=NO_FEES, actor=None, **fields):
        entry = self._write(account, project, fees=fees, **fields)
        self._save_balance(account, project, new_balance, f"escrow.{entry.transaction_type}", actor, {
            'transaction_id': entry.pk,
            'amount': entry.amount,
            'milestone_id': entry.milestone_id,
        })
        return entry

    def _write(self, account, project, *, transaction_type, amount, net_amount, reference,
               fees=NO_FEES, description='', **parties):
        return Transaction.objects.create(
            project=project,
            escrow=account,
            transaction_type=transaction_type,
            amount=amount,
            net_amount=net_amount,
            currency=project.currency,
            fee_breakdown=fees.as_dict(),
            status=Transaction.COMPLETED,
            gateway_reference=reference,
            description=description,
            **parties,
        )

    def _save_balance(self, account, project, new_balance, event_type, actor, payload):
        old_status = account.status
        account.apply(new_balance, project.budget)
        account.save()
        record_transition(
            entity_type='escrow',
            entity_id=account.pk,
            event_type=event_type,
            old_status=old_status,
            new_status=account.status,
            actor=actor,
            payload={**payload, **new_balance.as_dict()},
            occurred_at=self.clock.now(),
            sink=self.sink,
        )

    def _record_failure(self, project, transaction_type, amount, exc, fees=NO_FEES,
                        description='', **parties):
        with transaction.atomic():
            Transaction.objects.create(
                project=project,
                escrow=EscrowAccount.objects.filter(project=project).first(),
                transaction_type=transaction_type,
                amount=amount,
                net_amount=amount - fees.payee,
                currency=project.currency,
                fee_breakdown=fees.as_dict(),
                status=Transaction.FAILED,
                description=description,
                failure_reason=str(exc.detail),
                **parties,
            )
        logger.error(f"{transaction_type} of {amount} for project {project.pk} failed: {exc.detail}")
