"""
Milestone state machine.

Each transition takes a frozen ``MilestoneSnapshot`` plus the acting role and
returns an ``Outcome``: the next snapshot, the ledger movements the service
must perform, and the event describing the change. Nothing here touches the
database; ``MilestoneService`` loads, locks, applies and persists.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Optional

from accounts.roles import PAYEE, PAYER, SYSTEM
from milestone_escrow.exceptions import InvalidTransition, NotAuthorized
from .exceptions import RevisionLimitExceeded
from .models import Milestone

RESUME_STATUSES = (Milestone.APPROVED, Milestone.PARTIALLY_APPROVED, Milestone.REVISION_REQUESTED)
TERMINAL_STATUSES = (Milestone.APPROVED, Milestone.PARTIALLY_APPROVED, Milestone.CANCELLED)
CANCELLABLE_STATUSES = (Milestone.PENDING, Milestone.IN_PROGRESS, Milestone.REVISION_REQUESTED)
DISPUTABLE_STATUSES = (Milestone.SUBMITTED, Milestone.IN_PROGRESS)

RELEASE = 'release'
REFUND = 'refund'


@dataclass(frozen=True)
class MilestoneSnapshot:
    id: int
    status: str
    amount: int
    grace_period_days: int
    max_revisions: int
    revision_count: int = 0
    revision_history: tuple = ()
    submission_notes: str = ''
    deliverables: tuple = ()
    submitted_at: Optional[datetime] = None
    auto_approval_deadline: Optional[datetime] = None
    auto_approval_warning_sent: bool = False
    approved_at: Optional[datetime] = None
    auto_approved: bool = False
    feedback: str = ''
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, milestone):
        project = milestone.project
        return cls(
            id=milestone.pk,
            status=milestone.status,
            amount=milestone.amount,
            grace_period_days=project.grace_period_days,
            max_revisions=project.max_revisions,
            revision_count=milestone.revision_count,
            revision_history=tuple(milestone.revision_history or ()),
            submission_notes=milestone.submission_notes,
            deliverables=tuple(milestone.deliverables or ()),
            submitted_at=milestone.submitted_at,
            auto_approval_deadline=milestone.auto_approval_deadline,
            auto_approval_warning_sent=milestone.auto_approval_warning_sent,
            approved_at=milestone.approved_at,
            auto_approved=milestone.auto_approved,
            feedback=milestone.feedback,
            cancelled_at=milestone.cancelled_at,
        )

    def write_to(self, milestone):
        milestone.status = self.status
        milestone.revision_count = self.revision_count
        milestone.revision_history = list(self.revision_history)
        milestone.submission_notes = self.submission_notes
        milestone.deliverables = list(self.deliverables)
        milestone.submitted_at = self.submitted_at
        milestone.auto_approval_deadline = self.auto_approval_deadline
        milestone.auto_approval_warning_sent = self.auto_approval_warning_sent
        milestone.approved_at = self.approved_at
        milestone.auto_approved = self.auto_approved
        milestone.feedback = self.feedback
        milestone.cancelled_at = self.cancelled_at
        return milestone


@dataclass(frozen=True)
class LedgerEffect:
    kind: str
    amount: int
    reason: str = ''


@dataclass(frozen=True)
class Outcome:
    snapshot: MilestoneSnapshot
    event_type: str
    old_status: str
    effects: tuple = ()
    payload: dict = field(default_factory=dict)


def _guard(snapshot, allowed, attempted):
    if snapshot.status not in allowed:
        raise InvalidTransition('milestone', snapshot.status, attempted)


def _require_role(role, *allowed):
    if role not in allowed:
        raise NotAuthorized(f"Role '{role}' may not perform this action.")


def _outcome(old, new, event_type, effects=(), **payload):
    return Outcome(
        snapshot=new,
        event_type=event_type,
        old_status=old.status,
        effects=tuple(effects),
        payload={'milestone_id': old.id, 'amount': old.amount, **payload},
    )


def start(snapshot, role):
    _guard(snapshot, (Milestone.PENDING,), 'start')
    _require_role(role, PAYEE)
    return _outcome(snapshot, replace(snapshot, status=Milestone.IN_PROGRESS), 'milestone.started')


def submit(snapshot, role, now, notes='', deliverables=()):
    _guard(snapshot, (Milestone.IN_PROGRESS,), 'submit')
    _require_role(role, PAYEE)
    deadline = now + timedelta(days=snapshot.grace_period_days)
    new = replace(
        snapshot,
        status=Milestone.SUBMITTED,
        submission_notes=notes or '',
        deliverables=tuple(deliverables),
        submitted_at=now,
        auto_approval_deadline=deadline,
        auto_approval_warning_sent=False,
    )
    return _outcome(
        snapshot, new, 'milestone.submitted',
        auto_approval_deadline=deadline.isoformat(),
        deliverable_count=len(new.deliverables),
    )


def approve(snapshot, role, now, feedback=None):
    _guard(snapshot, (Milestone.SUBMITTED,), 'approve')
    _require_role(role, PAYER, SYSTEM)
    deadline = snapshot.auto_approval_deadline
    if role == SYSTEM and (deadline is None or now < deadline):
        raise NotAuthorized('Auto-approval is only allowed once the review period has passed.')

    auto = role == SYSTEM
    new = replace(
        snapshot,
        status=Milestone.APPROVED,
        approved_at=now,
        auto_approved=auto,
        feedback=feedback if feedback is not None else snapshot.feedback,
    )
    event_type = 'milestone.auto_approved' if auto else 'milestone.approved'
    return _outcome(
        snapshot, new, event_type,
        effects=[LedgerEffect(RELEASE, snapshot.amount)],
        auto_approved=auto,
    )


def request_revision(snapshot, role, now, notes=''):
    _guard(snapshot, (Milestone.SUBMITTED,), 'request revision on')
    _require_role(role, PAYER)
    if snapshot.revision_count >= snapshot.max_revisions:
        raise RevisionLimitExceeded(
            f"Milestone already had {snapshot.revision_count} of {snapshot.max_revisions} revisions."
        )

    count = snapshot.revision_count + 1
    entry = {'revision': count, 'notes': notes or '', 'requested_at': now.isoformat()}
    new = replace(
        snapshot,
        status=Milestone.REVISION_REQUESTED,
        revision_count=count,
        revision_history=snapshot.revision_history + (entry,),
        feedback=notes or '',
        auto_approval_deadline=None,
    )
    return _outcome(snapshot, new, 'milestone.revision_requested', revision_count=count)


def resume_work(snapshot, role):
    _guard(snapshot, (Milestone.REVISION_REQUESTED,), 'resume work on')
    _require_role(role, PAYEE)
    return _outcome(snapshot, replace(snapshot, status=Milestone.IN_PROGRESS), 'milestone.work_resumed')


def raise_dispute(snapshot, role):
    _guard(snapshot, DISPUTABLE_STATUSES, 'dispute')
    _require_role(role, PAYER, PAYEE)
    new = replace(snapshot, status=Milestone.DISPUTED, auto_approval_deadline=None)
    return _outcome(snapshot, new, 'milestone.disputed', raised_by_role=role)


def cancel(snapshot, role, now, reason='', held=0):
    """Cancel before delivery; ``held`` is what escrow still holds for this milestone and goes back to the payer."""
    _guard(snapshot, CANCELLABLE_STATUSES, 'cancel')
    _require_role(role, PAYER)
    refund = min(snapshot.amount, held)
    effects = [LedgerEffect(REFUND, refund, reason or 'Milestone cancelled')] if refund > 0 else []
    new = replace(snapshot, status=Milestone.CANCELLED, cancelled_at=now, feedback=reason or snapshot.feedback)
    return _outcome(snapshot, new, 'milestone.cancelled', effects=effects, refunded=refund)


def resume_from_dispute(snapshot, status, now):
    if status not in RESUME_STATUSES:
        raise InvalidTransition('milestone', snapshot.status, f"resume to '{status}'")
    _guard(snapshot, (Milestone.DISPUTED,), 'resume from dispute')
    approved_at = now if status != Milestone.REVISION_REQUESTED else snapshot.approved_at
    new = replace(snapshot, status=status, approved_at=approved_at)
    return _outcome(snapshot, new, 'milestone.dispute_settled')
