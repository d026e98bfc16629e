import threading
from datetime import timedelta

import pytest
from django.core.management import call_command

from conftest import BUDGET, MILESTONE_AMOUNT, T0
from escrow.ledger import Balance
from escrow.models import Transaction
from milestone_escrow.clock import FixedClock
from milestone_escrow.exceptions import InvalidTransition
from projects.exceptions import SchedulerSweepItemFailed
from projects.models import Milestone
from projects.scheduler import WARNING_EVENT, AutoApprovalScheduler

pytestmark = pytest.mark.django_db


@pytest.fixture
def scheduler(milestone_service, clock, sink):
    return AutoApprovalScheduler(milestone_service, clock=clock, interval=60, warning_window=(24, 48), sink=sink)


class TestSweep:
    def test_auto_approves_after_grace_period(self, scheduler, ledger, clock, submitted_milestone):
        clock.advance(days=8)

        report = scheduler.sweep()

        assert report.approved == [submitted_milestone.pk]
        assert report.failed == []
        milestone = Milestone.objects.get(pk=submitted_milestone.pk)
        assert milestone.status == Milestone.APPROVED
        assert milestone.auto_approved is True
        assert ledger.get_balance(milestone.project_id) == Balance(
            held=BUDGET - MILESTONE_AMOUNT, released=MILESTONE_AMOUNT, refunded=0, total=BUDGET,
        )

    def test_second_sweep_is_a_no_op(self, scheduler, clock, submitted_milestone):
        clock.advance(days=8)
        scheduler.sweep()
        transactions = Transaction.objects.count()

        report = scheduler.sweep()

        assert (report.approved, report.skipped, report.failed) == ([], [], [])
        assert Transaction.objects.count() == transactions

    def test_nothing_happens_before_the_window(self, scheduler, clock, submitted_milestone):
        clock.advance(days=3)
        report = scheduler.sweep()
        assert (report.approved, report.warned) == ([], [])

    def test_concurrently_moved_milestone_is_skipped(self, scheduler, milestone_service, clock, submitted_milestone, monkeypatch):
        clock.advance(days=8)

        def moved(milestone_id, actor, feedback=None):
            raise InvalidTransition('milestone', Milestone.APPROVED, 'approve')

        monkeypatch.setattr(milestone_service, 'approve', moved)
        report = scheduler.sweep()
        assert report.skipped == [submitted_milestone.pk]
        assert report.failed == []

    def test_deadline_not_yet_reached_at_approval_is_skipped(self, milestone_service, sink, submitted_milestone):
        sweep_clock = FixedClock(T0 + timedelta(days=8))
        scheduler = AutoApprovalScheduler(milestone_service, clock=sweep_clock, interval=60, sink=sink)

        report = scheduler.sweep()

        assert (report.approved, report.skipped, report.failed) == ([], [submitted_milestone.pk], [])
        assert Milestone.objects.get(pk=submitted_milestone.pk).status == Milestone.SUBMITTED

    def test_item_failures_are_reported_and_do_not_abort(self, scheduler, milestone_service, project_service,
                                                         funded_project, clock, payer, payee, submitted_milestone,
                                                         monkeypatch):
        other = project_service.add_milestone(funded_project.pk, payer, 'Second page', 50_000)
        milestone_service.start(other.pk, payee)
        milestone_service.submit(other.pk, payee)
        clock.advance(days=8)

        real_approve = milestone_service.approve

        def flaky(milestone_id, actor, feedback=None):
            if milestone_id == submitted_milestone.pk:
                raise RuntimeError('database hiccup')
            return real_approve(milestone_id, actor, feedback)

        monkeypatch.setattr(milestone_service, 'approve', flaky)
        report = scheduler.sweep()

        assert report.approved == [other.pk]
        assert len(report.failed) == 1
        failure = report.failed[0]
        assert isinstance(failure, SchedulerSweepItemFailed)
        assert failure.milestone_id == submitted_milestone.pk
        assert isinstance(failure.cause, RuntimeError)

        monkeypatch.setattr(milestone_service, 'approve', real_approve)
        assert scheduler.sweep().approved == [submitted_milestone.pk]


class TestWarnings:
    def test_warning_sent_once_per_submission(self, scheduler, milestone_service, clock, sink, submitted_milestone,
                                              payer, payee, django_capture_on_commit_callbacks):
        clock.advance(days=7, hours=-36)

        with django_capture_on_commit_callbacks(execute=True):
            first = scheduler.sweep()
        with django_capture_on_commit_callbacks(execute=True):
            second = scheduler.sweep()

        assert first.warned == [submitted_milestone.pk]
        assert second.warned == []
        warnings = sink.of_type(WARNING_EVENT)
        assert len(warnings) == 1
        assert warnings[0]['milestone_id'] == submitted_milestone.pk
        assert warnings[0]['hours_remaining'] == 36.0

        milestone_service.request_revision(submitted_milestone.pk, payer)
        milestone_service.resume_work(submitted_milestone.pk, payee)
        resubmitted = milestone_service.submit(submitted_milestone.pk, payee)
        assert resubmitted.auto_approval_warning_sent is False

    @pytest.mark.parametrize('hours_left, expected', [(49, False), (48, True), (25, True), (24, False), (12, False)])
    def test_window_bounds(self, scheduler, clock, submitted_milestone, hours_left, expected):
        clock.set(submitted_milestone.auto_approval_deadline)
        clock.advance(hours=-hours_left)
        report = scheduler.sweep()
        assert (report.warned == [submitted_milestone.pk]) is expected


class TestLifecycle:
    def test_start_and_stop(self, scheduler, monkeypatch):
        swept = threading.Event()
        monkeypatch.setattr(scheduler, 'sweep', swept.set)

        scheduler.start()
        assert swept.wait(5)
        assert scheduler.is_running

        assert scheduler.stop(timeout=5) is True
        assert not scheduler.is_running

    def test_stop_before_start(self, scheduler):
        assert scheduler.stop(timeout=1) is True


def test_run_once_command(milestone, capsys):
    call_command('run_auto_approval', '--once')
    assert 'Sweep finished: approved=0 warned=0 skipped=0 failed=0' in capsys.readouterr().out
