import logging

import pytest

from notifications.events import dispatch, events_for, record_transition
from notifications.models import LifecycleEvent
from notifications.sinks import (
    BaseNotificationSink, InMemoryNotificationSink, LoggingNotificationSink, get_notification_sink,
)

pytestmark = pytest.mark.django_db


class ExplodingSink(BaseNotificationSink):
    def emit(self, event_type, payload):
        raise ConnectionError('smtp down')


class TestRecordTransition:
    def test_event_is_persisted_and_delivered_after_commit(self, sink, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            event = record_transition(
                entity_type='milestone', entity_id=7, event_type='milestone.started',
                old_status='pending', new_status='in_progress', payload={'amount': 100}, sink=sink,
            )
            assert sink.emitted == []

        assert len(callbacks) == 1
        assert event.actor == 'system'
        assert list(events_for('milestone', 7)) == [event]
        [(event_type, payload)] = sink.emitted
        assert event_type == 'milestone.started'
        assert payload['new_status'] == 'in_progress'
        assert payload['payload'] == {'amount': 100}

    def test_rolled_back_transition_is_never_delivered(self, sink, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            record_transition(entity_type='dispute', entity_id=1, event_type='dispute.opened', sink=sink)
        assert len(callbacks) == 1
        assert sink.emitted == []

    def test_sink_failure_never_fails_a_transition(self, milestone_service, submitted_milestone, payer,
                                                   django_capture_on_commit_callbacks, caplog):
        milestone_service.sink = ExplodingSink()
        milestone_service.ledger.sink = milestone_service.sink

        with caplog.at_level(logging.ERROR, logger='notifications.events'):
            with django_capture_on_commit_callbacks(execute=True):
                milestone = milestone_service.approve(submitted_milestone.pk, payer)

        assert milestone.status == 'approved'
        assert LifecycleEvent.objects.filter(event_type='milestone.approved').exists()
        assert 'smtp down' in caplog.text


class TestSinks:
    def test_dispatch_swallows_sink_errors(self, caplog):
        with caplog.at_level(logging.ERROR, logger='notifications.events'):
            dispatch(ExplodingSink(), 'milestone.approved', {})
        assert 'ExplodingSink failed for milestone.approved' in caplog.text

    def test_in_memory_sink_filters_by_type(self):
        sink = InMemoryNotificationSink()
        sink.emit('a', {'n': 1})
        sink.emit('b', {'n': 2})
        sink.emit('a', {'n': 3})
        assert sink.of_type('a') == [{'n': 1}, {'n': 3}]
        sink.clear()
        assert sink.emitted == []

    def test_factory(self, settings):
        settings.NOTIFICATION_SINK = 'logging'
        assert isinstance(get_notification_sink(), LoggingNotificationSink)
        assert isinstance(get_notification_sink('memory'), InMemoryNotificationSink)
        with pytest.raises(ValueError):
            get_notification_sink('pigeon')
