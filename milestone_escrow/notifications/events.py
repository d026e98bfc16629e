"""
Event feed for committed transitions.

``record_transition`` writes a ``LifecycleEvent`` row inside the caller's
atomic block and schedules sink delivery with ``transaction.on_commit``, so a
rolled-back transition never notifies anyone and a failing sink never rolls
a transition back.
"""
import logging
from functools import partial

from django.db import transaction
from django.utils import timezone

from accounts.roles import actor_label
from .models import LifecycleEvent
from .serializers import LifecycleEventSerializer
from .sinks import get_notification_sink

logger = logging.getLogger(__name__)
audit = logging.getLogger('audit')


def dispatch(sink, event_type, payload):
    try:
        sink.emit(event_type, payload)
    except Exception:
        logger.exception(f"Notification sink {type(sink).__name__} failed for {event_type}")


def notify(event_type, payload, sink=None):
    """Deliver ``payload`` to the sink once the current transaction commits."""
    transaction.on_commit(partial(dispatch, sink or get_notification_sink(), event_type, payload))


def record_transition(*, entity_type, entity_id, event_type, old_status='', new_status='',
                      actor=None, payload=None, occurred_at=None, sink=None):
    event = LifecycleEvent.objects.create(
        entity_type=entity_type,
        entity_id=entity_id,
        event_type=event_type,
        old_status=old_status or '',
        new_status=new_status or '',
        actor=actor_label(actor),
        payload=payload or {},
        occurred_at=occurred_at or timezone.now(),
    )
    audit.info(f"{event.actor} {event_type} {entity_type}#{entity_id}: {old_status or '-'} -> {new_status or '-'}")
    notify(event_type, LifecycleEventSerializer(event).data, sink=sink)
    return event


def events_for(entity_type, entity_id):
    return LifecycleEvent.objects.filter(entity_type=entity_type, entity_id=entity_id)
