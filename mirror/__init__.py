"""Event-replay mirror of the registration accumulator."""

from .event_mirror import (
    COMMIT_TOPIC,
    MirrorError,
    MirrorDivergence,
    EventSourceError,
    InsertionEvent,
    order_events,
    rebuild,
    save_event_log,
    load_event_log,
    EventMirror,
    JsonRpcEventSource,
)

__all__ = [
    'COMMIT_TOPIC',
    'MirrorError',
    'MirrorDivergence',
    'EventSourceError',
    'InsertionEvent',
    'order_events',
    'rebuild',
    'save_event_log',
    'load_event_log',
    'EventMirror',
    'JsonRpcEventSource',
]
