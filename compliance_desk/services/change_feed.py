"""
Compliance Desk
Change Feed — in-process publish/subscribe for record changes.

Services call ``publish`` after a successful commit. Two consumers:
    - in-process subscribers registered per table (callbacks)
    - pollers reading the ring buffer by sequence number
      (``GET /api/v1/changes?since=N``), which drives UI refresh

The feed is advisory: a subscriber that raises is logged and skipped, and
a poller that falls behind the buffer simply re-reads current state.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Callable

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

_DEFAULT_BUFFER = 1000

_lock = threading.Lock()
_sequence = itertools.count(1)
_buffer: list[dict] = []
_subscribers: dict[str, list[Callable[[dict], None]]] = {}


def _max_buffer() -> int:
    if has_app_context():
        return int(current_app.config.get("CHANGE_FEED_BUFFER", _DEFAULT_BUFFER))
    return _DEFAULT_BUFFER


def publish(table: str, event: str, record: dict) -> dict:
    """Append a change event and fan it out to subscribers.

    Args:
        table: Table name, e.g. "compliance_assignments".
        event: INSERT | UPDATE | DELETE.
        record: Serialised row (``to_dict()``) after the change.
    """
    with _lock:
        entry = {
            "seq": next(_sequence),
            "ts": time.time(),
            "table": table,
            "event": event,
            "record": record,
        }
        _buffer.append(entry)
        limit = _max_buffer()
        if len(_buffer) > limit:
            del _buffer[:len(_buffer) - limit]
        callbacks = list(_subscribers.get(table, ())) + list(_subscribers.get("*", ()))

    for callback in callbacks:
        try:
            callback(entry)
        except Exception:
            logger.exception("Change feed subscriber %r failed for %s/%s",
                             callback, table, event)
    return entry


def subscribe(table: str, callback: Callable[[dict], None]) -> Callable[[], None]:
    """Register ``callback`` for events on ``table`` ("*" for all tables).

    Returns a function that removes the subscription.
    """
    with _lock:
        _subscribers.setdefault(table, []).append(callback)

    def _unsubscribe():
        with _lock:
            callbacks = _subscribers.get(table, [])
            if callback in callbacks:
                callbacks.remove(callback)

    return _unsubscribe


def changes_since(
    seq: int = 0,
    table: str | None = None,
    limit: int = 200,
    predicate: Callable[[dict], bool] | None = None,
) -> dict:
    """Return buffered events with ``seq > since``, oldest first.

    ``predicate`` filters events before ``limit`` is applied. ``latest_seq``
    is the resume cursor: the last event scanned, so polling again with
    ``since=latest_seq`` picks up exactly where this page stopped.
    ``has_more`` is True when the page was cut short by ``limit``.
    ``truncated`` is True when events after ``seq`` have already been evicted;
    the caller should reload full state instead of applying deltas.
    """
    with _lock:
        oldest = _buffer[0]["seq"] if _buffer else None
        pending = [e for e in _buffer if e["seq"] > seq]
    truncated = oldest is not None and seq > 0 and seq < oldest - 1

    items = []
    cursor = seq
    has_more = False
    for entry in pending:
        if table is not None and entry["table"] != table:
            cursor = entry["seq"]
            continue
        if predicate is not None and not predicate(entry):
            cursor = entry["seq"]
            continue
        if len(items) >= limit:
            has_more = True
            break
        items.append(entry)
        cursor = entry["seq"]
    return {
        "items": items,
        "latest_seq": cursor,
        "has_more": has_more,
        "truncated": truncated,
    }


def reset() -> None:
    """Clear buffer and subscribers (for testing)."""
    with _lock:
        _buffer.clear()
        _subscribers.clear()
