"""
Compliance Desk
Notification Service.

Persists notification intents and hands them to delivery channels.

Two phases:
    emit()     — add the intent to the current transaction (flush only),
                 so it commits atomically with the change that caused it
    deliver()  — after commit, pass the intents to registered channels
                 (email / push / messaging adapters live outside this service)

A channel that raises is logged and skipped; delivery never affects
the workflow that produced the intent.
"""

import logging
from typing import Callable

from sqlalchemy import and_, exists, or_

from compliance_desk.models import _utcnow, db
from compliance_desk.models.notification import (
    BROADCAST,
    NOTIFICATION_PRIORITIES,
    NOTIFICATION_TYPES,
    Notification,
    NotificationRead,
)

logger = logging.getLogger(__name__)

_channels: list[Callable[[Notification], None]] = []


def register_channel(channel: Callable[[Notification], None]) -> None:
    """Register a delivery callback invoked once per persisted intent."""
    if channel not in _channels:
        _channels.append(channel)


def clear_channels() -> None:
    _channels.clear()


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def emit(*, type, recipient, title, message="", priority="medium", task_id=None):
        """
        Stage one intent in the current session.

        Returns:
            The flushed Notification; the caller commits.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")
        if priority not in NOTIFICATION_PRIORITIES:
            raise ValueError(f"Unknown notification priority: {priority}")
        notif = Notification(
            recipient=recipient or BROADCAST,
            type=type,
            priority=priority,
            title=title,
            message=message,
            task_id=task_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    @staticmethod
    def deliver(notifications):
        """Hand committed intents to every registered channel."""
        delivered = 0
        for notif in notifications:
            for channel in list(_channels):
                try:
                    channel(notif)
                    delivered += 1
                except Exception:
                    logger.exception("Notification channel %r failed for %s", channel, notif.id)
        return delivered

    @staticmethod
    def create(**kwargs):
        """Emit, commit and deliver a standalone notification."""
        notif = NotificationService.emit(**kwargs)
        db.session.commit()
        NotificationService.deliver([notif])
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def _for_recipient(recipient):
        return Notification.query.filter(
            or_(Notification.recipient == recipient, Notification.recipient == BROADCAST)
        )

    @staticmethod
    def _unread_clause(recipient):
        receipt = exists().where(
            NotificationRead.notification_id == Notification.id,
            NotificationRead.employee_id == recipient,
        )
        return or_(
            and_(Notification.recipient == recipient, Notification.status == "unread"),
            and_(Notification.recipient == BROADCAST, ~receipt),
        )

    @staticmethod
    def list_for_recipient(recipient, unread_only=False, type=None, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = NotificationService._for_recipient(recipient)
        if unread_only:
            q = q.filter(NotificationService._unread_clause(recipient))
        if type:
            q = q.filter_by(type=type)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def serialize_for(notifications, reader_id):
        """to_dict() each row with broadcast read state as seen by ``reader_id``."""
        broadcast_ids = [n.id for n in notifications if n.is_broadcast]
        receipts = {}
        if broadcast_ids:
            rows = NotificationRead.query.filter(
                NotificationRead.employee_id == reader_id,
                NotificationRead.notification_id.in_(broadcast_ids),
            )
            receipts = {r.notification_id: r.read_at for r in rows}
        return [n.to_dict(read_at=receipts.get(n.id)) for n in notifications]

    @staticmethod
    def unread_count(recipient):
        """Return count of unread notifications."""
        return Notification.query.filter(NotificationService._unread_clause(recipient)).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def _add_receipt(notification_id, reader_id):
        receipt = NotificationRead.query.filter_by(
            notification_id=notification_id, employee_id=reader_id
        ).first()
        if receipt is None:
            receipt = NotificationRead(notification_id=notification_id, employee_id=reader_id)
            db.session.add(receipt)
        return receipt

    @staticmethod
    def mark_read(notification_id, reader_id):
        """Mark one notification read for ``reader_id``.

        A direct notification flips its own status. A broadcast only gets a
        receipt for this reader; other employees still see it unread.
        """
        notif = db.session.get(Notification, notification_id)
        if notif is None:
            return None
        if notif.is_broadcast:
            NotificationService._add_receipt(notif.id, reader_id)
        elif notif.status != "read":
            notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient):
        """Mark every unread notification the recipient can see as read; returns how many."""
        q = Notification.query.filter(
            Notification.recipient == recipient, Notification.status == "unread"
        )
        count = q.update({"status": "read", "read_at": _utcnow()}, synchronize_session="fetch")
        unread_broadcasts = Notification.query.filter(
            NotificationService._unread_clause(recipient), Notification.recipient == BROADCAST
        ).all()
        for notif in unread_broadcasts:
            NotificationService._add_receipt(notif.id, recipient)
        db.session.commit()
        return count + len(unread_broadcasts)
