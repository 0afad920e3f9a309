"""
Compliance Desk
Notification intent model.

One row per recipient per event. Delivery (email, push, messaging) happens
outside this service; the row is the durable intent plus in-app read state.

Broadcast rows (recipient "all") keep their own ``status`` at "unread";
each employee who reads one gets a NotificationRead receipt instead.
"""

from compliance_desk.models import _utcnow, _uuid, db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = frozenset({"reminder", "alert", "escalation", "approval", "assignment"})
NOTIFICATION_PRIORITIES = frozenset({"low", "medium", "high", "urgent"})
BROADCAST = "all"


class Notification(db.Model):
    """In-app notification / delivery intent."""

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_recipient_status", "recipient", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    recipient = db.Column(db.String(36), nullable=False, default=BROADCAST,
                          comment="Employee id or 'all' for broadcast")
    type = db.Column(db.String(20), nullable=False, default="alert")
    priority = db.Column(db.String(10), nullable=False, default="medium")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    task_id = db.Column(db.String(36), nullable=True, index=True)

    status = db.Column(db.String(10), nullable=False, default="unread", comment="unread | read")
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def is_broadcast(self):
        return self.recipient == BROADCAST

    def mark_read(self):
        self.status = "read"
        self.read_at = _utcnow()

    def to_dict(self, read_at=None):
        """Serialize; pass ``read_at`` to report a broadcast as read by one reader."""
        if self.is_broadcast:
            status = "read" if read_at else "unread"
        else:
            status, read_at = self.status, self.read_at
        return {
            "id": self.id,
            "recipient": self.recipient,
            "type": self.type,
            "priority": self.priority,
            "title": self.title,
            "message": self.message,
            "task_id": self.task_id,
            "status": status,
            "read_at": read_at.isoformat() if read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.type}→{self.recipient}: {self.title[:40]}>"


class NotificationRead(db.Model):
    """One employee's read receipt for a broadcast notification."""

    __tablename__ = "notification_reads"
    __table_args__ = (
        db.UniqueConstraint("notification_id", "employee_id", name="uq_notification_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    notification_id = db.Column(
        db.String(36), db.ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    employee_id = db.Column(db.String(36), nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
