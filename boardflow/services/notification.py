"""
Boardflow
Notification Service.

The Notifier used by approvals and automations: persists one in-app
notification per recipient.
"""

from datetime import datetime, timedelta, timezone

from boardflow.core.exceptions import NotFoundError
from boardflow.models import db
from boardflow.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, type, title, message="", link=None, metadata=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            meta=metadata or {},
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def notify_many(user_ids, type, title, message="", link=None, metadata=None):
        """Notify each unique user once, preserving first-seen order."""
        notifications = []
        seen = set()
        for uid in user_ids:
            if not uid or uid in seen:
                continue
            seen.add(uid)
            notifications.append(Notification(
                user_id=uid,
                type=type,
                title=title,
                message=message,
                link=link,
                meta=metadata or {},
            ))
        if notifications:
            db.session.add_all(notifications)
            db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a user, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()) \
            .offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def sent_within(user_id, type, *, hours, metadata_key, metadata_value):
        """True if ``user_id`` got a ``type`` notification (one type or a tuple
        of types) about the same subject (``metadata[metadata_key] == metadata_value``)
        in the last ``hours``."""
        types = (type,) if isinstance(type, str) else tuple(type)
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent = Notification.query.filter(
            Notification.user_id == user_id,
            Notification.type.in_(types),
            Notification.created_at >= since,
        ).all()
        return any((n.meta or {}).get(metadata_key) == metadata_value for n in recent)

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of ``user_id``'s notifications as read."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark every unread notification of ``user_id`` as read. Returns the count."""
        unread = Notification.query.filter_by(user_id=user_id, is_read=False).all()
        for notif in unread:
            notif.mark_read()
        if unread:
            db.session.commit()
        return len(unread)
