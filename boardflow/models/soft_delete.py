"""
Soft Delete Mixin.

Adds a `deleted_at` timestamp column and query helpers. Items are archived
this way once their approval flow is complete and can be restored later;
rows are never removed.

Usage:
    class Item(SoftDeleteMixin, db.Model):
        ...

    item.soft_delete()
    db.session.commit()

    item.restore()
    db.session.commit()

    Item.query_active().filter_by(board_id=board_id).all()
"""

from datetime import datetime, timezone

from boardflow.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    def restore(self):
        """Clear the deletion mark."""
        self.deleted_at = None

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))
