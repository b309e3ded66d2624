"""
Active/Inactive lifecycle mixin.

Catalog rows are never physically removed. Deleting a record flips its
``status`` column from ``ACTIVE`` to ``INACTIVE``; services that honour the
lifecycle filter on ``status == STATUS_ACTIVE``.

Usage:
    class Diecut(ActiveStatusMixin, db.Model):
        ...

    diecut.soft_delete(updated_by="EMP01")
    db.session.commit()
"""

from datetime import datetime, timezone

from toolroom.models import db

STATUS_ACTIVE = "ACTIVE"
STATUS_INACTIVE = "INACTIVE"


class ActiveStatusMixin:
    """Mixin that adds ACTIVE/INACTIVE soft-delete support to a model."""

    status = db.Column(
        db.String(10),
        nullable=False,
        default=STATUS_ACTIVE,
        index=True,
        comment="ACTIVE | INACTIVE",
    )

    def soft_delete(self, updated_by=None):
        """Mark this record as INACTIVE."""
        self.status = STATUS_INACTIVE
        if updated_by is not None and hasattr(self, "updated_by"):
            self.updated_by = updated_by
        if hasattr(self, "updated_at"):
            self.updated_at = datetime.now(timezone.utc)
