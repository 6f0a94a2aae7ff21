"""
Field Sync Service
Activity log model.

Models:
    - ActivityLog: append-only record of sync attempts, uploads,
      deletions and field-created entities.
"""

from datetime import datetime, timezone

from fieldsync.models import db
from fieldsync.models.base import OrganizationModel

# ── Constants ────────────────────────────────────────────────────────────────

SYNC_ENTITY_TYPE = "field_app_sync"

ACTIVITY_ACTIONS = {
    # Sync attempts (entity_type="field_app_sync")
    "field_app_sync_success",
    "field_app_sync_partial",
    "field_app_sync_failed",
    # Media
    "file_upload",
    "deletion",
    # Generic
    "create",
    "update",
}


class ActivityLog(OrganizationModel):
    """
    Immutable activity trail. Rows are only ever appended.

    ``details`` is stored in the ``metadata`` column and carries the
    structured payload (counts, conflicts, file names).
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_user_entity", "user_id", "entity_type"),
        db.Index("idx_activity_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    action_type = db.Column(
        db.String(60), nullable=False,
        comment="field_app_sync_success | file_upload | deletion | create | …",
    )
    entity_type = db.Column(
        db.String(40), nullable=False,
        comment="field_app_sync | work_item_step | network_node | …",
    )
    entity_id = db.Column(
        db.String(64), nullable=True,
        comment="PK of the referenced entity (int-as-string or uuid)",
    )
    description = db.Column(db.Text)
    details = db.Column("metadata", db.JSON, default=dict)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "userId": self.user_id,
            "actionType": self.action_type,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "description": self.description,
            "metadata": self.details or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action_type} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_activity(
    *,
    organization_id: int,
    action_type: str,
    entity_type: str,
    entity_id: str | int | None = None,
    user_id: int | None = None,
    description: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) ActivityLog instance.
    """
    entry = ActivityLog(
        organization_id=organization_id,
        user_id=user_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        description=description,
        details=details or {},
    )
    db.session.add(entry)
    db.session.flush()
    return entry
