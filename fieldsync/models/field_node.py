"""
Field Sync Service
Network node model: field-captured fibre infrastructure entities.

Nodes are created offline by technicians and arrive through sync as
``fiberNetworkNode`` updates. Each new node triggers a sign-off work item.
"""

from datetime import datetime, timezone

from fieldsync.models import db
from fieldsync.models.base import OrganizationModel


def _utcnow():
    return datetime.now(timezone.utc)


NODE_TYPES = ("chamber", "cabinet", "pole", "splice_closure", "customer_premise")

NODE_STATUSES = (
    "active", "planned", "decommissioned",
    "awaiting_evidence", "build_complete", "action_required",
)

NETWORKS = ("CCNet", "FibreLtd", "S&MFibre")

DEFAULT_NODE_TYPE = "chamber"
DEFAULT_NETWORK = "FibreLtd"
DEFAULT_NODE_STATUS = "planned"


class NetworkNode(OrganizationModel):
    __tablename__ = "network_nodes"
    __table_args__ = (
        db.Index("idx_network_nodes_org_type", "organization_id", "node_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    node_type = db.Column(db.String(30), nullable=False, default=DEFAULT_NODE_TYPE)
    network = db.Column(db.String(30), nullable=False, default=DEFAULT_NETWORK)
    status = db.Column(db.String(30), nullable=False, default=DEFAULT_NODE_STATUS)

    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    what3words = db.Column(db.String(100))
    address = db.Column(db.Text)
    notes = db.Column(db.Text)

    photos = db.Column(db.JSON, default=list)
    fiber_details = db.Column(db.JSON, nullable=True)

    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "name": self.name,
            "nodeType": self.node_type,
            "network": self.network,
            "status": self.status,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "what3words": self.what3words,
            "address": self.address,
            "notes": self.notes,
            "photos": self.photos or [],
            "fiberDetails": self.fiber_details,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<NetworkNode {self.id}: {self.name!r} ({self.node_type})>"
