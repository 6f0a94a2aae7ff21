"""
Identity Models — organizations, users, teams, team_members.

Authentication and administration of these rows belong to other services;
the field app only reads them to resolve assignment scopes.
"""

from datetime import datetime, timezone

from fieldsync.models import db
from fieldsync.models.base import OrganizationModel


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# 1. ORGANIZATIONS
# ═══════════════════════════════════════════════════════════════
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "isActive": self.is_active,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(OrganizationModel):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
    )

    @property
    def display_name(self):
        return self.full_name or self.email or "Field User"

    def to_dict(self):
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "email": self.email,
            "fullName": self.full_name,
        }


# ═══════════════════════════════════════════════════════════════
# 3. TEAMS
# ═══════════════════════════════════════════════════════════════
class Team(OrganizationModel):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    members = db.relationship(
        "TeamMember", back_populates="team", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {"id": self.id, "organizationId": self.organization_id, "name": self.name}


class TeamMember(db.Model):
    __tablename__ = "team_members"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(30), default="member")  # member | lead
    created_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )

    team = db.relationship("Team", back_populates="members")


def team_ids_for_user(user_id: int) -> list[int]:
    """Return the ids of every team the user belongs to (users may sit on several)."""
    rows = (
        db.session.query(TeamMember.team_id)
        .filter(TeamMember.user_id == user_id)
        .all()
    )
    return [r[0] for r in rows]
