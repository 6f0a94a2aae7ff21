"""
Field Sync Service
Work item domain models.

Models:
    - WorkItem: a unit of field work assigned to a technician or team.
    - WorkflowTemplate: step-by-step execution template (authored elsewhere).
    - WorkflowExecution: one per work item once work begins.
    - WorkflowExecutionStep: step-level execution state + evidence record.
"""

from datetime import datetime, timezone

from fieldsync.models import db
from fieldsync.models.base import OrganizationModel


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

WORK_ITEM_STATUSES = ("Planning", "Ready", "In Progress", "Stuck", "Completed", "Archived")

STEP_STATUSES = ("not_started", "in_progress", "completed", "cancelled")

# Step statuses that undo a completion (completedAt/completedBy cleared together)
STEP_REOPEN_STATUSES = ("in_progress", "not_started")


# ── 1. Work items ────────────────────────────────────────────────────────────

class WorkItem(OrganizationModel):
    """A unit of work; mutated by technicians and by offline sync, never deleted here."""

    __tablename__ = "work_items"
    __table_args__ = (
        db.Index("idx_work_items_org_due", "organization_id", "due_date"),
        db.Index("idx_work_items_assignee", "assigned_to"),
        db.Index("idx_work_items_workflow", "workflow_template_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="Planning")
    priority = db.Column(db.String(20), default="medium")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    notes = db.Column(db.Text)
    location = db.Column(db.Text)
    due_date = db.Column(db.Date, nullable=True)
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    workflow_template_id = db.Column(db.String(100), nullable=True)
    work_item_type = db.Column(db.String(100), nullable=True)
    workflow_metadata = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "teamId": self.team_id,
            "status": self.status,
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "notes": self.notes,
            "location": self.location,
            "dueDate": _iso(self.due_date),
            "assignedTo": self.assigned_to,
            "workflowTemplateId": self.workflow_template_id,
            "workItemType": self.work_item_type,
            "workflowMetadata": self.workflow_metadata,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<WorkItem {self.id}: {self.title!r} [{self.status}]>"


# ── 2. Workflow templates ────────────────────────────────────────────────────

class WorkflowTemplate(OrganizationModel):
    """
    Execution template. ``steps`` is an ordered JSON list of step
    definitions: ``{id, title, type, required, checklistItems,
    formFields, photoConfig, config}``.
    """

    __tablename__ = "workflow_templates"

    id = db.Column(db.String(100), primary_key=True)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(100))
    steps = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.Integer, default=1)
    is_active = db.Column(db.Boolean, default=True)
    estimated_minutes = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def step_index_of(self, step_id: str) -> int:
        """Position of the template step with the given id, or -1."""
        for index, step in enumerate(self.steps or []):
            if isinstance(step, dict) and step.get("id") == step_id:
                return index
        return -1

    def to_dict(self):
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "steps": self.steps or [],
            "version": self.version,
            "isActive": self.is_active,
            "estimatedMinutes": self.estimated_minutes,
        }


# ── 3. Executions ────────────────────────────────────────────────────────────

class WorkflowExecution(OrganizationModel):
    """Execution state for one work item."""

    __tablename__ = "workflow_executions"

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    workflow_template_id = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="not_started")
    current_step_id = db.Column(db.String(100), nullable=True)
    execution_data = db.Column(db.JSON, default=dict)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    steps = db.relationship(
        "WorkflowExecutionStep",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="WorkflowExecutionStep.step_index",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "workItemId": self.work_item_id,
            "workflowTemplateId": self.workflow_template_id,
            "status": self.status,
            "currentStepId": self.current_step_id,
            "executionData": self.execution_data or {},
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class WorkflowExecutionStep(OrganizationModel):
    """
    Step-level execution state, identified by ``(execution_id, step_index)``.

    ``evidence`` holds the template-defined step configuration copied at
    creation time plus the capture data accumulated in the field; see
    ``fieldsync.services.evidence`` for the merge rules.
    """

    __tablename__ = "workflow_execution_steps"
    __table_args__ = (
        db.UniqueConstraint("execution_id", "step_index", name="uq_exec_step_index"),
        db.Index("idx_exec_steps_work_item", "work_item_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False,
    )
    execution_id = db.Column(
        db.Integer, db.ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_index = db.Column(db.Integer, nullable=False)
    step_title = db.Column(db.String(255), nullable=False)
    step_description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="not_started")

    # Set together, cleared together
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    notes = db.Column(db.Text, nullable=True)
    evidence = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    execution = db.relationship("WorkflowExecution", back_populates="steps")

    def mark_completed(self, user_id):
        self.completed_at = _utcnow()
        self.completed_by = user_id

    def clear_completion(self):
        self.completed_at = None
        self.completed_by = None

    def to_dict(self):
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "workItemId": self.work_item_id,
            "executionId": self.execution_id,
            "stepIndex": self.step_index,
            "stepTitle": self.step_title,
            "stepDescription": self.step_description,
            "status": self.status,
            "completedAt": _iso(self.completed_at),
            "completedBy": self.completed_by,
            "notes": self.notes,
            "evidence": self.evidence or {},
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<WorkflowExecutionStep exec={self.execution_id} idx={self.step_index} [{self.status}]>"
