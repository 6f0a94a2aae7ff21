"""
Workflow execution bootstrap.

Creates the execution record for a work item and one execution step per
template step. Each step's evidence is seeded with the template-defined
configuration so field clients can render checklists, forms and photo
requirements offline.
"""

from __future__ import annotations

import logging

from fieldsync.core.exceptions import NotFoundError
from fieldsync.models import db
from fieldsync.models.work_item import (
    WorkflowExecution,
    WorkflowExecutionStep,
    WorkflowTemplate,
    WorkItem,
)
from fieldsync.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def get_template(organization_id: int, template_id: str | None) -> WorkflowTemplate | None:
    """Return the organization's template with the given id, or None."""
    if not template_id:
        return None
    template = db.session.get(WorkflowTemplate, str(template_id))
    if template is None or template.organization_id != organization_id:
        return None
    return template


def seed_step_evidence(step_def: dict) -> dict:
    """Template-defined fields copied into a fresh execution step."""
    return {
        "stepId": step_def.get("id"),
        "stepType": step_def.get("type"),
        "checklistItems": step_def.get("checklistItems") or [],
        "formFields": step_def.get("formFields") or [],
        "photoConfig": step_def.get("photoConfig") or {},
        "config": step_def.get("config") or {},
        "required": bool(step_def.get("required", False)),
    }


def get_execution(organization_id: int, work_item_id: int) -> WorkflowExecution | None:
    return (
        WorkflowExecution.query_for_organization(organization_id)
        .filter_by(work_item_id=work_item_id)
        .first()
    )


def start_execution(work_item: WorkItem, organization_id: int) -> WorkflowExecution:
    """Create the execution + steps for ``work_item``.

    Returns the existing execution when one is already present. Uses
    ``flush``; the caller commits.

    Raises:
        NotFoundError: the work item's template cannot be resolved.
    """
    existing = get_execution(organization_id, work_item.id)
    if existing is not None:
        return existing

    template = get_template(organization_id, work_item.workflow_template_id)
    if template is None:
        raise NotFoundError(resource="WorkflowTemplate", resource_id=work_item.workflow_template_id)

    step_defs = [s for s in (template.steps or []) if isinstance(s, dict)]
    execution = WorkflowExecution(
        organization_id=organization_id,
        work_item_id=work_item.id,
        workflow_template_id=template.id,
        status="in_progress",
        current_step_id=step_defs[0].get("id") if step_defs else None,
        execution_data={},
        started_at=utcnow(),
    )
    db.session.add(execution)
    db.session.flush()

    for index, step_def in enumerate(step_defs):
        db.session.add(WorkflowExecutionStep(
            organization_id=organization_id,
            work_item_id=work_item.id,
            execution_id=execution.id,
            step_index=index,
            step_title=step_def.get("title") or f"Step {index + 1}",
            step_description=step_def.get("description"),
            status="not_started",
            evidence=seed_step_evidence(step_def),
        ))
    db.session.flush()

    logger.info(
        "Workflow execution started work_item=%s template=%s steps=%d",
        work_item.id, template.id, len(step_defs),
    )
    return execution
