"""
Sync reconciler: applies a batch of offline mutations from a field client.

Wire format (``POST /sync``)::

    {"updates": [{"type": "workItem", "entityId": 12, "data": {...}}, ...]}

Each raw update is parsed into one kind of a closed set (``TaskEdit``,
``StepUpdate``, ``NodeCreation``); an unrecognised tag parses to
``UnsupportedUpdate`` and is reported back as a conflict. Updates are
applied sequentially in payload order, each in its own transaction: a
failure rolls back that update only and becomes a conflict entry, the
rest of the batch still runs.

Conflict ``error`` strings are client-visible and end up in the activity
log, so they are either fixed messages raised here (``UpdateConflict``)
or the sanitised vocabulary from ``sync_log.safe_error_message``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Union

from flask import current_app

from fieldsync.core.exceptions import ValidationError
from fieldsync.models import db
from fieldsync.models.audit import write_activity
from fieldsync.models.field_node import (
    DEFAULT_NETWORK,
    DEFAULT_NODE_STATUS,
    DEFAULT_NODE_TYPE,
    NETWORKS,
    NODE_STATUSES,
    NODE_TYPES,
    NetworkNode,
)
from fieldsync.models.work_item import (
    STEP_REOPEN_STATUSES,
    STEP_STATUSES,
    WORK_ITEM_STATUSES,
    WorkflowExecutionStep,
    WorkflowTemplate,
    WorkItem,
)
from fieldsync.services import sync_log
from fieldsync.services.availability_filter import active_statuses
from fieldsync.services.evidence import Evidence
from fieldsync.services.workflow_service import get_execution, start_execution
from fieldsync.utils.helpers import as_int, parse_date, utcnow

logger = logging.getLogger(__name__)

TASK_EDIT_FIELDS = (
    "title", "description", "status", "priority",
    "location", "notes", "dueDate", "assignedTo",
)

_UNSET = object()


class UpdateConflict(Exception):
    """A per-update failure whose message is safe to show the client."""


class SyncAbortedError(Exception):
    """The batch failed outside the per-update boundary."""


# ═════════════════════════════════════════════════════════════════════════════
# Update kinds
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TaskEdit:
    tag: str
    entity_id: Any
    changes: dict


@dataclass(frozen=True)
class StepUpdate:
    tag: str
    entity_id: Any
    work_item_id: int | None
    step_index: int | None
    status: str | None = None
    notes: Any = _UNSET
    evidence: Any = None


@dataclass(frozen=True)
class NodeCreation:
    tag: str
    entity_id: Any
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class UnsupportedUpdate:
    tag: Any
    entity_id: Any


SyncUpdate = Union[TaskEdit, StepUpdate, NodeCreation, UnsupportedUpdate]


def _parse_task_edit(tag, entity_id, data) -> TaskEdit:
    changes = {k: data[k] for k in TASK_EDIT_FIELDS if k in data}
    local_edits = data.get("localEdits")
    if isinstance(local_edits, dict) and local_edits.get("status"):
        changes["status"] = local_edits["status"]
    return TaskEdit(tag=tag, entity_id=entity_id, changes=changes)


def _parse_step_update(tag, entity_id, data) -> StepUpdate:
    return StepUpdate(
        tag=tag,
        entity_id=entity_id,
        work_item_id=as_int(data.get("workItemId")),
        step_index=as_int(data.get("stepIndex")),
        status=data.get("status") or None,
        notes=data["notes"] if "notes" in data else _UNSET,
        evidence=data.get("evidence"),
    )


def _parse_node_creation(tag, entity_id, data) -> NodeCreation:
    return NodeCreation(tag=tag, entity_id=entity_id, data=dict(data))


# Wire tag → parser (legacy and current client tags)
UPDATE_PARSERS = {
    "workItem": _parse_task_edit,
    "task-edit": _parse_task_edit,
    "workflowStep": _parse_step_update,
    "step-update": _parse_step_update,
    "fiberNetworkNode": _parse_node_creation,
    "field-entity-creation": _parse_node_creation,
}


def parse_update(raw) -> SyncUpdate:
    if not isinstance(raw, dict):
        return UnsupportedUpdate(tag=None, entity_id=None)
    tag = raw.get("type")
    entity_id = raw.get("entityId")
    parser = UPDATE_PARSERS.get(tag) if isinstance(tag, str) else None
    if parser is None:
        return UnsupportedUpdate(tag=tag, entity_id=entity_id)
    data = raw.get("data")
    return parser(tag, entity_id, data if isinstance(data, dict) else {})


# ═════════════════════════════════════════════════════════════════════════════
# Handlers
# ═════════════════════════════════════════════════════════════════════════════

class _Context:
    def __init__(self, organization_id: int, user_id: int):
        self.organization_id = organization_id
        self.user_id = user_id


def _apply_task_edit(update: TaskEdit, ctx: _Context) -> dict:
    item_id = as_int(update.entity_id)
    item = None
    if item_id is not None:
        item = WorkItem.query_for_organization(ctx.organization_id).filter_by(id=item_id).first()
    if item is None:
        raise UpdateConflict("Work item not found")

    changes = update.changes
    if "status" in changes:
        if changes["status"] not in WORK_ITEM_STATUSES:
            raise UpdateConflict(f"Invalid status: {changes['status']}")
        item.status = changes["status"]
    for attr in ("title", "description", "priority", "location", "notes"):
        if attr in changes:
            setattr(item, attr, changes[attr])
    if "dueDate" in changes:
        raw = changes["dueDate"]
        due = parse_date(raw)
        if raw and due is None:
            raise UpdateConflict("Invalid dueDate")
        item.due_date = due
    if "assignedTo" in changes:
        raw = changes["assignedTo"]
        assignee = as_int(raw)
        if raw and assignee is None:
            raise UpdateConflict("Invalid assignedTo")
        item.assigned_to = assignee

    logger.info("Sync task edit work_item=%s fields=%s", item.id, sorted(changes))
    return {"type": update.tag, "id": update.entity_id, "success": True}


def _apply_step_update(update: StepUpdate, ctx: _Context) -> dict:
    execution = None
    if update.work_item_id is not None:
        execution = get_execution(ctx.organization_id, update.work_item_id)
    if execution is None:
        logger.warning("No workflow execution for work item %s", update.work_item_id)
        raise UpdateConflict("Workflow execution not found")

    step = None
    if update.step_index is not None:
        step = WorkflowExecutionStep.query.filter_by(
            work_item_id=update.work_item_id,
            execution_id=execution.id,
            step_index=update.step_index,
        ).first()
    if step is None:
        logger.warning(
            "No step record for work item %s index %s", update.work_item_id, update.step_index,
        )
        raise UpdateConflict("Step record not found")

    if update.status is not None and update.status not in STEP_STATUSES:
        raise UpdateConflict(f"Invalid step status: {update.status}")

    if update.status:
        step.status = update.status
    if update.notes is not _UNSET:
        step.notes = update.notes or None
    if update.evidence is not None:
        step.evidence = Evidence.from_dict(step.evidence).merge(update.evidence).to_dict()

    if update.status == "completed":
        step.mark_completed(ctx.user_id)
    elif update.status in STEP_REOPEN_STATUSES:
        step.clear_completion()

    return {"type": update.tag, "id": update.entity_id, "success": True}


def _coordinate(value):
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _apply_node_creation(update: NodeCreation, ctx: _Context) -> dict:
    data = update.data
    name = data.get("name")
    latitude = _coordinate(data.get("latitude"))
    longitude = _coordinate(data.get("longitude"))
    if not name or latitude is None or longitude is None:
        raise UpdateConflict("Missing required fields: name, latitude, longitude")

    node_type = data.get("nodeType") or DEFAULT_NODE_TYPE
    network = data.get("network") or DEFAULT_NETWORK
    status = data.get("status") or DEFAULT_NODE_STATUS
    if node_type not in NODE_TYPES:
        raise UpdateConflict(f"Invalid node type: {node_type}")
    if network not in NETWORKS:
        raise UpdateConflict(f"Invalid network: {network}")
    if status not in NODE_STATUSES:
        raise UpdateConflict(f"Invalid node status: {status}")

    node = NetworkNode(
        organization_id=ctx.organization_id,
        name=name,
        node_type=node_type,
        network=network,
        status=status,
        latitude=latitude,
        longitude=longitude,
        what3words=data.get("what3words") or None,
        address=data.get("address") or None,
        notes=data.get("notes") or None,
        photos=data.get("photos") or [],
        fiber_details=data.get("fiberDetails") or {},
        created_by=ctx.user_id,
    )
    db.session.add(node)
    db.session.flush()

    write_activity(
        organization_id=ctx.organization_id,
        user_id=ctx.user_id,
        action_type="create",
        entity_type="network_node",
        entity_id=node.id,
        description=f"Network node created from field app: {name}",
        details={"added": {
            "name": name,
            "nodeType": node_type,
            "network": network,
            "status": status,
            "latitude": latitude,
            "longitude": longitude,
        }},
    )

    signoff = _create_signoff_work_item(node, ctx)
    db.session.commit()

    # Best effort: the sign-off item stands even if its execution cannot start
    try:
        start_execution(signoff, ctx.organization_id)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.warning(
            "Sign-off work item %s created without workflow execution: %s", signoff.id, exc,
        )

    logger.info("Network node %s created from field app; sign-off item %s", node.id, signoff.id)
    return {"type": update.tag, "id": update.entity_id, "success": True, "serverId": node.id}


def _create_signoff_work_item(node: NetworkNode, ctx: _Context) -> WorkItem:
    cfg = current_app.config
    now = utcnow()
    due = now + timedelta(days=cfg.get("FIELD_NODE_SIGNOFF_DAYS", 7))
    description = (
        "Sign-off required for network node:\n\n"
        f"Node: {node.name}\n"
        f"Type: {node.node_type}\n"
        f"Network: {node.network}\n"
        f"Location: {node.latitude}, {node.longitude}\n"
        f"Address: {node.address or 'Not provided'}\n"
        f"Created: {now.strftime('%Y-%m-%d %H:%M UTC')}"
    )
    item = WorkItem(
        organization_id=ctx.organization_id,
        title=f"New node sign off: {node.name}",
        description=description,
        status="Planning",
        team_id=cfg.get("FIELD_NODE_SIGNOFF_TEAM_ID"),
        due_date=due.date(),
        workflow_template_id=cfg.get("FIELD_NODE_SIGNOFF_TEMPLATE_ID"),
        workflow_metadata={
            "fieldNodeId": node.id,
            "fieldNodeName": node.name,
            "nodeLocation": {
                "latitude": node.latitude,
                "longitude": node.longitude,
                "address": node.address,
            },
            "createdInField": True,
        },
    )
    db.session.add(item)
    db.session.flush()
    return item


_HANDLERS = {
    TaskEdit: _apply_task_edit,
    StepUpdate: _apply_step_update,
    NodeCreation: _apply_node_creation,
}


# ═════════════════════════════════════════════════════════════════════════════
# Batch
# ═════════════════════════════════════════════════════════════════════════════

def _conflict(update: SyncUpdate, error: str) -> dict:
    return {"entityId": update.entity_id, "type": update.tag, "error": error}


def apply_updates(raw_updates: list, organization_id: int, user_id: int) -> tuple[list, list]:
    """Apply each update in order; returns ``(results, conflicts)``."""
    ctx = _Context(organization_id, user_id)
    results, conflicts = [], []

    for raw in raw_updates:
        update = parse_update(raw)
        handler = _HANDLERS.get(type(update))
        if handler is None:
            logger.warning("Unsupported sync update type: %r", update.tag)
            conflicts.append(_conflict(update, "Unsupported update type"))
            continue
        try:
            result = handler(update, ctx)
            db.session.commit()
            results.append(result)
        except UpdateConflict as exc:
            db.session.rollback()
            conflicts.append(_conflict(update, str(exc)))
        except Exception as exc:
            db.session.rollback()
            logger.exception("Failed to sync update %s (%s)", update.entity_id, update.tag)
            conflicts.append(_conflict(update, sync_log.safe_error_message(exc)))

    return results, conflicts


def fresh_working_set(organization_id: int, user_id: int) -> dict:
    """The caller's open items (active status, assigned to caller) + templates."""
    items = (
        WorkItem.query_for_organization(organization_id)
        .filter(
            WorkItem.assigned_to == user_id,
            WorkItem.status.in_(active_statuses()),
        )
        .order_by(WorkItem.id)
        .all()
    )
    template_ids = list(dict.fromkeys(
        str(i.workflow_template_id) for i in items if i.workflow_template_id
    ))
    templates = []
    if template_ids:
        found = {
            t.id: t for t in
            WorkflowTemplate.query_for_organization(organization_id)
            .filter(WorkflowTemplate.id.in_(template_ids))
            .all()
        }
        templates = [found[t].to_dict() for t in template_ids if t in found]
    return {"workItems": [i.to_dict() for i in items], "templates": templates}


def reconcile(payload, organization_id: int, user_id: int) -> dict:
    """Run one sync call end to end.

    Raises:
        ValidationError: ``updates`` is not a list (logged as a failed sync).
        SyncAbortedError: failure outside the per-update boundary (logged).
    """
    started = time.perf_counter()

    def elapsed_ms():
        return int((time.perf_counter() - started) * 1000)

    updates = payload.get("updates") if isinstance(payload, dict) else None
    if not isinstance(updates, list):
        sync_log.record_sync_failure(
            organization_id, user_id,
            error="Invalid request format",
            update_count=0,
            duration_ms=elapsed_ms(),
            description="Field app sync failed - invalid request format",
        )
        db.session.commit()
        raise ValidationError("Updates array is required")

    try:
        results, conflicts = apply_updates(updates, organization_id, user_id)
        new_data = fresh_working_set(organization_id, user_id)
        sync_log.record_sync_outcome(
            organization_id, user_id,
            update_count=len(updates),
            results=results,
            conflicts=conflicts,
            duration_ms=elapsed_ms(),
        )
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Field app sync failed", extra={
            "organization_id": organization_id, "user_id": user_id,
        })
        sync_log.record_sync_failure(
            organization_id, user_id,
            error=sync_log.safe_error_message(exc),
            error_type="SyncError",
            update_count=len(updates),
            duration_ms=elapsed_ms(),
        )
        db.session.commit()
        raise SyncAbortedError("Failed to sync data") from exc

    logger.info(
        "Field app sync: %d applied, %d conflicts",
        len(results), len(conflicts),
        extra={
            "organization_id": organization_id,
            "user_id": user_id,
            "event_type": "field_app_sync",
            "update_count": len(updates),
            "conflict_count": len(conflicts),
        },
    )
    return {"results": results, "conflicts": conflicts, "newData": new_data}
