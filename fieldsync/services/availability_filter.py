"""
Availability filter: selects the work items a technician may take offline.

Filter categories combine with AND; values inside one category combine
with OR. ``filter_work_items`` is pure so it can be exercised without a
database; ``list_available_items`` wires it to the organization's rows.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone

from flask import current_app

from fieldsync.core.exceptions import ValidationError
from fieldsync.models.auth import team_ids_for_user
from fieldsync.models.work_item import WorkflowTemplate, WorkItem
from fieldsync.utils.helpers import split_multi, utcnow

logger = logging.getLogger(__name__)

# Wire value → assignment scope
ASSIGNMENT_SCOPES = {
    "me": "mine",
    "team": "my-team",
    "all": "all-organization",
}

# Maximum whole days until due; None = unbounded
DATE_HORIZONS = {
    "today": 1,
    "week": 7,
    "month": 30,
    "all": None,
}

DEFAULT_ASSIGNED_TO = ("me",)
DEFAULT_DATE_RANGE = "week"


@dataclass(frozen=True)
class AvailabilityCriteria:
    assigned_to: tuple[str, ...] = DEFAULT_ASSIGNED_TO
    statuses: tuple[str, ...] = ()
    date_range: str = DEFAULT_DATE_RANGE
    template_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def scopes(self) -> set[str]:
        return {ASSIGNMENT_SCOPES[value] for value in self.assigned_to}

    @classmethod
    def from_query_args(cls, args, active_statuses=()) -> "AvailabilityCriteria":
        """Build criteria from request query args (a werkzeug MultiDict).

        Raises:
            ValidationError: unknown ``assignedTo`` or ``dateRange`` value.
        """
        assigned_to = tuple(split_multi(args.getlist("assignedTo"))) or DEFAULT_ASSIGNED_TO
        unknown = [value for value in assigned_to if value not in ASSIGNMENT_SCOPES]
        if unknown:
            raise ValidationError(
                "assignedTo must be one of: me, team, all",
                details={"assignedTo": unknown},
            )

        statuses = tuple(split_multi(args.getlist("status"))) or tuple(active_statuses)

        date_range = args.get("dateRange") or DEFAULT_DATE_RANGE
        if date_range not in DATE_HORIZONS:
            raise ValidationError(
                "dateRange must be one of: today, week, month, all",
                details={"dateRange": date_range},
            )

        template_ids = tuple(split_multi(args.getlist("templateIds")))
        return cls(
            assigned_to=assigned_to,
            statuses=statuses,
            date_range=date_range,
            template_ids=template_ids,
        )


# ── Predicates ───────────────────────────────────────────────────────────────

def _in_scope(item, scopes: set[str], user_id: int, team_ids: set[int]) -> bool:
    if "all-organization" in scopes:
        return True
    if "mine" in scopes and item.assigned_to == user_id:
        return True
    if "my-team" in scopes:
        if item.team_id is not None and item.team_id in team_ids:
            return True
        if item.assigned_to == user_id:
            return True
    return False


def _matches_template(item, template_ids: tuple[str, ...]) -> bool:
    if not template_ids:
        return True
    allowed = set(template_ids)
    for candidate in (item.workflow_template_id, item.work_item_type):
        if candidate is not None and str(candidate) in allowed:
            return True
    return False


def days_until(due, now: datetime) -> int:
    """Whole days from ``now`` until ``due`` (ceiling); negative when overdue."""
    if isinstance(due, datetime):
        due_at = due if due.tzinfo else due.replace(tzinfo=timezone.utc)
    elif isinstance(due, date):
        due_at = datetime.combine(due, time.min, tzinfo=timezone.utc)
    else:
        raise TypeError(f"unsupported due date: {due!r}")
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.ceil((due_at - now).total_seconds() / 86400)


def _within_horizon(item, date_range: str, now: datetime) -> bool:
    max_days = DATE_HORIZONS[date_range]
    if max_days is None or item.due_date is None:
        return True
    return days_until(item.due_date, now) <= max_days


def filter_work_items(items, criteria: AvailabilityCriteria, user_id: int, team_ids, now=None):
    """Return the items matching every active filter category, order preserved."""
    now = now or utcnow()
    scopes = criteria.scopes
    team_ids = set(team_ids or ())
    statuses = set(criteria.statuses)

    selected = []
    for item in items:
        if not _in_scope(item, scopes, user_id, team_ids):
            continue
        if statuses and item.status not in statuses:
            continue
        if not _matches_template(item, criteria.template_ids):
            continue
        if not _within_horizon(item, criteria.date_range, now):
            continue
        selected.append(item)
    return selected


# ── Database-backed listing ──────────────────────────────────────────────────

def list_available_items(organization_id: int, user_id: int, criteria: AvailabilityCriteria) -> list[dict]:
    """Filter the organization's work items and attach template names."""
    items = (
        WorkItem.query_for_organization(organization_id)
        .order_by(WorkItem.due_date.is_(None), WorkItem.due_date, WorkItem.id)
        .all()
    )
    team_ids = team_ids_for_user(user_id)
    selected = filter_work_items(items, criteria, user_id, team_ids)

    template_ids = {i.workflow_template_id for i in selected if i.workflow_template_id}
    names = {}
    if template_ids:
        rows = (
            WorkflowTemplate.query_for_organization(organization_id)
            .filter(WorkflowTemplate.id.in_(template_ids))
            .all()
        )
        names = {t.id: t.name for t in rows}

    result = []
    for item in selected:
        d = item.to_dict()
        d["workflowTemplateName"] = names.get(item.workflow_template_id)
        result.append(d)

    logger.info(
        "Available items listed",
        extra={"organization_id": organization_id, "user_id": user_id},
    )
    return result


def active_statuses() -> tuple[str, ...]:
    return tuple(current_app.config.get("FIELD_APP_ACTIVE_STATUSES", ()))
