"""
Bulk downloader: assembles a self-contained offline package.

A package holds the requested work items, every distinct template they
reference (fetched once), and the current execution state with all steps
expanded. Large requests are chunked with ``offset`` / ``limit``; the
``metadata`` block tells the client which batch it holds and whether
more remain.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, replace

from fieldsync.core.exceptions import ValidationError
from fieldsync.models.work_item import WorkflowExecution, WorkflowTemplate, WorkItem
from fieldsync.services.evidence import MEDIA_KINDS
from fieldsync.utils.helpers import as_int

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkWindow:
    """One page of a chunked download, as reported in ``metadata``."""

    totalRequested: int
    currentBatch: int
    totalBatches: int
    offset: int
    limit: int
    returned: int
    hasMore: bool

    @classmethod
    def resolve(cls, total: int, offset=None, limit=None) -> "ChunkWindow":
        """Compute the window for ``total`` requested ids.

        Omitted offset/limit, or an empty request, is batch 1 of 1.

        Raises:
            ValidationError: negative offset or non-positive limit.
        """
        offset = 0 if offset is None else offset
        if offset < 0:
            raise ValidationError("offset must be >= 0", details={"offset": offset})
        if total == 0 or (limit is None and offset == 0):
            return cls(
                totalRequested=total,
                currentBatch=1,
                totalBatches=1,
                offset=0,
                limit=total,
                returned=total,
                hasMore=False,
            )

        limit = total if limit is None else limit
        if limit <= 0:
            raise ValidationError("limit must be > 0", details={"limit": limit})

        returned = max(0, min(limit, total - offset))
        return cls(
            totalRequested=total,
            currentBatch=offset // limit + 1,
            totalBatches=max(1, math.ceil(total / limit)),
            offset=offset,
            limit=limit,
            returned=returned,
            hasMore=offset + limit < total,
        )

    def slice(self, ids: list) -> list:
        return ids[self.offset:self.offset + self.limit]

    def to_dict(self) -> dict:
        return asdict(self)


def _parse_window_arg(value, name):
    if value is None:
        return None
    parsed = as_int(value)
    if parsed is None:
        raise ValidationError(f"{name} must be an integer", details={name: value})
    return parsed


def _strip_inline_media(evidence: dict) -> dict:
    """Drop inline ``data`` payloads from media entries; metadata is kept."""
    stripped = dict(evidence)
    for kind in MEDIA_KINDS:
        entries = evidence.get(kind)
        if not isinstance(entries, list):
            continue
        stripped[kind] = [
            {k: v for k, v in entry.items() if k != "data"} if isinstance(entry, dict) else entry
            for entry in entries
        ]
    return stripped


def _execution_state(execution: WorkflowExecution, include_attachments: bool) -> dict:
    state = execution.to_dict()
    steps = []
    for step in execution.steps:
        d = step.to_dict()
        evidence = step.evidence or {}
        d["evidence"] = evidence if include_attachments else _strip_inline_media(evidence)
        steps.append(d)
    state["steps"] = steps
    return state


def build_offline_package(
    organization_id: int,
    work_item_ids,
    *,
    include_templates: bool = True,
    include_attachments: bool = True,
    offset=None,
    limit=None,
) -> dict:
    """Assemble ``{workItems, templates, executionStates, metadata}``.

    Raises:
        ValidationError: ``work_item_ids`` is not a list, or bad offset/limit.
    """
    if not isinstance(work_item_ids, list):
        raise ValidationError("workItemIds array is required")

    window = ChunkWindow.resolve(
        len(work_item_ids),
        _parse_window_arg(offset, "offset"),
        _parse_window_arg(limit, "limit"),
    )
    batch_ids = [i for i in (as_int(v) for v in window.slice(work_item_ids)) if i is not None]

    rows = []
    if batch_ids:
        rows = (
            WorkItem.query_for_organization(organization_id)
            .filter(WorkItem.id.in_(batch_ids))
            .all()
        )
    by_id = {row.id: row for row in rows}
    # Requested order; unknown and cross-organization ids are skipped
    work_items = [by_id[i] for i in dict.fromkeys(batch_ids) if i in by_id]

    templates = []
    if include_templates:
        template_ids = list(dict.fromkeys(
            str(w.workflow_template_id) for w in work_items if w.workflow_template_id
        ))
        if template_ids:
            found = (
                WorkflowTemplate.query_for_organization(organization_id)
                .filter(WorkflowTemplate.id.in_(template_ids))
                .all()
            )
            found_by_id = {t.id: t for t in found}
            templates = [found_by_id[t].to_dict() for t in template_ids if t in found_by_id]
            missing = [t for t in template_ids if t not in found_by_id]
            if missing:
                logger.warning("Offline package skipped unresolvable templates: %s", missing)

    execution_states = []
    if work_items:
        executions = (
            WorkflowExecution.query_for_organization(organization_id)
            .filter(WorkflowExecution.work_item_id.in_([w.id for w in work_items]))
            .all()
        )
        exec_by_item = {e.work_item_id: e for e in executions}
        for w in work_items:
            execution = exec_by_item.get(w.id)
            if execution is not None:
                execution_states.append(_execution_state(execution, include_attachments))

    # Unknown ids are skipped, so report what was actually returned
    window = replace(window, returned=len(work_items))
    metadata = window.to_dict()
    logger.info(
        "Offline package built batch=%d/%d items=%d templates=%d",
        window.currentBatch, window.totalBatches, len(work_items), len(templates),
        extra={"organization_id": organization_id},
    )
    return {
        "workItems": [w.to_dict() for w in work_items],
        "templates": templates,
        "executionStates": execution_states,
        "metadata": metadata,
    }
