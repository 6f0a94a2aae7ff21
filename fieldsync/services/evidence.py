"""
Step evidence: template-defined structure plus accumulated capture data.

An ``Evidence`` value keeps the two halves apart. ``TemplateFields`` is
frozen and only ever comes from the existing record, so merging capture
data from a client can never replace or drop a template-defined field.

Wire shape (a flat JSON object on ``WorkflowExecutionStep.evidence``)::

    {
        "stepId": "inspect-chamber",       # capture (seeded)
        "checklistItems": [...],           # template
        "formFields": [...],               # template
        "photoConfig": {...},              # template
        "stepType": "photo",               # template
        "config": {...},                   # template
        "required": true,                  # template
        "photos": [{...}, ...],            # capture
        "audioRecordings": [{...}, ...],   # capture
        "answers": {...}                   # capture, free-form
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

PHOTOS = "photos"
AUDIO_RECORDINGS = "audioRecordings"
MEDIA_KINDS = (PHOTOS, AUDIO_RECORDINGS)

# Dataclass attribute → wire key
_TEMPLATE_KEYS = {
    "checklist_items": "checklistItems",
    "form_fields": "formFields",
    "photo_config": "photoConfig",
    "step_type": "stepType",
    "config": "config",
    "required": "required",
}
TEMPLATE_WIRE_KEYS = frozenset(_TEMPLATE_KEYS.values())


@dataclass(frozen=True)
class TemplateFields:
    """Template-defined step configuration. ``None`` means absent."""

    checklist_items: Any = None
    form_fields: Any = None
    photo_config: Any = None
    step_type: Any = None
    config: Any = None
    required: Any = None

    @classmethod
    def from_dict(cls, raw: dict) -> "TemplateFields":
        return cls(**{attr: raw.get(key) for attr, key in _TEMPLATE_KEYS.items()})

    def to_dict(self) -> dict:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[_TEMPLATE_KEYS[f.name]] = value
        return out


def normalize_photos(photos) -> list:
    """Coerce photo entries: bare data strings become ``{"data": s}``."""
    if not isinstance(photos, list):
        return photos
    return [{"data": p} if isinstance(p, str) else p for p in photos]


@dataclass(frozen=True)
class Evidence:
    template: TemplateFields = field(default_factory=TemplateFields)
    capture: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw) -> "Evidence":
        """Split a stored evidence blob; ``None`` / non-dicts are empty evidence."""
        if not isinstance(raw, dict):
            return cls()
        capture = {k: v for k, v in raw.items() if k not in TEMPLATE_WIRE_KEYS}
        return cls(template=TemplateFields.from_dict(raw), capture=capture)

    def to_dict(self) -> dict:
        out = dict(self.capture)
        out.update(self.template.to_dict())
        return out

    # ── Merge ────────────────────────────────────────────────────────────

    def merge(self, incoming) -> "Evidence":
        """Shallow-merge capture keys from ``incoming``; incoming wins.

        Template fields in ``incoming`` are ignored: the result keeps this
        record's template fields, so merging is idempotent for them.
        """
        if isinstance(incoming, Evidence):
            incoming = incoming.capture
        if not isinstance(incoming, dict):
            return self
        updates = {k: v for k, v in incoming.items() if k not in TEMPLATE_WIRE_KEYS}
        if PHOTOS in updates:
            updates[PHOTOS] = normalize_photos(updates[PHOTOS])
        return Evidence(template=self.template, capture={**self.capture, **updates})

    # ── Media arrays ─────────────────────────────────────────────────────

    def media(self, kind: str) -> list:
        entries = self.capture.get(kind)
        return list(entries) if isinstance(entries, list) else []

    def find_duplicate(self, kind: str, original_name: str, size: int) -> dict | None:
        """Existing entry with the same original file name and byte size."""
        for entry in self.media(kind):
            if not isinstance(entry, dict):
                continue
            name = entry.get("originalFileName") or entry.get("fileName")
            if name == original_name and entry.get("size") == size:
                return entry
        return None

    def append_media(self, kind: str, entry: dict) -> "Evidence":
        return self.merge({kind: self.media(kind) + [entry]})

    def remove_media(self, kind: str, index: int) -> "Evidence":
        """Drop one entry by position.

        Raises:
            IndexError: ``index`` is out of range.
        """
        entries = self.media(kind)
        if index < 0 or index >= len(entries):
            raise IndexError(f"{kind} index {index} out of range (0..{len(entries) - 1})")
        return self.merge({kind: entries[:index] + entries[index + 1:]})
