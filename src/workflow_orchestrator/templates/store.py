"""Storage for materialized templates.

A workflow template and its whole stage/activity subtree form one record set;
stores add it in a single locked step so readers never observe half a template.
Records are never updated in place: a changed template is a new version.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from workflow_orchestrator.errors import TemplateStoreError, TemplateVersionConflict
from workflow_orchestrator.templates.model import WorkflowTemplate


class TemplateStore(Protocol):
    def add(self, template: WorkflowTemplate) -> None: ...

    def get(self, storage_id: str) -> WorkflowTemplate | None: ...

    def find(self, template_id: str, version: int | None = None) -> WorkflowTemplate | None: ...

    def list(self, business_type: str | None = None) -> list[WorkflowTemplate]: ...

    def delete_business_type(self, business_type: str) -> int: ...


def _check_conflict(existing: list[WorkflowTemplate], template: WorkflowTemplate) -> None:
    for current in existing:
        if current.key == template.key:
            raise TemplateVersionConflict(template.template_id, template.version)
        if current.id == template.id:
            raise TemplateStoreError(f"Storage ID already in use: {template.id}")


def _find(
    templates: list[WorkflowTemplate], template_id: str, version: int | None
) -> WorkflowTemplate | None:
    matches = [t for t in templates if t.template_id == template_id]
    if version is not None:
        matches = [t for t in matches if t.version == version]
    if not matches:
        return None
    return max(matches, key=lambda t: t.version)


class InMemoryTemplateStore:
    """Process-local store, used in tests and for catalog-backed engines."""

    def __init__(self, templates: list[WorkflowTemplate] | None = None) -> None:
        self._lock = threading.Lock()
        self._templates: list[WorkflowTemplate] = []
        for template in templates or []:
            self.add(template)

    def add(self, template: WorkflowTemplate) -> None:
        with self._lock:
            _check_conflict(self._templates, template)
            self._templates.append(template)

    def get(self, storage_id: str) -> WorkflowTemplate | None:
        with self._lock:
            return next((t for t in self._templates if t.id == storage_id), None)

    def find(self, template_id: str, version: int | None = None) -> WorkflowTemplate | None:
        with self._lock:
            return _find(self._templates, template_id, version)

    def list(self, business_type: str | None = None) -> list[WorkflowTemplate]:
        with self._lock:
            templates = list(self._templates)
        if business_type is not None:
            templates = [t for t in templates if t.business_type == business_type]
        return sorted(templates, key=lambda t: t.key)

    def delete_business_type(self, business_type: str) -> int:
        with self._lock:
            before = len(self._templates)
            self._templates = [t for t in self._templates if t.business_type != business_type]
            return before - len(self._templates)


@dataclass
class JsonTemplateStore:
    """File-backed store: a single JSON document holding every record set."""

    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _load_unlocked(self) -> list[WorkflowTemplate]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise TemplateStoreError(f"Cannot read template store {self.path}: {e}") from e
        if not isinstance(raw, list):
            raise TemplateStoreError(f"Template store is not a JSON list: {self.path}")
        try:
            return [WorkflowTemplate.from_json(item) for item in raw]
        except (KeyError, TypeError, ValueError) as e:
            raise TemplateStoreError(f"Malformed record in {self.path}: {e!r}") from e

    def _save_unlocked(self, templates: list[WorkflowTemplate]) -> None:
        payload = [t.to_json() for t in sorted(templates, key=lambda t: t.key)]
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
            tmp.replace(self.path)
        except OSError as e:
            raise TemplateStoreError(f"Cannot write template store {self.path}: {e}") from e

    def add(self, template: WorkflowTemplate) -> None:
        with self._lock:
            templates = self._load_unlocked()
            _check_conflict(templates, template)
            templates.append(template)
            self._save_unlocked(templates)

    def get(self, storage_id: str) -> WorkflowTemplate | None:
        with self._lock:
            return next((t for t in self._load_unlocked() if t.id == storage_id), None)

    def find(self, template_id: str, version: int | None = None) -> WorkflowTemplate | None:
        with self._lock:
            return _find(self._load_unlocked(), template_id, version)

    def list(self, business_type: str | None = None) -> list[WorkflowTemplate]:
        with self._lock:
            templates = self._load_unlocked()
        if business_type is not None:
            templates = [t for t in templates if t.business_type == business_type]
        return sorted(templates, key=lambda t: t.key)

    def delete_business_type(self, business_type: str) -> int:
        with self._lock:
            templates = self._load_unlocked()
            kept = [t for t in templates if t.business_type != business_type]
            if len(kept) != len(templates):
                self._save_unlocked(kept)
            return len(templates) - len(kept)
