"""
Registry Store bindings: whole-document, last-writer-wins persistence per project.
"""

from __future__ import annotations

import copy
import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

import yaml

from picturebook.common.errors import ProjectNotFound, StorageFailure

logger = logging.getLogger(__name__)


class ProjectStore(ABC):
    """
    Persistent mapping from project identifier to its document.

    ``write_project`` replaces the given top-level fields and leaves the rest of the
    document untouched. Concurrent writers to one project are not coordinated.
    """

    @abstractmethod
    def create_project(self, fields: Mapping[str, Any]) -> str:
        """Persist a new document and return its identifier."""

    @abstractmethod
    def load_project(self, project_id: str) -> dict[str, Any]:
        """Return a copy of the stored document or raise :class:`ProjectNotFound`."""

    @abstractmethod
    def write_project(self, project_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Replace ``fields`` on the stored document and return the merged result."""

    @staticmethod
    def new_project_id() -> str:
        return uuid.uuid4().hex


class InMemoryProjectStore(ProjectStore):
    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    def create_project(self, fields: Mapping[str, Any]) -> str:
        project_id = str(fields.get("project_id") or self.new_project_id())
        document = copy.deepcopy(dict(fields))
        document["project_id"] = project_id
        self._documents[project_id] = document
        return project_id

    def load_project(self, project_id: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self._documents[project_id])
        except KeyError as exc:
            raise ProjectNotFound(project_id) from exc

    def write_project(self, project_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        if project_id not in self._documents:
            raise ProjectNotFound(project_id)
        self._documents[project_id].update(copy.deepcopy(dict(fields)))
        return copy.deepcopy(self._documents[project_id])


class YamlProjectStore(ProjectStore):
    """
    Stores one YAML document per project under ``root``.

    Writes go to a temporary sibling file first and are moved into place, so a reader
    never observes a half-written document.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def create_project(self, fields: Mapping[str, Any]) -> str:
        project_id = str(fields.get("project_id") or self.new_project_id())
        document = dict(fields)
        document["project_id"] = project_id
        self._dump(project_id, document)
        logger.info("Created project %s", project_id)
        return project_id

    def load_project(self, project_id: str) -> dict[str, Any]:
        path = self._path(project_id)
        if not path.exists():
            raise ProjectNotFound(project_id)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise StorageFailure(f"Could not read project '{project_id}'.") from exc
        if not isinstance(data, dict):
            raise StorageFailure(f"Project '{project_id}' is not a mapping document.")
        return data

    def write_project(self, project_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        document = self.load_project(project_id)
        document.update(fields)
        self._dump(project_id, document)
        return document

    def _dump(self, project_id: str, document: Mapping[str, Any]) -> None:
        path = self._path(project_id)
        temp_path = path.with_suffix(".yaml.tmp")
        try:
            temp_path.write_text(
                yaml.safe_dump(dict(document), sort_keys=False, allow_unicode=True),
                encoding="utf-8",
            )
            os.replace(temp_path, path)
        except (OSError, yaml.YAMLError) as exc:
            raise StorageFailure(f"Could not write project '{project_id}'.") from exc

    def _path(self, project_id: str) -> Path:
        safe_id = "".join(ch for ch in str(project_id) if ch.isalnum() or ch in "-_")
        if not safe_id:
            raise ProjectNotFound(project_id)
        return self._root / f"{safe_id}.yaml"
