"""
The capabilities record threaded through every engine operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from picturebook.ai_generation import ImageRenderer, LargeModelAdapter
from picturebook.common import CompletionCallable, EngineConfig
from picturebook.models import Project
from picturebook.storage import (
    LocalObjectStorage,
    ObjectStorage,
    ProjectStore,
    YamlProjectStore,
)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EngineCapabilities:
    """
    Everything an operation may touch: the model adapter, the registry store, object
    storage, a clock, and the configuration. Nothing is created at import time.
    """

    adapter: LargeModelAdapter
    store: ProjectStore
    objects: ObjectStorage
    config: EngineConfig = field(default_factory=EngineConfig)
    clock: Clock = utc_now

    @classmethod
    def from_config(
        cls,
        config: EngineConfig | None = None,
        *,
        completion_fn: CompletionCallable | None = None,
        renderer: ImageRenderer | None = None,
        store: ProjectStore | None = None,
        objects: ObjectStorage | None = None,
        clock: Clock | None = None,
    ) -> "EngineCapabilities":
        config = config or EngineConfig.from_env()
        return cls(
            adapter=LargeModelAdapter(config=config, completion_fn=completion_fn, renderer=renderer),
            store=store or YamlProjectStore(config.project_root),
            objects=objects
            or LocalObjectStorage(config.storage_root, public_base_url=config.public_base_url),
            config=config,
            clock=clock or utc_now,
        )

    def now_iso(self) -> str:
        return self.clock().isoformat()

    def cache_buster(self) -> str:
        return f"v={int(self.clock().timestamp())}"

    def load(self, project_id: str) -> Project:
        return Project.from_mapping(project_id, self.store.load_project(project_id))

    def write(self, project_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        return self.store.write_project(project_id, fields)


def with_cache_buster(url: str, token: str) -> str:
    base = url.split("?", 1)[0]
    return f"{base}?{token}"
