"""
Continuity engine: finalization, scene planning, prompt assembly, and page rendering.
"""

from .capabilities import EngineCapabilities
from .composition import CompositionPlanner, ScenePlan, cap_scene_entities, resolve_reference
from .continuity import apply_page_updates, apply_protagonist_lock
from .extraction import RegistryExtractor, StoryFinalizer, reconcile_registry
from .illustrations import pin_illustration, upsert_illustration
from .page_entities import PageEntities, PageEntityExtractor
from .prompt_assembler import assemble_scene_prompt, compose_regeneration_text
from .props import are_props_equivalent, deduplicate_props
from .scene_generator import SceneGenerator, SceneResult
from .service import PicturebookService

__all__ = [
    "CompositionPlanner",
    "EngineCapabilities",
    "PageEntities",
    "PageEntityExtractor",
    "PicturebookService",
    "RegistryExtractor",
    "ScenePlan",
    "SceneGenerator",
    "SceneResult",
    "StoryFinalizer",
    "apply_page_updates",
    "apply_protagonist_lock",
    "are_props_equivalent",
    "assemble_scene_prompt",
    "cap_scene_entities",
    "compose_regeneration_text",
    "deduplicate_props",
    "pin_illustration",
    "reconcile_registry",
    "resolve_reference",
    "upsert_illustration",
]
