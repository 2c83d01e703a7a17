"""
CLI example to run a complete picture book end-to-end.

Usage:
    python scripts/run_full_pipeline.py \
        --profile kid_profile.yaml \
        --photo example_images/abby.jpg \
        --user-id demo
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict

import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from picturebook import EngineCapabilities, EngineConfig, PicturebookService
from picturebook.common import PicturebookError
from picturebook.story_generation import KidProfile


class ProgressTracker:
    """
    Provides user-friendly command-line progress updates while pages are illustrated.
    """

    def __init__(self) -> None:
        self._page_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "scenes:start":
                total = payload.get("total_pages", 0)
                self._write(f"[5/5] Illustrating {total} pages...")
                self._page_bar = tqdm(total=total, desc="Illustrated pages", unit="page")
            case "page:processing":
                if self._page_bar is not None:
                    self._page_bar.set_description(f"Page {payload.get('page_number')}")
            case "page:done":
                if self._page_bar is not None:
                    self._page_bar.update(1)
            case "scenes:complete":
                self._write("[5/5] All pages illustrated.")
                self.close()

    def close(self) -> None:
        if self._page_bar is not None:
            self._page_bar.close()
            self._page_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Write and illustrate a personalized picture book.")
    parser.add_argument(
        "--profile",
        required=True,
        help="Path to the kid profile YAML/JSON file (name + interests).",
    )
    parser.add_argument(
        "--photo",
        required=True,
        help="Path to the child's photo used for the character model.",
    )
    parser.add_argument(
        "--user-id",
        default="local",
        help="Owner recorded on the project.",
    )
    parser.add_argument(
        "--idea",
        type=int,
        default=1,
        help="Which generated story idea to write (1-based).",
    )
    parser.add_argument(
        "--project-root",
        default=None,
        help="Directory for project YAML documents (defaults to PICTUREBOOK_PROJECT_ROOT).",
    )
    parser.add_argument(
        "--storage-root",
        default=None,
        help="Directory for generated images (defaults to PICTUREBOOK_STORAGE_ROOT).",
    )
    parser.add_argument(
        "--placeholder-model",
        action="store_true",
        help="Use the photo itself as the character model instead of rendering one.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args()


def load_profile_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported profile file format. Use YAML or JSON.")

    if not isinstance(data, Dict):
        raise ValueError("Profile file must deserialize to a mapping.")
    return data


def build_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.from_env()
    overrides: Dict[str, Any] = {}
    if args.project_root:
        overrides["project_root"] = args.project_root
    if args.storage_root:
        overrides["storage_root"] = args.storage_root
    if args.placeholder_model:
        overrides["use_placeholder_character_model"] = True
    return replace(config, **overrides)


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    profile = KidProfile.from_mapping(load_profile_mapping(Path(args.profile)))
    photo_path = Path(args.photo)
    service = PicturebookService(EngineCapabilities.from_config(build_config(args)))
    user_id = args.user_id
    tracker = ProgressTracker()

    try:
        tqdm.write(f"[1/5] Brainstorming story ideas for {profile.name}...")
        ideas, project_id = service.generate_story_ideas(
            profile.name, profile.interests, user_id=user_id
        )
        for index, idea in enumerate(ideas, start=1):
            tqdm.write(f"    {index}. {idea.title}: {idea.description}")
        chosen = ideas[min(max(args.idea, 1), len(ideas)) - 1]

        tqdm.write(f"[2/5] Writing '{chosen.title}'...")
        title, pages = service.write_story(
            profile.name, profile.interests, chosen, project_id, user_id=user_id
        )
        tqdm.write(f"[2/5] '{title}' has {len(pages)} pages.")

        tqdm.write("[3/5] Building the story registry...")
        registry = service.finalize_story(project_id, user_id=user_id)
        tqdm.write(
            f"[3/5] Registry: {len(registry.characters)} characters, "
            f"{len(registry.props)} props, {len(registry.environments)} places."
        )

        tqdm.write("[4/5] Creating the character model...")
        protagonist = registry.protagonist()
        service.attach_source_photo(
            project_id,
            protagonist.key if protagonist else profile.name,
            photo_path.read_bytes(),
            photo_path.suffix or ".jpg",
            user_id=user_id,
        )
        model = service.generate_character_model(project_id, user_id=user_id)
        tqdm.write(f"[4/5] Character model: {model.model_url}")

        results = service.generate_book_scenes(
            project_id, user_id=user_id, progress_callback=tracker
        )
    except PicturebookError as exc:
        tqdm.write(f"Failed ({exc.http_status}): {exc}")
        return 1
    finally:
        tracker.close()

    for result in results:
        flag = " (not recorded)" if result.registry_warning else ""
        print(f"Page {result.page}: {result.image_url}{flag}")
    print(f"Saved project {project_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
