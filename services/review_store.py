import logging
from typing import Any, List, Optional

from errors import ConfigurationError, EnhancementError
from models import Character, Scene

logger = logging.getLogger(__name__)


class ReviewStore:
    """
    Editable characters and scenes surfaced at the two review checkpoints.

    Entries are addressed by index. Only descriptions change here; names and
    scene ids are the keys panels refer to and stay as extracted.
    """

    def __init__(self, stages: Any = None):
        if stages is None:
            from services import gemini_service as stages
        self.stages = stages
        self.characters: List[Character] = []
        self.scenes: List[Scene] = []
        self.enhancing: Optional[str] = None  # "character:<i>" / "scene:<i>" while a rewrite is in flight

    # --- Bulk replace ---
    def replace_characters(self, characters: List[Character]) -> None:
        self.characters = [Character.model_validate(c) for c in characters]

    def replace_scenes(self, scenes: List[Scene]) -> None:
        self.scenes = [Scene.model_validate(s) for s in scenes]

    # --- Checkpoint edits ---
    def apply_character_edits(self, characters: List[Character]) -> None:
        """Takes descriptions from a reviewed list; names, order and count must match."""
        edits = [Character.model_validate(c) for c in characters]
        _check_keys("character", "name", [c.name for c in self.characters], [c.name for c in edits])
        for current, edit in zip(self.characters, edits):
            current.description = edit.description

    def apply_scene_edits(self, scenes: List[Scene]) -> None:
        edits = [Scene.model_validate(s) for s in scenes]
        _check_keys("scene", "id", [s.id for s in self.scenes], [s.id for s in edits])
        for current, edit in zip(self.scenes, edits):
            current.description = edit.description

    def clear(self) -> None:
        self.characters = []
        self.scenes = []
        self.enhancing = None

    # --- Single-field edits ---
    def update_character_description(self, index: int, description: str) -> Character:
        character = self._character(index)
        character.description = description
        return character

    def update_scene_description(self, index: int, description: str) -> Scene:
        scene = self._scene(index)
        scene.description = description
        return scene

    # --- Enhancement ---
    async def enhance_character(self, index: int) -> Character:
        character = self._character(index)
        self.enhancing = f"character:{index}"
        try:
            enhanced = await self.stages.enhance_character(character.model_copy())
        except (EnhancementError, ConfigurationError):
            raise
        except Exception as e:
            raise EnhancementError(target=character.name) from e
        finally:
            self.enhancing = None
        # The list may have been replaced while the rewrite was in flight.
        if index < len(self.characters) and self.characters[index].name == character.name:
            self.characters[index].description = enhanced
        else:
            logger.warning("Discarding enhancement for %s: character list changed.", character.name)
        return self.characters[index] if index < len(self.characters) else character

    async def enhance_scene(self, index: int) -> Scene:
        scene = self._scene(index)
        self.enhancing = f"scene:{index}"
        try:
            enhanced = await self.stages.enhance_scene(scene.model_copy())
        except (EnhancementError, ConfigurationError):
            raise
        except Exception as e:
            raise EnhancementError(target=scene.id) from e
        finally:
            self.enhancing = None
        if index < len(self.scenes) and self.scenes[index].id == scene.id:
            self.scenes[index].description = enhanced
        else:
            logger.warning("Discarding enhancement for %s: scene list changed.", scene.id)
        return self.scenes[index] if index < len(self.scenes) else scene

    def _character(self, index: int) -> Character:
        if not 0 <= index < len(self.characters):
            raise IndexError(f"No character at index {index}.")
        return self.characters[index]

    def _scene(self, index: int) -> Scene:
        if not 0 <= index < len(self.scenes):
            raise IndexError(f"No scene at index {index}.")
        return self.scenes[index]


def _check_keys(kind: str, key: str, expected: List[str], received: List[str]) -> None:
    if len(received) != len(expected):
        raise ValueError(f"Expected {len(expected)} {kind}s, got {len(received)}. Only descriptions can be edited.")
    for i, (old, new) in enumerate(zip(expected, received)):
        if old != new:
            raise ValueError(f"The {kind} {key} at position {i} changed from '{old}' to '{new}'. "
                             "Only descriptions can be edited.")
