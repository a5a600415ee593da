"""Blueprint registry — read-only game content loaded from JSON files.

Directory layout:

    {root}/
      languages.json               ← ["en_US", "fr_FR", ...]
      game.json                    ← Game metadata (language independent)
      {lang}/
        characters/index.json      ← list of character ids
        characters/{id}.json       ← Character
        scenes/index.json
        scenes/{id}.json           ← Scene
        items/index.json
        items/{id}.json            ← Item
        chapters.json              ← list of Chapter
        routes.json                ← list of Route

Every lookup by id raises BlueprintNotFoundError for unknown ids, except
get_item() which returns None (tools report missing items as a tool error).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from vn_engine.models import Chapter, Character, Game, Item, Route, Scene

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en_US"

B = TypeVar("B", bound=BaseModel)


class BlueprintNotFoundError(LookupError):
    """Raised when a blueprint id is not known to the registry."""


class BlueprintError(ValueError):
    """Raised when a blueprint file is missing, not JSON, or fails validation."""


class BlueprintRegistry:
    def __init__(self, root: Path | None = None) -> None:
        self._root = root
        self._characters: dict[str, Character] = {}
        self._scenes: dict[str, Scene] = {}
        self._chapters: dict[str, Chapter] = {}
        self._routes: dict[str, Route] = {}
        self._items: dict[str, Item] = {}
        self._game: Game | None = None
        self._language = DEFAULT_LANGUAGE
        self._languages: list[str] = []

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _read_json(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise BlueprintError(f"Blueprint file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise BlueprintError(f"Failed to parse JSON for blueprint {path.name!r}: {e}") from e

    def _read_model(self, path: Path, model: type[B]) -> B:
        try:
            return model.model_validate(self._read_json(path))
        except ValidationError as e:
            raise BlueprintError(f"Invalid blueprint {path}: {e}") from e

    def _read_indexed(self, directory: Path, model: type[B]) -> list[B]:
        ids = self._read_json(directory / "index.json")
        return [self._read_model(directory / f"{id_}.json", model) for id_ in ids]

    def _read_list(self, path: Path, model: type[B]) -> list[B]:
        data = self._read_json(path)
        try:
            return [model.model_validate(entry) for entry in data]
        except ValidationError as e:
            raise BlueprintError(f"Invalid blueprint {path}: {e}") from e

    def load(self, language: str | None = None) -> None:
        """Load every blueprint for *language* (or the first available one)."""
        if self._root is None:
            raise BlueprintError("Registry has no root directory to load from")

        languages_file = self._root / "languages.json"
        self._languages = self._read_json(languages_file) if languages_file.is_file() else [DEFAULT_LANGUAGE]
        if language and language in self._languages:
            self._language = language
        else:
            if language:
                logger.warning("Language %r not available, using %r", language, self._languages[0])
            self._language = self._languages[0] if self._languages else DEFAULT_LANGUAGE

        self._game = self._read_model(self._root / "game.json", Game)

        base = self._root / self._language
        for char in self._read_indexed(base / "characters", Character):
            self._characters[char.id] = char
        for scene in self._read_indexed(base / "scenes", Scene):
            self._scenes[scene.id] = scene
        if (base / "items" / "index.json").is_file():
            for item in self._read_indexed(base / "items", Item):
                self._items[item.id] = item
        for chapter in self._read_list(base / "chapters.json", Chapter):
            self._chapters[chapter.id] = chapter
        for route in self._read_list(base / "routes.json", Route):
            self._routes[route.id] = route

        logger.info(
            "Loaded blueprints lang=%s scenes=%d characters=%d items=%d",
            self._language, len(self._scenes), len(self._characters), len(self._items),
        )

    def switch_language(self, language: str) -> None:
        """Drop language-specific blueprints and reload them in *language*."""
        if language not in self._languages:
            raise ValueError(f"Language {language} not available")
        self._characters.clear()
        self._scenes.clear()
        self._chapters.clear()
        self._routes.clear()
        self._items.clear()
        self.load(language)

    # ------------------------------------------------------------------
    # In-memory registration (demo content and tests)
    # ------------------------------------------------------------------

    def register_game(self, game: Game) -> None:
        self._game = game

    def register_character(self, character: Character) -> None:
        self._characters[character.id] = character

    def register_scene(self, scene: Scene) -> None:
        self._scenes[scene.id] = scene

    def register_item(self, item: Item) -> None:
        self._items[item.id] = item

    def register_chapter(self, chapter: Chapter) -> None:
        self._chapters[chapter.id] = chapter

    def register_route(self, route: Route) -> None:
        self._routes[route.id] = route

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_character(self, id: str) -> Character:
        char = self._characters.get(id)
        if char is None:
            raise BlueprintNotFoundError(f"Character {id} not found")
        return char

    def get_scene(self, id: str) -> Scene:
        scene = self._scenes.get(id)
        if scene is None:
            raise BlueprintNotFoundError(f"Scene {id} not found")
        return scene

    def get_chapter(self, id: str) -> Chapter:
        chapter = self._chapters.get(id)
        if chapter is None:
            raise BlueprintNotFoundError(f"Chapter {id} not found")
        return chapter

    def get_route(self, id: str) -> Route:
        route = self._routes.get(id)
        if route is None:
            raise BlueprintNotFoundError(f"Route {id} not found")
        return route

    def get_item(self, id: str) -> Item | None:
        return self._items.get(id)

    def get_game(self) -> Game:
        if self._game is None:
            raise BlueprintNotFoundError("Game not loaded")
        return self._game

    @property
    def current_language(self) -> str:
        return self._language

    @property
    def available_languages(self) -> list[str]:
        return list(self._languages)
