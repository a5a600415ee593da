"""Core domain models.

Blueprints (scenes, characters, items, routes, chapters, the game itself) are
authored content loaded by the registry. They are frozen: nothing at runtime
may mutate them, and the scene engine deep-copies whatever it keeps.

GameState is the mutable player progress owned by the GameStore.
SceneModel/CharacterModel are the per-scene run state built by the engine.

Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

PLAYER_ROLE = "player"


class _Blueprint(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ---------------------------------------------------------------------------
# Blueprints
# ---------------------------------------------------------------------------

class ImageRef(_Blueprint):
    prompt: str | None = None
    uri: str | None = None


class Item(_Blueprint):
    id: str
    name: str
    description: str = ""
    image: ImageRef = Field(default_factory=ImageRef)


class Identity(_Blueprint):
    personality: str = ""
    background: str = ""
    speaking_style: str = ""
    relationships: dict[str, str] = Field(default_factory=dict)


class Character(_Blueprint):
    """A participant in scenes. Exactly one character has the player role."""

    id: str
    name: str
    role: str
    introduction: str | None = None  # shown once, the first time they appear
    view: dict[str, ImageRef] = Field(default_factory=dict)
    identity: Identity = Field(default_factory=Identity)
    inventory: list[Item] = Field(default_factory=list)

    @property
    def is_player(self) -> bool:
        return self.role == PLAYER_ROLE


class GoalEffects(_Blueprint):
    transition_to: str | None = None
    give_items: list[str] = Field(default_factory=list)
    unlock_route: str | None = None


class Goal(_Blueprint):
    """A success condition judged by the model, never evaluated in code."""

    id: str
    character_id: str | None = None  # None = scene-global goal
    description: str
    on_complete: GoalEffects = Field(default_factory=GoalEffects)


class Scene(_Blueprint):
    id: str
    title: str
    view: dict[str, ImageRef] = Field(default_factory=dict)
    prompt: str = ""
    characters: list[str] = Field(default_factory=list)
    goals: list[Goal] = Field(default_factory=list)
    intro: str | None = None
    outro: str | None = None

    @property
    def background(self) -> ImageRef | None:
        return self.view.get("default")


class Chapter(_Blueprint):
    id: str
    title: str
    intro: str = ""
    scenes: list[str] = Field(default_factory=list)


class RouteRequirements(_Blueprint):
    unlocked_routes: list[str] = Field(default_factory=list)
    flags: dict[str, bool] = Field(default_factory=dict)
    affinity: dict[str, int] = Field(default_factory=dict)


class Route(_Blueprint):
    id: str
    title: str
    description: str = ""
    chapters: list[str] = Field(default_factory=list)
    starting_chapter: str
    requirements: RouteRequirements | None = None


class InitialState(_Blueprint):
    flags: dict[str, bool] = Field(default_factory=dict)
    vars: dict[str, Any] = Field(default_factory=dict)
    unlocked_routes: list[str] = Field(default_factory=list)


class Game(_Blueprint):
    """Top-level game metadata (game.json)."""

    id: str
    title: str
    version: str = "0.0.0"
    description: str = ""
    authors: list[str] = Field(default_factory=list)
    player_character_id: str
    routes: list[str] = Field(default_factory=list)
    starting_route: str
    initial_state: InitialState | None = None
    theme: str = ""


# ---------------------------------------------------------------------------
# Player progress
# ---------------------------------------------------------------------------

class Dossier(BaseModel):
    objectives: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class GameState(BaseModel):
    """Everything that survives a scene change. Owned by GameStore."""

    affinity: dict[str, int | float] = Field(default_factory=dict)
    flags: dict[str, bool] = Field(default_factory=dict)
    vars: dict[str, Any] = Field(default_factory=dict)
    inventory: list[Item] = Field(default_factory=list)
    dossier: Dossier = Field(default_factory=Dossier)
    current_route: str = ""
    current_chapter: str = ""
    current_scene: str = ""
    unlocked_routes: list[str] = Field(default_factory=list)
    introduced_characters: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Scene run state
# ---------------------------------------------------------------------------

class CharacterModel(BaseModel):
    blueprint: Character
    scene_goals: list[Goal] = Field(default_factory=list)


class SceneModel(BaseModel):
    """Run state of the scene being played. Discarded on scene change."""

    blueprint: Scene
    characters: dict[str, CharacterModel]
    active_character: str

    @property
    def active(self) -> CharacterModel:
        return self.characters[self.active_character]
