"""Game state store — the player's persistent progress.

Holds one GameState and exposes the only mutators the rest of the engine
uses. save()/load() write the whole structure to a single JSON file; callers
never see the file format.

The store is shared by the scene engine and the tool executor, both of which
receive it as an explicit constructor argument. All access happens on the
single asyncio task driving the current scene, so there is no locking.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

from vn_engine.models import GameState, InitialState, Item

logger = logging.getLogger(__name__)

DossierKind = Literal["objective", "note"]


class GameStore:
    def __init__(self, save_path: Path | None = None, state: GameState | None = None) -> None:
        self._save_path = save_path
        self._state = state or GameState()

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def save_path(self) -> Path | None:
        return self._save_path

    def snapshot(self) -> dict[str, Any]:
        """Return a detached plain-dict copy of the state (for read-only lookups)."""
        return self._state.model_dump()

    # ------------------------------------------------------------------
    # Relationships, flags, vars
    # ------------------------------------------------------------------

    def set_affinity(self, character_id: str, delta: int | float) -> None:
        """Add *delta* to a character's relationship score (unset counts as 0)."""
        current = self._state.affinity.get(character_id, 0)
        self._state.affinity[character_id] = current + delta

    def set_flag(self, flag_id: str, value: bool) -> None:
        self._state.flags[flag_id] = value

    def set_var(self, key: str, value: Any) -> None:
        self._state.vars[key] = value

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def add_item(self, item: Item) -> None:
        self._state.inventory.append(item)

    def remove_item(self, item_id: str) -> None:
        self._state.inventory = [i for i in self._state.inventory if i.id != item_id]

    # ------------------------------------------------------------------
    # Dossier
    # ------------------------------------------------------------------

    def update_dossier(self, kind: DossierKind, text: str) -> bool:
        """Append an objective or note. Returns False if it was already there."""
        entries = (
            self._state.dossier.objectives if kind == "objective"
            else self._state.dossier.notes
        )
        if text in entries:
            return False
        entries.append(text)
        return True

    def clear_objectives(self) -> None:
        self._state.dossier.objectives = []

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    def set_current_scene(self, route: str, chapter: str, scene: str) -> None:
        self._state.current_route = route
        self._state.current_chapter = chapter
        self._state.current_scene = scene

    def unlock_route(self, route_id: str) -> None:
        if route_id not in self._state.unlocked_routes:
            self._state.unlocked_routes.append(route_id)

    def mark_character_introduced(self, character_id: str) -> None:
        if character_id not in self._state.introduced_characters:
            self._state.introduced_characters.append(character_id)

    def reset(self, initial: InitialState | None = None) -> None:
        self._state = GameState()
        if initial is not None:
            self._state.flags.update(initial.flags)
            self._state.vars.update(initial.vars)
            for route_id in initial.unlocked_routes:
                self.unlock_route(route_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        if self._save_path is None:
            logger.debug("save() skipped: no save path configured")
            return
        self._save_path.parent.mkdir(parents=True, exist_ok=True)
        self._save_path.write_text(self._state.model_dump_json(indent=2))
        logger.debug("Game saved to %s", self._save_path)

    def load(self) -> bool:
        """Restore the saved state. Returns False when there is no save file."""
        if self._save_path is None or not self._save_path.is_file():
            return False
        self._state = GameState.model_validate_json(self._save_path.read_text())
        logger.debug("Game loaded from %s", self._save_path)
        return True
