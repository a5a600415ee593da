"""Route, chapter and character-introduction bookkeeping around scenes."""

import logging

from vn_engine.models import Character, GameState, Route
from vn_engine.registry import BlueprintRegistry
from vn_engine.storage import GameStore

logger = logging.getLogger(__name__)


def first_scene_of(registry: BlueprintRegistry, route: Route) -> tuple[str, str]:
    """Return (chapter_id, scene_id) where *route* begins."""
    chapter = registry.get_chapter(route.starting_chapter)
    if not chapter.scenes:
        raise ValueError(f"Chapter {chapter.id} has no scenes")
    return chapter.id, chapter.scenes[0]


def new_game(registry: BlueprintRegistry, store: GameStore) -> str:
    """Reset progress and point at the first scene of the starting route.

    Returns the scene id to start.
    """
    game = registry.get_game()
    route = registry.get_route(game.starting_route)
    chapter_id, scene_id = first_scene_of(registry, route)

    store.reset(game.initial_state)
    store.set_current_scene(route.id, chapter_id, scene_id)
    store.unlock_route(route.id)
    logger.info("New game: route=%s chapter=%s scene=%s", route.id, chapter_id, scene_id)
    return scene_id


def route_locked(route: Route, state: GameState) -> bool:
    """Routes with requirements stay locked until explicitly unlocked."""
    return route.requirements is not None and route.id not in state.unlocked_routes


def list_routes(registry: BlueprintRegistry, state: GameState) -> list[dict]:
    routes = []
    for route_id in registry.get_game().routes:
        route = registry.get_route(route_id)
        routes.append({
            "id": route.id,
            "title": route.title,
            "description": route.description,
            "locked": route_locked(route, state),
        })
    return routes


def select_route(registry: BlueprintRegistry, store: GameStore, route_id: str) -> str:
    """Move to the first scene of *route_id* and save. Returns the scene id."""
    route = registry.get_route(route_id)
    if route_locked(route, store.state):
        raise ValueError(f"Route {route_id} is locked")
    chapter_id, scene_id = first_scene_of(registry, route)
    store.set_current_scene(route.id, chapter_id, scene_id)
    store.save()
    return scene_id


def pending_introductions(
    registry: BlueprintRegistry, store: GameStore, scene_id: str
) -> list[Character]:
    """Non-player participants with an introduction the player hasn't seen.

    The presentation layer shows these before starting the scene.
    """
    scene = registry.get_scene(scene_id)
    introduced = set(store.state.introduced_characters)
    pending = []
    for char_id in scene.characters:
        char = registry.get_character(char_id)
        if not char.is_player and char.introduction and char_id not in introduced:
            pending.append(char)
    return pending
