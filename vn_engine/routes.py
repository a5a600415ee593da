"""FastAPI endpoints under /api.

Progress: state, new game, save/load. Routes: listing (with lock state) and
selection. Introductions: pending character intros for a scene, marking a
character introduced. Scene play happens over the /api/scene WebSocket
(see session.py).
"""

from fastapi import APIRouter, HTTPException, Request, WebSocket

from vn_engine import progression
from vn_engine.registry import BlueprintNotFoundError
from vn_engine.session import SceneSession

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/llm/health")
async def llm_health(request: Request):
    """Check that the inference service accepts our credentials."""
    check = getattr(request.app.state.llm, "health_check", None)
    if check is None:
        return {"ok": True}
    return {"ok": await check()}


# ── Progress ─────────────────────────────────────────────


@router.get("/state")
async def get_state(request: Request):
    """Current player progress."""
    return request.app.state.store.state.model_dump(mode="json")


@router.post("/new-game")
async def new_game(request: Request):
    """Reset progress to the start of the starting route."""
    scene_id = progression.new_game(request.app.state.registry, request.app.state.store)
    request.app.state.store.save()
    return {"scene_id": scene_id}


@router.post("/save")
async def save_game(request: Request):
    request.app.state.store.save()
    return {"ok": True}


@router.post("/load")
async def load_game(request: Request):
    if not request.app.state.store.load():
        raise HTTPException(404, "No saved game")
    return request.app.state.store.state.model_dump(mode="json")


# ── Routes ───────────────────────────────────────────────


@router.get("/routes")
async def list_routes(request: Request):
    """All routes of the game with their lock state."""
    return progression.list_routes(request.app.state.registry, request.app.state.store.state)


@router.post("/routes/{route_id}/select")
async def select_route(route_id: str, request: Request):
    """Jump to the first scene of a route."""
    try:
        scene_id = progression.select_route(
            request.app.state.registry, request.app.state.store, route_id
        )
    except BlueprintNotFoundError:
        raise HTTPException(404, "Route not found")
    except ValueError as e:
        raise HTTPException(409, str(e))
    return {"scene_id": scene_id}


# ── Introductions ────────────────────────────────────────


@router.get("/scenes/{scene_id}/introductions")
async def scene_introductions(scene_id: str, request: Request):
    """Characters to introduce before the scene starts."""
    try:
        pending = progression.pending_introductions(
            request.app.state.registry, request.app.state.store, scene_id
        )
    except BlueprintNotFoundError as e:
        raise HTTPException(404, str(e))
    return [{"id": c.id, "name": c.name, "introduction": c.introduction} for c in pending]


@router.post("/characters/{character_id}/introduced")
async def mark_introduced(character_id: str, request: Request):
    try:
        request.app.state.registry.get_character(character_id)
    except BlueprintNotFoundError:
        raise HTTPException(404, "Character not found")
    request.app.state.store.mark_character_introduced(character_id)
    request.app.state.store.save()
    return {"ok": True}


# ── Scene play ───────────────────────────────────────────


@router.websocket("/scene")
async def scene_socket(websocket: WebSocket):
    """Play scenes: events out, player input / continue in."""
    await websocket.accept()
    state = websocket.app.state
    session = SceneSession(websocket, state.registry, state.store, state.llm, **state.engine_options)
    await session.run()
