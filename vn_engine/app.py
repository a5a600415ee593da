import logging

from fastapi import FastAPI

from vn_engine.config import Settings
from vn_engine.llm import ChatLLM, HttpChatLLM
from vn_engine.registry import BlueprintRegistry
from vn_engine.routes import router
from vn_engine.storage import GameStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    registry: BlueprintRegistry | None = None,
    store: GameStore | None = None,
    llm: ChatLLM | None = None,
) -> FastAPI:
    """Build the API app. Pieces not passed in are built from settings.

    Run with: uvicorn --factory vn_engine.app:create_app
    """
    settings = settings or Settings.from_env()

    if registry is None:
        registry = BlueprintRegistry(settings.blueprints_dir)
        registry.load(settings.language or None)
    if store is None:
        store = GameStore(settings.save_path)
        if not store.load():
            logger.info("No saved game at %s, starting fresh", settings.save_path)
    if llm is None:
        llm = HttpChatLLM(
            settings.player2_endpoint,
            api_key=settings.player2_api_key,
            timeout=settings.llm_timeout,
        )

    app = FastAPI(title="VN Engine")
    app.state.registry = registry
    app.state.store = store
    app.state.llm = llm
    app.state.engine_options = {
        "max_tool_iterations": settings.max_tool_iterations,
        "reveal_ms_per_char": settings.reveal_ms_per_char,
        "language": registry.current_language,
    }
    app.include_router(router, prefix="/api")
    return app
