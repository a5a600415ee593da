"""Event channel between the scene engine and the presentation layer.

The engine pushes SceneUpdate events through a single on_update callback and
suspends at two points, each backed by a single-slot Suspension:

    player_input — the presentation layer resolves it with the player's text
    continue_    — resolved (with no value) when the player acknowledges

Handlers receive a resolver and must eventually call it. The engine never
polls. At most one request per suspension kind is outstanding; asking again
while one is pending, or suspending before a handler is registered, is a
wiring bug and raises ProtocolError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, Field

from vn_engine.models import SceneModel

logger = logging.getLogger(__name__)

T = TypeVar("T")

Resolver = Callable[..., None]
Handler = Callable[[Resolver], None]


class ProtocolError(RuntimeError):
    """Raised when the presentation layer is not wired correctly."""


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class SceneLoaded(BaseModel):
    type: Literal["scene_loaded"] = "scene_loaded"
    scene: SceneModel


class Typewriter(BaseModel):
    """Timed narration reveal (scene intro/outro)."""

    type: Literal["typewriter"] = "typewriter"
    text: str
    duration_ms: int = 0


class DialogueChunk(BaseModel):
    type: Literal["dialogue_chunk"] = "dialogue_chunk"
    speaker_id: str
    speaker_name: str
    text: str


class AIThinking(BaseModel):
    type: Literal["ai_thinking"] = "ai_thinking"


class SceneTransition(BaseModel):
    type: Literal["scene_transition"] = "scene_transition"
    next_scene: str


class SceneEnded(BaseModel):
    type: Literal["scene_ended"] = "scene_ended"
    result: str | None = None
    summary: str | None = None


class TurnFailed(BaseModel):
    """The model call for a player turn failed; the same input may be re-sent."""

    type: Literal["turn_failed"] = "turn_failed"
    error: str
    player_input: str


SceneUpdate = Annotated[
    Union[SceneLoaded, Typewriter, DialogueChunk, AIThinking, SceneTransition, SceneEnded, TurnFailed],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Suspension — one pending request at a time
# ---------------------------------------------------------------------------

class Suspension(Generic[T]):
    def __init__(self, name: str) -> None:
        self._name = name
        self._handler: Handler | None = None
        self._pending: asyncio.Future | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def set_handler(self, handler: Handler) -> None:
        self._handler = handler

    async def wait(self) -> T:
        """Hand a resolver to the handler and wait until it is called."""
        if self._handler is None:
            raise ProtocolError(f"No {self._name} handler registered")
        if self._pending is not None:
            raise ProtocolError(f"A {self._name} request is already pending")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending = future

        def resolve(value: Any = None) -> None:
            if self._pending is not future or future.done():
                logger.warning("Ignoring stale %s resolver", self._name)
                return
            self._pending = None
            future.set_result(value)

        try:
            self._handler(resolve)
            return await future
        finally:
            if self._pending is future:
                self._pending = None

    def cancel(self) -> None:
        """Drop the outstanding request, if any; its waiter gets CancelledError."""
        if self._pending is not None:
            future, self._pending = self._pending, None
            future.cancel()


# ---------------------------------------------------------------------------
# EventChannel
# ---------------------------------------------------------------------------

class EventChannel:
    def __init__(self, on_update: Callable[[Any], None]) -> None:
        self._on_update = on_update
        self.player_input: Suspension[str] = Suspension("player input")
        self.continue_: Suspension[None] = Suspension("continue")

    def emit(self, event: BaseModel) -> None:
        logger.debug("event %s", getattr(event, "type", type(event).__name__))
        self._on_update(event)

    def on_need_player_input(self, handler: Handler) -> None:
        self.player_input.set_handler(handler)

    def on_need_continue(self, handler: Handler) -> None:
        self.continue_.set_handler(handler)

    def cancel_pending(self) -> None:
        self.player_input.cancel()
        self.continue_.cancel()
