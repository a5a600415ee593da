"""WebSocket bridge between a browser presentation layer and a SceneEngine.

Server → client messages are scene events (model_dump of the event models)
plus three control messages:

    {"type": "need_input"}      the engine is waiting for player text
    {"type": "need_continue"}   the engine is waiting for an acknowledgement
    {"type": "error", "error"}  a scene could not be started/continued

Client → server messages:

    {"type": "start", "scene_id"?}   start a scene (default: current scene)
    {"type": "input", "text"}        resolve a pending player-input request
    {"type": "continue"}             resolve a pending continue request

A scene_transition is followed automatically by the next scene.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from vn_engine.events import ProtocolError, Resolver, SceneTransition
from vn_engine.llm import ChatLLM, LLMError
from vn_engine.registry import BlueprintNotFoundError, BlueprintRegistry
from vn_engine.scene import SceneEngine, SceneError
from vn_engine.storage import GameStore

logger = logging.getLogger(__name__)


class SceneSession:
    def __init__(
        self,
        websocket: WebSocket,
        registry: BlueprintRegistry,
        store: GameStore,
        llm: ChatLLM,
        **engine_options: Any,
    ) -> None:
        self._ws = websocket
        self._store = store
        self._outbox: asyncio.Queue[dict] = asyncio.Queue()
        self._input: Resolver | None = None
        self._continue: Resolver | None = None
        self._scene_task: asyncio.Task | None = None

        self._engine = SceneEngine(registry, store, llm, self._on_update, **engine_options)
        self._engine.on_need_player_input(self._need_input)
        self._engine.on_need_continue(self._need_continue)

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def _send(self, message: dict) -> None:
        self._outbox.put_nowait(message)

    def _on_update(self, event: BaseModel) -> None:
        self._send(event.model_dump(mode="json"))

    def _need_input(self, resolve: Resolver) -> None:
        self._input = resolve
        self._send({"type": "need_input"})

    def _need_continue(self, resolve: Resolver) -> None:
        self._continue = resolve
        self._send({"type": "need_continue"})

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def run(self) -> None:
        sender = asyncio.create_task(self._pump())
        try:
            while True:
                message = await self._ws.receive_json()
                self._handle(message)
        except WebSocketDisconnect:
            logger.info("Scene socket disconnected")
        finally:
            if self._scene_task is not None:
                self._scene_task.cancel()
            sender.cancel()

    async def _pump(self) -> None:
        while True:
            message = await self._outbox.get()
            await self._ws.send_json(message)

    def _handle(self, message: dict) -> None:
        kind = message.get("type") if isinstance(message, dict) else None

        if kind == "start":
            scene_id = message.get("scene_id") or self._store.state.current_scene
            if not scene_id:
                self._send({"type": "error", "error": "No scene to start"})
                return
            self._input = self._continue = None
            self._scene_task = asyncio.create_task(self._play(scene_id))

        elif kind == "input":
            if self._input is None:
                self._send({"type": "error", "error": "Not waiting for player input"})
                return
            resolve, self._input = self._input, None
            resolve(str(message.get("text", "")))

        elif kind == "continue":
            if self._continue is None:
                self._send({"type": "error", "error": "Not waiting for continue"})
                return
            resolve, self._continue = self._continue, None
            resolve()

        else:
            self._send({"type": "error", "error": f"Unknown message type: {kind!r}"})

    async def _play(self, scene_id: str) -> None:
        try:
            final = await self._engine.start_scene(scene_id)
            while isinstance(final, SceneTransition):
                final = await self._engine.start_scene(final.next_scene)
        except (BlueprintNotFoundError, SceneError, LLMError, ProtocolError) as e:
            logger.warning("Scene %s stopped: %s", scene_id, e)
            self._send({"type": "error", "error": str(e)})
        except Exception as e:
            logger.exception("Scene %s crashed", scene_id)
            self._send({"type": "error", "error": f"Something went wrong: {str(e) or type(e).__name__}"})
