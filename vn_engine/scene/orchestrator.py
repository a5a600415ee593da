"""Scene engine — plays one scene end-to-end.

Scene flow:
  1. Load scene + participants. The active character is the first
     participant whose role is not "player". Dossier objectives are
     replaced by the scene's goals. Emit scene_loaded.
  2. Intro (if any): typewriter reveal, then wait for continue.
  3. Opening model turn ("user entered the scene"), dialogue revealed
     chunk by chunk, each chunk waiting for continue.
  4. Player loop: wait for player input → ai_thinking → model turn →
     dialogue chunks. Repeats until a tool result is terminal.
  5. End: outro reveal (if any), then scene_transition when a goal names
     a next scene, otherwise scene_ended.

One model turn runs up to max_tool_iterations request/execute rounds.
Tool calls run in the order returned and stop at the first terminal result.

Failure handling:
  - unknown ids / no eligible character → raised out of start_scene
  - tool failures → structured error results the model can read
  - LLMError on a player turn → transcript rolled back, turn_failed
    emitted, and the engine waits for input again so the player can retry
  - LLMError on the opening turn → raised out of start_scene
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from vn_engine.events import (
    AIThinking,
    DialogueChunk,
    EventChannel,
    Handler,
    SceneEnded,
    SceneLoaded,
    SceneTransition,
    TurnFailed,
    Typewriter,
)
from vn_engine.llm import ChatLLM, LLMError
from vn_engine.models import CharacterModel, Goal, SceneModel
from vn_engine.prompts import generate_prompt
from vn_engine.registry import BlueprintRegistry
from vn_engine.storage import GameStore
from vn_engine.tools import TOOL_CATALOG, ToolExecutor, is_terminal

from .dialogue import reveal_duration_ms, split_sentences

logger = logging.getLogger(__name__)

OPENING_MESSAGE = "system: user entered the scene"
DEFAULT_MAX_TOOL_ITERATIONS = 5


class SceneError(RuntimeError):
    """Raised when a scene cannot be played with its authored content."""


class TurnResult(BaseModel):
    text: str = ""
    ended: bool = False
    result: str | None = None
    summary: str | None = None


class SceneEngine:
    def __init__(
        self,
        registry: BlueprintRegistry,
        store: GameStore,
        llm: ChatLLM,
        on_update: Callable[[Any], None],
        *,
        tools: ToolExecutor | None = None,
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        reveal_ms_per_char: int = 50,
        language: str | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._llm = llm
        self._tools = tools or ToolExecutor(registry, store)
        self._channel = EventChannel(on_update)
        self._max_tool_iterations = max_tool_iterations
        self._reveal_ms_per_char = reveal_ms_per_char
        self._language = language

        self._scene: SceneModel | None = None
        self._messages: list[dict[str, Any]] = []
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Presentation wiring
    # ------------------------------------------------------------------

    def on_need_player_input(self, handler: Handler) -> None:
        self._channel.on_need_player_input(handler)

    def on_need_continue(self, handler: Handler) -> None:
        self._channel.on_need_continue(handler)

    @property
    def scene(self) -> SceneModel | None:
        return self._scene

    @property
    def transcript(self) -> list[dict[str, Any]]:
        return list(self._messages)

    # ------------------------------------------------------------------
    # Scene lifecycle
    # ------------------------------------------------------------------

    async def start_scene(self, scene_id: str) -> SceneTransition | SceneEnded:
        """Play *scene_id* until it ends. Returns the final event."""
        scene = self._load_scene(scene_id)

        current = asyncio.current_task()
        if self._task is not None and self._task is not current and not self._task.done():
            logger.info("Abandoning in-flight scene for %s", scene_id)
            self._task.cancel()
        self._task = current
        self._channel.cancel_pending()

        self._scene = scene
        self._messages = []
        self._reset_objectives(scene)
        logger.info("Scene %s loaded, active character %s", scene_id, scene.active_character)
        self._channel.emit(SceneLoaded(scene=scene.model_copy(deep=True)))

        if scene.blueprint.intro:
            await self._typewrite(scene.blueprint.intro)
            await self._channel.continue_.wait()

        response = await self.chat_turn(OPENING_MESSAGE)
        if response.text:
            await self._display_dialogue(response.text)

        while not response.ended:
            player_input = await self._channel.player_input.wait()
            self._channel.emit(AIThinking())
            try:
                response = await self.chat_turn(player_input)
            except LLMError as e:
                logger.warning("Model turn failed in scene %s: %s", scene_id, e)
                self._channel.emit(TurnFailed(error=str(e), player_input=player_input))
                continue
            if response.text:
                await self._display_dialogue(response.text)

        return await self._end_scene(response.result, response.summary)

    def _load_scene(self, scene_id: str) -> SceneModel:
        """Resolve everything the scene needs. Touches no engine or store state."""
        blueprint = self._registry.get_scene(scene_id)
        participants = {cid: self._registry.get_character(cid) for cid in blueprint.characters}

        active = next((cid for cid, c in participants.items() if not c.is_player), None)
        if active is None:
            raise SceneError(f"Scene {scene_id} has no NPC characters")

        # Owning characters of goals must resolve too, before anything changes
        for goal in blueprint.goals:
            if goal.character_id:
                self._registry.get_character(goal.character_id)

        return SceneModel(
            blueprint=blueprint.model_copy(deep=True),
            characters={
                cid: CharacterModel(
                    blueprint=char.model_copy(deep=True),
                    scene_goals=[g.model_copy(deep=True) for g in blueprint.goals if g.character_id == cid],
                )
                for cid, char in participants.items()
            },
            active_character=active,
        )

    def _reset_objectives(self, scene: SceneModel) -> None:
        self._store.clear_objectives()
        for goal in scene.blueprint.goals:
            if goal.character_id:
                owner = self._registry.get_character(goal.character_id)
                text = f"{owner.name}: {goal.description}"
            else:
                text = goal.description
            self._store.update_dossier("objective", text)

    async def _end_scene(
        self, result: str | None, summary: str | None
    ) -> SceneTransition | SceneEnded:
        scene = self._require_scene()
        blueprint = scene.blueprint

        if blueprint.outro:
            await self._typewrite(blueprint.outro)

        goal = next((g for g in blueprint.goals if g.on_complete.transition_to), None)
        event: SceneTransition | SceneEnded
        if goal is not None:
            if result == "success":
                self._apply_rewards(goal)
            next_scene = goal.on_complete.transition_to
            state = self._store.state
            self._store.set_current_scene(state.current_route, state.current_chapter, next_scene)
            self._store.save()
            logger.info("Scene %s ended (%s), transition to %s", blueprint.id, result, next_scene)
            event = SceneTransition(next_scene=next_scene)
        else:
            logger.info("Scene %s ended (%s)", blueprint.id, result)
            event = SceneEnded(result=result, summary=summary)

        self._scene = None
        self._messages = []
        self._channel.emit(event)
        return event

    def _apply_rewards(self, goal: Goal) -> None:
        for item_id in goal.on_complete.give_items:
            item = self._registry.get_item(item_id)
            if item is None:
                logger.warning("Goal %s grants unknown item %s", goal.id, item_id)
                continue
            self._store.add_item(item)
        if goal.on_complete.unlock_route:
            self._store.unlock_route(goal.on_complete.unlock_route)

    # ------------------------------------------------------------------
    # Model turns
    # ------------------------------------------------------------------

    async def chat_turn(self, message: str) -> TurnResult:
        """Send *message* as the user and run tool rounds until a text reply.

        The transcript is only committed when the turn completes; an LLMError
        leaves it exactly as it was before the call.
        """
        scene = self._require_scene()
        messages = list(self._messages)
        if not messages:
            system_prompt = generate_prompt(
                self._registry, scene.blueprint.id, scene.active_character, self._language
            )
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": message})

        last_text = ""
        for iteration in range(self._max_tool_iterations):
            reply = await self._llm(messages, TOOL_CATALOG)
            messages.append(reply.to_message())
            if reply.content:
                last_text = reply.content

            if not reply.tool_calls:
                self._messages = messages
                return TurnResult(text=reply.content or "")

            for call in reply.tool_calls:
                logger.debug("round %d tool %s", iteration + 1, call.function.name)
                result = self._tools.execute(call.function.name, call.function.arguments)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result, default=str),
                })
                if is_terminal(result):
                    self._messages = messages
                    return TurnResult(
                        text=reply.content or "",
                        ended=True,
                        result=result.get("result"),
                        summary=result.get("summary"),
                    )

        logger.warning(
            "No final reply after %d tool rounds; showing last available text",
            self._max_tool_iterations,
        )
        self._messages = messages
        return TurnResult(text=last_text)

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------

    async def _display_dialogue(self, text: str) -> None:
        scene = self._require_scene()
        speaker = scene.active
        for chunk in split_sentences(text):
            self._channel.emit(DialogueChunk(
                speaker_id=scene.active_character,
                speaker_name=speaker.blueprint.name,
                text=chunk,
            ))
            await self._channel.continue_.wait()

    async def _typewrite(self, text: str) -> None:
        duration = reveal_duration_ms(text, self._reveal_ms_per_char)
        self._channel.emit(Typewriter(text=text, duration_ms=duration))
        await asyncio.sleep(duration / 1000)

    def _require_scene(self) -> SceneModel:
        if self._scene is None:
            raise SceneError("No scene is loaded")
        return self._scene
