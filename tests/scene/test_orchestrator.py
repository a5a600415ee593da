"""Scene engine tests — loading, turn loop, tool dispatch, endings.

The inference service is a StubLLM (see conftest.py); the presentation layer
is a Presenter that records events and answers suspensions, either right
away (scripted) or later from the test body (manual).
"""

import asyncio
import json

import pytest

from vn_engine.events import ProtocolError
from vn_engine.llm import AssistantMessage, FunctionCall, LLMError, ToolCall
from vn_engine.models import Character, Goal, GoalEffects, Scene
from vn_engine.registry import BlueprintNotFoundError
from vn_engine.scene import OPENING_MESSAGE, SceneEngine, SceneError
from vn_engine.tools import ToolKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _call(call_id: str, kind: ToolKind, **args) -> ToolCall:
    return ToolCall(id=call_id, function=FunctionCall(name=kind.value, arguments=json.dumps(args)))


def _tools(*calls: ToolCall, content: str | None = None) -> AssistantMessage:
    return AssistantMessage(content=content, tool_calls=list(calls))


def _end(result: str = "success", summary: str = "done", call_id: str = "end") -> AssistantMessage:
    return _tools(_call(call_id, ToolKind.END_SCENE, result=result, summary=summary))


class Presenter:
    """Records events; answers continue/input right away unless told not to."""

    def __init__(self, inputs: list[str] | None = None, manual: bool = False) -> None:
        self.events: list = []
        self.inputs = list(inputs or [])
        self.manual = manual
        self.continues = 0
        self.pending_input = None
        self.pending_continue = None

    def on_update(self, event) -> None:
        self.events.append(event)

    def need_continue(self, resolve) -> None:
        self.continues += 1
        if self.manual:
            self.pending_continue = resolve
        else:
            resolve()

    def need_input(self, resolve) -> None:
        if self.manual:
            self.pending_input = resolve
            return
        if not self.inputs:
            raise AssertionError("Engine asked for player input the test did not script")
        resolve(self.inputs.pop(0))

    def types(self) -> list[str]:
        return [e.type for e in self.events]

    def of_type(self, kind: str) -> list:
        return [e for e in self.events if e.type == kind]


def _engine(registry, store, llm, presenter: Presenter, **options) -> SceneEngine:
    options.setdefault("reveal_ms_per_char", 0)
    engine = SceneEngine(registry, store, llm, presenter.on_update, **options)
    engine.on_need_player_input(presenter.need_input)
    engine.on_need_continue(presenter.need_continue)
    return engine


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoading:
    async def test_scene_loaded_with_first_npc_active(self, registry, store, make_llm) -> None:
        presenter = Presenter()
        engine = _engine(registry, store, make_llm([_end()]), presenter)
        await engine.start_scene("scene_1")

        loaded = presenter.events[0]
        assert loaded.type == "scene_loaded"
        assert loaded.scene.active_character == "riley"
        assert set(loaded.scene.characters) == {"player", "riley"}
        assert [g.id for g in loaded.scene.characters["riley"].scene_goals] == ["earn_trust"]
        assert loaded.scene.characters["player"].scene_goals == []

    async def test_objectives_replaced_by_scene_goals(self, registry, store, make_llm) -> None:
        store.update_dossier("objective", "Leftover from an old scene")
        store.update_dossier("note", "Keep this note")
        engine = _engine(registry, store, make_llm([_end()]), Presenter())

        await engine.start_scene("scene_2")

        assert store.state.dossier.objectives == [
            "Mara: Explain why you ran.",
            "Leave before dawn.",
        ]
        assert store.state.dossier.notes == ["Keep this note"]

    async def test_unknown_scene_raises_and_changes_nothing(self, registry, store, make_llm) -> None:
        store.update_dossier("objective", "Still here")
        presenter = Presenter()
        engine = _engine(registry, store, make_llm([]), presenter)

        with pytest.raises(BlueprintNotFoundError):
            await engine.start_scene("nowhere")

        assert presenter.events == []
        assert store.state.dossier.objectives == ["Still here"]
        assert engine.scene is None

    async def test_unknown_participant_raises(self, registry, store, make_llm) -> None:
        registry.register_scene(Scene(id="broken", title="Broken", characters=["riley", "ghost"]))
        engine = _engine(registry, store, make_llm([]), Presenter())
        with pytest.raises(BlueprintNotFoundError, match="ghost"):
            await engine.start_scene("broken")

    async def test_scene_without_npc_raises(self, registry, store, make_llm) -> None:
        registry.register_scene(Scene(id="solo", title="Alone", characters=["player"]))
        presenter = Presenter()
        engine = _engine(registry, store, make_llm([]), presenter)

        with pytest.raises(SceneError, match="no NPC"):
            await engine.start_scene("solo")
        assert presenter.events == []

    async def test_registry_blueprints_not_shared(self, registry, store, make_llm) -> None:
        presenter = Presenter()
        engine = _engine(registry, store, make_llm([_end()]), presenter)
        await engine.start_scene("scene_1")

        loaded = presenter.events[0].scene
        assert loaded.blueprint == registry.get_scene("scene_1")
        assert loaded.blueprint is not registry.get_scene("scene_1")
        assert loaded.characters["riley"].blueprint is not registry.get_character("riley")

    async def test_intro_revealed_before_first_model_call(self, registry, store, make_llm) -> None:
        registry.register_scene(Scene(
            id="with_intro", title="Intro", characters=["player", "riley"],
            intro="Rain hammers the windows.",
        ))
        presenter = Presenter()
        llm = make_llm([_end()])
        engine = _engine(registry, store, llm, presenter, reveal_ms_per_char=0)

        await engine.start_scene("with_intro")

        assert presenter.types()[:2] == ["scene_loaded", "typewriter"]
        assert presenter.events[1].text == "Rain hammers the windows."
        assert presenter.continues == 1
        assert len(llm.calls) == 1


# ---------------------------------------------------------------------------
# Conversation turns
# ---------------------------------------------------------------------------

class TestConversation:
    async def test_end_to_end_first_exchange(self, registry, store, make_llm) -> None:
        presenter = Presenter(manual=True)
        seen_at_second_call: list[str] = []

        class RecordingLLM(make_llm):
            async def __call__(self, messages, tools):
                if self.calls:
                    seen_at_second_call.extend(presenter.types())
                return await super().__call__(messages, tools)

        llm = RecordingLLM(["Hello there.", _end()])
        engine = _engine(registry, store, llm, presenter)
        task = asyncio.create_task(engine.start_scene("scene_1"))
        await _settle()

        assert presenter.types() == ["scene_loaded", "dialogue_chunk"]
        assert presenter.events[0].scene.active_character == "riley"
        chunk = presenter.events[1]
        assert (chunk.speaker_id, chunk.speaker_name, chunk.text) == ("riley", "Riley", "Hello there.")
        assert presenter.pending_continue is not None
        assert presenter.pending_input is None

        presenter.pending_continue()
        await _settle()
        assert presenter.pending_input is not None

        presenter.pending_input("Hi")
        await task

        assert seen_at_second_call[-1] == "ai_thinking"
        messages, tools = llm.calls[1]
        assert messages[-1] == {"role": "user", "content": "Hi"}
        assert [t["function"]["name"] for t in tools] == [k.value for k in ToolKind]

    async def test_opening_turn_sends_system_prompt_and_entry_message(self, registry, store, make_llm) -> None:
        llm = make_llm([_end()])
        engine = _engine(registry, store, llm, Presenter())
        await engine.start_scene("scene_1")

        messages, _ = llm.calls[0]
        assert messages[0]["role"] == "system"
        assert "You are Riley" in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": OPENING_MESSAGE}

    async def test_system_prompt_only_once_per_scene(self, registry, store, make_llm) -> None:
        llm = make_llm(["Hello.", "Sure.", _end()])
        engine = _engine(registry, store, llm, Presenter(inputs=["One", "Two"]))
        await engine.start_scene("scene_1")

        final_messages, _ = llm.calls[-1]
        assert [m["role"] for m in final_messages].count("system") == 1
        assert [m["content"] for m in final_messages if m["role"] == "user"] == [
            OPENING_MESSAGE, "One", "Two",
        ]
        assert final_messages[2] == {"role": "assistant", "content": "Hello."}

    async def test_dialogue_split_into_chunks_each_gated(self, registry, store, make_llm) -> None:
        presenter = Presenter(inputs=["ok"])
        llm = make_llm(["Hi. How are you? Fine, thanks!", _end()])
        engine = _engine(registry, store, llm, presenter)
        await engine.start_scene("scene_1")

        chunks = [e.text for e in presenter.of_type("dialogue_chunk")]
        assert chunks == ["Hi.", "How are you?", "Fine, thanks!"]
        assert presenter.continues == 3

    async def test_ai_thinking_after_each_player_input(self, registry, store, make_llm) -> None:
        presenter = Presenter(inputs=["a", "b"])
        llm = make_llm(["One.", "Two.", _end()])
        engine = _engine(registry, store, llm, presenter)
        await engine.start_scene("scene_1")

        assert presenter.types() == [
            "scene_loaded",
            "dialogue_chunk",
            "ai_thinking",
            "dialogue_chunk",
            "ai_thinking",
            "scene_transition",
        ]


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

class TestToolCalls:
    async def test_tool_results_fed_back_then_text(self, registry, store, make_llm) -> None:
        llm = make_llm([
            _tools(_call("c1", ToolKind.GET_STATE, keys=["affinity.riley"])),
            "Welcome back.",
            _end(),
        ])
        presenter = Presenter(inputs=["hello"])
        engine = _engine(registry, store, llm, presenter)
        await engine.start_scene("scene_1")

        second_call, _ = llm.calls[1]
        assert second_call[-2]["role"] == "assistant"
        assert second_call[-2]["tool_calls"][0]["id"] == "c1"
        assert second_call[-1] == {
            "role": "tool",
            "tool_call_id": "c1",
            "content": json.dumps({"affinity.riley": None}),
        }
        assert [e.text for e in presenter.of_type("dialogue_chunk")] == ["Welcome back."]

    async def test_terminal_result_stops_remaining_calls(self, registry, store, make_llm) -> None:
        llm = make_llm([
            _tools(
                _call("c1", ToolKind.SET_FLAG, flag_id="first", value=True),
                _call("c2", ToolKind.END_SCENE, result="neutral", summary="cut short"),
                _call("c3", ToolKind.SET_FLAG, flag_id="third", value=True),
            ),
        ])
        presenter = Presenter()
        engine = _engine(registry, store, llm, presenter)
        await engine.start_scene("scene_1")

        assert store.state.flags == {"first": True}
        assert len(llm.calls) == 1
        assert presenter.types() == ["scene_loaded", "scene_transition"]

    async def test_tool_error_does_not_abort_scene(self, registry, store, make_llm) -> None:
        bad = ToolCall(id="bad", function=FunctionCall(name=ToolKind.SET_FLAG.value, arguments="{not json"))
        llm = make_llm([
            _tools(bad, _call("u1", ToolKind.SET_AFFINITY, character_id="riley", delta=1)),
            "Let's try that again.",
            _end(),
        ])
        presenter = Presenter(inputs=["sure"])
        engine = _engine(registry, store, llm, presenter)
        await engine.start_scene("scene_1")

        second_call, _ = llm.calls[1]
        error_result = json.loads(second_call[-2]["content"])
        assert error_result["success"] is False
        assert store.state.affinity == {"riley": 1}
        assert presenter.types()[-1] == "scene_transition"

    async def test_iteration_cap_surfaces_last_text(self, registry, store, make_llm) -> None:
        looping = [
            _tools(_call(f"c{i}", ToolKind.GET_STATE, keys=["flags"]), content="Hmm." if i == 1 else None)
            for i in range(3)
        ]
        llm = make_llm(looping + [_end()])
        presenter = Presenter(inputs=["hello?"])
        engine = _engine(registry, store, llm, presenter, max_tool_iterations=3)
        await engine.start_scene("scene_1")

        assert len(llm.calls) == 4
        assert [e.text for e in presenter.of_type("dialogue_chunk")] == ["Hmm."]
        assert presenter.types()[-1] == "scene_transition"

    async def test_text_alongside_terminal_call_is_shown(self, registry, store, make_llm) -> None:
        llm = make_llm([
            _tools(_call("e", ToolKind.END_SCENE, result="success", summary="bye"), content="Take the key."),
        ])
        presenter = Presenter()
        engine = _engine(registry, store, llm, presenter)
        await engine.start_scene("scene_1")

        assert [e.text for e in presenter.of_type("dialogue_chunk")] == ["Take the key."]


# ---------------------------------------------------------------------------
# Endings
# ---------------------------------------------------------------------------

class TestEnding:
    async def test_transition_updates_pointer_before_event(self, registry, store, make_llm) -> None:
        store.set_current_scene("main", "chapter_1", "scene_1")
        pointer_at_event: list[str] = []
        presenter = Presenter()

        def on_update(event) -> None:
            if event.type == "scene_transition":
                pointer_at_event.append(store.state.current_scene)
            presenter.on_update(event)

        engine = SceneEngine(registry, store, make_llm([_end()]), on_update, reveal_ms_per_char=0)
        engine.on_need_continue(presenter.need_continue)
        engine.on_need_player_input(presenter.need_input)

        final = await engine.start_scene("scene_1")

        assert final.type == "scene_transition"
        assert final.next_scene == "scene_2"
        assert pointer_at_event == ["scene_2"]
        assert (store.state.current_route, store.state.current_chapter) == ("main", "chapter_1")
        assert store.save_path.is_file()

    async def test_success_applies_goal_rewards(self, registry, store, make_llm) -> None:
        engine = _engine(registry, store, make_llm([_end("success")]), Presenter())
        await engine.start_scene("scene_1")

        assert [i.id for i in store.state.inventory] == ["brass_key"]
        assert store.state.unlocked_routes == ["epilogue"]

    async def test_failure_transitions_without_rewards(self, registry, store, make_llm) -> None:
        engine = _engine(registry, store, make_llm([_end("fail")]), Presenter())
        final = await engine.start_scene("scene_1")

        assert final.next_scene == "scene_2"
        assert store.state.inventory == []
        assert store.state.unlocked_routes == []

    async def test_no_transition_emits_scene_ended(self, registry, store, make_llm) -> None:
        store.set_current_scene("main", "chapter_1", "scene_2")
        presenter = Presenter()
        engine = _engine(registry, store, make_llm([_end("neutral", "She stays.")]), presenter)

        final = await engine.start_scene("scene_2")

        assert final.type == "scene_ended"
        assert (final.result, final.summary) == ("neutral", "She stays.")
        assert presenter.events[-1] == final
        assert store.state.current_scene == "scene_2"

    async def test_only_first_transition_goal_consulted(self, registry, store, make_llm) -> None:
        registry.register_scene(Scene(
            id="fork", title="Fork", characters=["player", "riley"],
            goals=[
                Goal(id="plain", description="Talk."),
                Goal(id="left", description="Go left.", on_complete=GoalEffects(transition_to="scene_2")),
                Goal(id="right", description="Go right.", on_complete=GoalEffects(transition_to="scene_1")),
            ],
        ))
        engine = _engine(registry, store, make_llm([_end()]), Presenter())
        final = await engine.start_scene("fork")
        assert final.next_scene == "scene_2"

    async def test_outro_revealed_before_ending(self, registry, store, make_llm) -> None:
        registry.register_scene(Scene(
            id="with_outro", title="Outro", characters=["player", "riley"],
            outro="Dawn breaks.",
        ))
        presenter = Presenter()
        engine = _engine(registry, store, make_llm([_end()]), presenter)
        await engine.start_scene("with_outro")

        assert presenter.types()[-2:] == ["typewriter", "scene_ended"]
        assert presenter.events[-2].text == "Dawn breaks."

    async def test_run_state_dropped_after_end(self, registry, store, make_llm) -> None:
        engine = _engine(registry, store, make_llm([_end()]), Presenter())
        await engine.start_scene("scene_1")
        assert engine.scene is None
        assert engine.transcript == []


# ---------------------------------------------------------------------------
# Failures and protocol
# ---------------------------------------------------------------------------

class TestFailures:
    async def test_llm_error_on_player_turn_allows_retry(self, registry, store, make_llm) -> None:
        llm = make_llm(["Hello.", LLMError("timed out"), "Hi again.", _end()])
        presenter = Presenter(inputs=["Hi", "Hi", "bye"])
        engine = _engine(registry, store, llm, presenter)
        await engine.start_scene("scene_1")

        failed = presenter.of_type("turn_failed")
        assert len(failed) == 1
        assert failed[0].player_input == "Hi"
        assert "timed out" in failed[0].error

        retry_messages, _ = llm.calls[2]
        assert [m["content"] for m in retry_messages if m["role"] == "user"] == [OPENING_MESSAGE, "Hi"]

    async def test_llm_error_on_opening_turn_propagates(self, registry, store, make_llm) -> None:
        engine = _engine(registry, store, make_llm([LLMError("down")]), Presenter())
        with pytest.raises(LLMError, match="down"):
            await engine.start_scene("scene_1")

    async def test_missing_continue_handler_is_protocol_error(self, registry, store, make_llm) -> None:
        engine = SceneEngine(registry, store, make_llm(["Hello."]), lambda e: None, reveal_ms_per_char=0)
        with pytest.raises(ProtocolError, match="continue"):
            await engine.start_scene("scene_1")

    async def test_missing_input_handler_is_protocol_error(self, registry, store, make_llm) -> None:
        engine = SceneEngine(registry, store, make_llm([""]), lambda e: None, reveal_ms_per_char=0)
        engine.on_need_continue(lambda resolve: resolve())
        with pytest.raises(ProtocolError, match="player input"):
            await engine.start_scene("scene_1")

    async def test_new_scene_abandons_pending_one(self, registry, store, make_llm) -> None:
        presenter = Presenter(manual=True)
        llm = make_llm(["", _end("neutral")])
        engine = _engine(registry, store, llm, presenter)

        first = asyncio.create_task(engine.start_scene("scene_1"))
        await _settle()
        assert presenter.pending_input is not None
        stale_resolver = presenter.pending_input

        second = asyncio.create_task(engine.start_scene("scene_2"))
        await _settle()
        final = await second

        assert first.cancelled()
        assert final.type == "scene_ended"
        stale_resolver("too late")  # ignored, nothing waits on it
        assert len(llm.calls) == 2
        second_messages, _ = llm.calls[1]
        assert "You are Mara" in second_messages[0]["content"]
        assert len(second_messages) == 2


class TestActiveSpeaker:
    async def test_first_non_player_participant_is_active(self, registry, store, make_llm) -> None:
        registry.register_character(Character(id="sam", name="Sam", role="npc"))
        registry.register_scene(Scene(id="crowd", title="Crowd", characters=["player", "sam", "riley"]))
        presenter = Presenter()
        engine = _engine(registry, store, make_llm(["Yo.", _end()]), presenter)
        presenter.inputs = ["hey"]
        await engine.start_scene("crowd")

        assert presenter.events[0].scene.active_character == "sam"
        assert presenter.of_type("dialogue_chunk")[0].speaker_name == "Sam"
