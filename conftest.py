import copy
from pathlib import Path

import pytest

from vn_engine.demo import create_demo_blueprints
from vn_engine.llm import AssistantMessage
from vn_engine.models import Character, Game, Goal, GoalEffects, Identity, Item, Scene
from vn_engine.registry import BlueprintRegistry
from vn_engine.storage import GameStore


class StubLLM:
    """Deterministic inference-service stand-in for tests.

    Replies are consumed in call order: a str becomes a text reply, an
    AssistantMessage is returned as-is, an exception instance is raised.
    Raises if called more times than replies were provided.
    """

    def __init__(self, replies: list) -> None:
        self._queue = list(replies)
        self.calls: list[tuple[list[dict], list[dict]]] = []

    async def __call__(self, messages: list[dict], tools: list[dict]) -> AssistantMessage:
        self.calls.append((copy.deepcopy(messages), tools))
        if not self._queue:
            raise AssertionError(f"StubLLM called more times than expected ({len(self.calls)})")
        reply = self._queue.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            return AssistantMessage(content=reply)
        return reply


@pytest.fixture
def make_llm():
    return StubLLM


@pytest.fixture
def registry() -> BlueprintRegistry:
    """A two-scene game: scene_1 (riley, transitions to scene_2) → scene_2 (mara, no transition)."""
    reg = BlueprintRegistry()
    reg.register_game(Game(
        id="test-game", title="Test Game",
        player_character_id="player", routes=["main"], starting_route="main",
    ))
    reg.register_character(Character(id="player", name="Alex", role="player"))
    reg.register_character(Character(
        id="riley", name="Riley", role="npc",
        introduction="Riley runs the bar.",
        identity=Identity(
            personality="Dry and watchful.",
            background="Former smuggler.",
            speaking_style="Short sentences.",
        ),
    ))
    reg.register_character(Character(
        id="mara", name="Mara", role="npc",
        identity=Identity(personality="Nervous.", background="A courier.", speaking_style="Whispers."),
    ))
    reg.register_item(Item(id="brass_key", name="Brass Key"))
    reg.register_scene(Scene(
        id="scene_1", title="The Lantern Bar",
        prompt="Late night at the bar.",
        characters=["player", "riley"],
        goals=[Goal(
            id="earn_trust", character_id="riley",
            description="Decide whether to trust the player.",
            on_complete=GoalEffects(transition_to="scene_2", give_items=["brass_key"], unlock_route="epilogue"),
        )],
    ))
    reg.register_scene(Scene(
        id="scene_2", title="The Back Room",
        characters=["player", "mara"],
        goals=[
            Goal(id="explain", character_id="mara", description="Explain why you ran."),
            Goal(id="leave", description="Leave before dawn."),
        ],
    ))
    return reg


@pytest.fixture
def store(tmp_path: Path) -> GameStore:
    return GameStore(tmp_path / "save.json")


@pytest.fixture
def blueprints_dir(tmp_path: Path) -> Path:
    root = tmp_path / "blueprints"
    create_demo_blueprints(root)
    return root
