"""Create demo blueprints for development/testing."""

import json
import shutil
from pathlib import Path

from vn_engine.llm import AssistantMessage, FunctionCall, ToolCall
from vn_engine.tools import ToolKind

LANGUAGE = "en_US"

DEMO_GAME = {
    "id": "lantern-street",
    "title": "Lantern Street",
    "version": "0.1.0",
    "description": "A rain-soaked night, a missing courier, and a bartender who knows too much.",
    "authors": ["VN Engine"],
    "player_character_id": "player",
    "routes": ["main", "epilogue"],
    "starting_route": "main",
    "initial_state": {"flags": {"met_riley": False}, "vars": {"night": 1}},
}

DEMO_CHARACTERS = [
    {
        "id": "player",
        "name": "You",
        "role": "player",
        "identity": {"personality": "Curious.", "background": "A courier's friend.", "speaking_style": "Plain."},
    },
    {
        "id": "riley",
        "name": "Riley",
        "role": "npc",
        "introduction": "Riley has tended the Lantern bar for ten years and forgets nothing.",
        "identity": {
            "personality": "Dry, watchful, secretly kind.",
            "background": "Former smuggler who went straight after a deal went wrong.",
            "speaking_style": "Short sentences. Answers questions with questions.",
        },
    },
    {
        "id": "mara",
        "name": "Mara",
        "role": "npc",
        "identity": {
            "personality": "Nervous and quick.",
            "background": "The missing courier, hiding in the back room.",
            "speaking_style": "Whispers, trails off mid-sentence.",
        },
    },
]

DEMO_ITEMS = [
    {"id": "brass_key", "name": "Brass Key", "description": "Opens the Lantern's back room."},
]

DEMO_SCENES = [
    {
        "id": "scene_1",
        "title": "The Lantern Bar",
        "view": {"default": {"uri": "backgrounds/bar.png"}},
        "prompt": "Late night at the Lantern. Rain on the windows. The player walks in asking about Mara.",
        "characters": ["player", "riley"],
        "goals": [
            {
                "id": "earn_trust",
                "character_id": "riley",
                "description": "Decide whether the player can be trusted with the back-room key.",
                "on_complete": {"transition_to": "scene_2", "give_items": ["brass_key"]},
            },
        ],
        "intro": "The door swings shut behind you. Somewhere, a radio hums an old song.",
    },
    {
        "id": "scene_2",
        "title": "The Back Room",
        "view": {"default": {"uri": "backgrounds/backroom.png"}},
        "prompt": "A cramped storeroom. Mara is hiding behind crates.",
        "characters": ["player", "mara"],
        "goals": [
            {"id": "find_out", "character_id": "mara", "description": "Tell the player why you ran."},
            {"id": "leave", "description": "Leave the Lantern before dawn."},
        ],
        "outro": "Dawn breaks over Lantern Street.",
    },
]

DEMO_CHAPTERS = [
    {"id": "chapter_1", "title": "Night One", "scenes": ["scene_1", "scene_2"]},
]

DEMO_ROUTES = [
    {"id": "main", "title": "The Missing Courier", "chapters": ["chapter_1"], "starting_chapter": "chapter_1"},
    {
        "id": "epilogue",
        "title": "Morning After",
        "chapters": ["chapter_1"],
        "starting_chapter": "chapter_1",
        "requirements": {"flags": {"met_riley": True}},
    },
]


def _write(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))


def _write_indexed(directory: Path, entries: list[dict]) -> None:
    _write(directory / "index.json", [e["id"] for e in entries])
    for entry in entries:
        _write(directory / f"{entry['id']}.json", entry)


def create_demo_blueprints(root: Path) -> None:
    """Wipe *root* and write the demo game's blueprints into it."""
    if root.exists():
        shutil.rmtree(root)
    root.mkdir(parents=True)

    _write(root / "languages.json", [LANGUAGE])
    _write(root / "game.json", DEMO_GAME)
    base = root / LANGUAGE
    _write_indexed(base / "characters", DEMO_CHARACTERS)
    _write_indexed(base / "scenes", DEMO_SCENES)
    _write_indexed(base / "items", DEMO_ITEMS)
    _write(base / "chapters.json", DEMO_CHAPTERS)
    _write(base / "routes.json", DEMO_ROUTES)


def _call(call_id: str, kind: ToolKind, **args) -> ToolCall:
    return ToolCall(id=call_id, function=FunctionCall(name=kind.value, arguments=json.dumps(args)))


def demo_script() -> list[AssistantMessage]:
    """Canned replies that walk the first demo scene to its transition."""
    return [
        AssistantMessage(tool_calls=[_call("c1", ToolKind.GET_STATE, keys=["affinity.riley", "flags.met_riley"])]),
        AssistantMessage(content="Rough night to be out. What are you drinking?"),
        AssistantMessage(tool_calls=[
            _call("c2", ToolKind.SET_FLAG, flag_id="met_riley", value=True),
            _call("c3", ToolKind.SET_AFFINITY, character_id="riley", delta=2),
        ]),
        AssistantMessage(content="Mara? Maybe I know her. Maybe I don't. Why do you care?"),
        AssistantMessage(tool_calls=[
            _call("c4", ToolKind.UPDATE_DOSSIER, type="note", text="Riley knows where Mara is."),
            _call("c5", ToolKind.END_SCENE, result="success", summary="Riley hands over the back-room key."),
        ]),
    ]
