"""Tool catalog and executor.

The inference service may call six tools while voicing a character:

  player2_get_state        — read dotted paths from the game state
  player2_set_affinity     — add a signed delta to a relationship score
  player2_set_flag         — set a story flag
  player2_transfer_item    — give an item to the player
  player2_update_dossier   — add an objective or note (deduplicated)
  player2_end_scene        — TERMINAL: ends the scene with a result + summary

ToolExecutor.execute() never raises: bad arguments, unknown tools and
exceptions inside a tool effect all come back as
{"success": False, "error": "..."} so the model can read the error and
carry on. player2_end_scene is the only tool whose result is terminal.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from vn_engine.registry import BlueprintRegistry
from vn_engine.storage import GameStore

logger = logging.getLogger(__name__)

ToolResult = dict[str, Any]


class ToolKind(str, Enum):
    GET_STATE = "player2_get_state"
    SET_AFFINITY = "player2_set_affinity"
    SET_FLAG = "player2_set_flag"
    TRANSFER_ITEM = "player2_transfer_item"
    UPDATE_DOSSIER = "player2_update_dossier"
    END_SCENE = "player2_end_scene"


# ---------------------------------------------------------------------------
# Argument models — one per tool, validated before any effect runs
# ---------------------------------------------------------------------------

class GetStateArgs(BaseModel):
    keys: list[str]


class SetAffinityArgs(BaseModel):
    character_id: str
    delta: int | float


class SetFlagArgs(BaseModel):
    flag_id: str
    value: bool


class TransferItemArgs(BaseModel):
    sender_id: str
    receiver_id: str
    item_id: str


class UpdateDossierArgs(BaseModel):
    type: Literal["objective", "note"]
    text: str


class EndSceneArgs(BaseModel):
    result: Literal["success", "neutral", "fail"]
    summary: str = ""


# ---------------------------------------------------------------------------
# Catalog — the declarations sent to the inference service
# ---------------------------------------------------------------------------

def _function(kind: ToolKind, description: str, properties: dict, required: list[str]) -> dict:
    return {
        "type": "function",
        "function": {
            "name": kind.value,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


TOOL_CATALOG: list[dict[str, Any]] = [
    _function(
        ToolKind.GET_STATE,
        "Read game state (affinity, flags, vars, inventory)",
        {"keys": {"type": "array", "items": {"type": "string"}}},
        ["keys"],
    ),
    _function(
        ToolKind.SET_AFFINITY,
        "Modify character relationship score",
        {"character_id": {"type": "string"}, "delta": {"type": "number"}},
        ["character_id", "delta"],
    ),
    _function(
        ToolKind.SET_FLAG,
        "Set story flag",
        {"flag_id": {"type": "string"}, "value": {"type": "boolean"}},
        ["flag_id", "value"],
    ),
    _function(
        ToolKind.TRANSFER_ITEM,
        "Transfer item between characters",
        {
            "sender_id": {"type": "string"},
            "receiver_id": {"type": "string"},
            "item_id": {"type": "string"},
        },
        ["sender_id", "receiver_id", "item_id"],
    ),
    _function(
        ToolKind.UPDATE_DOSSIER,
        "Update player dossier with objectives or notes",
        {
            "type": {"type": "string", "enum": ["objective", "note"]},
            "text": {"type": "string"},
        },
        ["type", "text"],
    ),
    _function(
        ToolKind.END_SCENE,
        "End the current scene (TERMINAL)",
        {
            "result": {"type": "string", "enum": ["success", "neutral", "fail"]},
            "summary": {"type": "string"},
        },
        ["result"],
    ),
]

# Short descriptions used in the system prompt
TOOL_SUMMARIES: dict[ToolKind, str] = {
    ToolKind.GET_STATE: "Read affinity, flags, vars",
    ToolKind.SET_AFFINITY: "Adjust relationship",
    ToolKind.SET_FLAG: "Mark story moments",
    ToolKind.TRANSFER_ITEM: "Give/take items",
    ToolKind.UPDATE_DOSSIER: "Update player objectives",
    ToolKind.END_SCENE: "End scene when goal achieved",
}


def is_terminal(result: Any) -> bool:
    return isinstance(result, dict) and result.get("terminal") is True


def resolve_path(state: dict[str, Any], path: str) -> Any:
    """Walk a dotted path ("affinity.riley") through nested dicts/lists.

    Missing segments resolve to None rather than raising.
    """
    value: Any = state
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
        if value is None:
            return None
    return value


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class ToolExecutor:
    """Runs tool calls against the game state store."""

    def __init__(self, registry: BlueprintRegistry, store: GameStore) -> None:
        self._registry = registry
        self._store = store
        self._handlers: dict[ToolKind, tuple[type[BaseModel], Callable[[Any], ToolResult]]] = {
            ToolKind.GET_STATE: (GetStateArgs, self._get_state),
            ToolKind.SET_AFFINITY: (SetAffinityArgs, self._set_affinity),
            ToolKind.SET_FLAG: (SetFlagArgs, self._set_flag),
            ToolKind.TRANSFER_ITEM: (TransferItemArgs, self._transfer_item),
            ToolKind.UPDATE_DOSSIER: (UpdateDossierArgs, self._update_dossier),
            ToolKind.END_SCENE: (EndSceneArgs, self._end_scene),
        }
        missing = set(ToolKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"Tools without a handler: {sorted(k.value for k in missing)}")

    @staticmethod
    def definitions() -> list[dict[str, Any]]:
        return copy.deepcopy(TOOL_CATALOG)

    def execute(self, tool_name: str, args: dict[str, Any] | str | None) -> ToolResult:
        """Run one tool call. Never raises; failures become error results."""
        try:
            kind = ToolKind(tool_name)
        except ValueError:
            logger.warning("Unknown tool %r", tool_name)
            return {"success": False, "error": f"Unknown tool: {tool_name}"}

        arg_model, handler = self._handlers[kind]
        try:
            if isinstance(args, str):
                args = json.loads(args) if args.strip() else {}
            parsed = arg_model.model_validate(args or {})
            result = handler(parsed)
        except (ValidationError, json.JSONDecodeError) as e:
            logger.warning("Bad arguments for %s: %s", tool_name, e)
            return {"success": False, "error": f"Invalid arguments for {tool_name}: {e}"}
        except Exception as e:
            logger.exception("Error executing tool %s", tool_name)
            return {"success": False, "error": str(e) or type(e).__name__}

        logger.debug("tool %s -> %s", tool_name, result)
        return result

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _get_state(self, args: GetStateArgs) -> ToolResult:
        state = self._store.snapshot()
        return {key: resolve_path(state, key) for key in args.keys}

    def _set_affinity(self, args: SetAffinityArgs) -> ToolResult:
        self._store.set_affinity(args.character_id, args.delta)
        return {"success": True}

    def _set_flag(self, args: SetFlagArgs) -> ToolResult:
        self._store.set_flag(args.flag_id, args.value)
        return {"success": True}

    def _transfer_item(self, args: TransferItemArgs) -> ToolResult:
        item = self._registry.get_item(args.item_id)
        if item is None:
            return {"success": False, "error": f"Item {args.item_id} not found"}

        if args.receiver_id == self._registry.get_game().player_character_id:
            self._store.add_item(item)
            return {"success": True, "item_transferred": item.name}

        return {"success": False, "error": "Only transfers to player are supported"}

    def _update_dossier(self, args: UpdateDossierArgs) -> ToolResult:
        self._store.update_dossier(args.type, args.text)
        return {"success": True}

    def _end_scene(self, args: EndSceneArgs) -> ToolResult:
        return {"terminal": True, "result": args.result, "summary": args.summary}
