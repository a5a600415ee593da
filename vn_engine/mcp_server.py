"""FastMCP server exposing the scene tool catalog as MCP tools.

Tools (same names, arguments and results as the in-engine catalog):
  - player2_get_state(keys)
  - player2_set_affinity(character_id, delta)
  - player2_set_flag(flag_id, value)
  - player2_transfer_item(sender_id, receiver_id, item_id)
  - player2_update_dossier(type, text)
  - player2_end_scene(result, summary)

Every call goes through the active ToolExecutor, replaced via set_executor()
in tests, or built from the blueprints + save file when run as __main__.

Usage:
    uv run python -m vn_engine.mcp_server
"""

from typing import Any

from mcp.server.fastmcp import FastMCP

from vn_engine.tools import ToolExecutor, ToolKind

mcp = FastMCP("vn-engine-tools")

_executor: ToolExecutor | None = None


def set_executor(executor: ToolExecutor) -> None:
    """Replace the active executor (used in tests)."""
    global _executor
    _executor = executor


def _run(kind: ToolKind, **args: Any) -> dict:
    if _executor is None:
        raise RuntimeError("No tool executor configured")
    return _executor.execute(kind.value, args)


@mcp.tool()
def player2_get_state(keys: list[str]) -> dict:
    """Read game state (affinity, flags, vars, inventory) by dotted path."""
    return _run(ToolKind.GET_STATE, keys=keys)


@mcp.tool()
def player2_set_affinity(character_id: str, delta: float) -> dict:
    """Modify character relationship score."""
    return _run(ToolKind.SET_AFFINITY, character_id=character_id, delta=delta)


@mcp.tool()
def player2_set_flag(flag_id: str, value: bool) -> dict:
    """Set story flag."""
    return _run(ToolKind.SET_FLAG, flag_id=flag_id, value=value)


@mcp.tool()
def player2_transfer_item(sender_id: str, receiver_id: str, item_id: str) -> dict:
    """Transfer item between characters (only to the player is supported)."""
    return _run(ToolKind.TRANSFER_ITEM, sender_id=sender_id, receiver_id=receiver_id, item_id=item_id)


@mcp.tool()
def player2_update_dossier(type: str, text: str) -> dict:
    """Update player dossier with objectives or notes."""
    return _run(ToolKind.UPDATE_DOSSIER, type=type, text=text)


@mcp.tool()
def player2_end_scene(result: str, summary: str = "") -> dict:
    """End the current scene (TERMINAL)."""
    return _run(ToolKind.END_SCENE, result=result, summary=summary)


if __name__ == "__main__":
    from vn_engine.config import Settings
    from vn_engine.registry import BlueprintRegistry
    from vn_engine.storage import GameStore

    settings = Settings.from_env()
    registry = BlueprintRegistry(settings.blueprints_dir)
    registry.load(settings.language or None)
    store = GameStore(settings.save_path)
    store.load()
    set_executor(ToolExecutor(registry, store))
    mcp.run()
