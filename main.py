"""VN Engine — dev launcher. Serves the API, or plays scenes in the terminal."""

import argparse
import asyncio
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


async def play_console(settings, offline: bool) -> None:
    """Minimal terminal presentation layer: prints events, reads stdin."""
    from vn_engine import progression
    from vn_engine.demo import demo_script
    from vn_engine.events import SceneTransition
    from vn_engine.llm import HttpChatLLM, ScriptedLLM
    from vn_engine.registry import BlueprintRegistry
    from vn_engine.scene import SceneEngine
    from vn_engine.storage import GameStore

    registry = BlueprintRegistry(settings.blueprints_dir)
    registry.load(settings.language or None)
    store = GameStore(settings.save_path)
    if not store.load() or not store.state.current_scene:
        progression.new_game(registry, store)

    if offline:
        llm = ScriptedLLM(demo_script())
    else:
        llm = HttpChatLLM(settings.player2_endpoint, settings.player2_api_key, settings.llm_timeout)

    loop = asyncio.get_running_loop()

    def on_update(event) -> None:
        if event.type == "typewriter":
            print(f"\n  {event.text}\n")
        elif event.type == "dialogue_chunk":
            print(f"{event.speaker_name}: {event.text}")
        elif event.type == "ai_thinking":
            print("  ...")
        elif event.type == "turn_failed":
            print(f"[something went wrong: {event.error}] try again")
        elif event.type == "scene_loaded":
            print(f"\n=== {event.scene.blueprint.title} ===")
        elif event.type == "scene_ended":
            print(f"\n[scene ended: {event.result}] {event.summary or ''}")

    async def ask(prompt: str, resolve, with_value: bool) -> None:
        text = await loop.run_in_executor(None, input, prompt)
        if with_value:
            resolve(text)
        else:
            resolve()

    engine = SceneEngine(
        registry, store, llm, on_update,
        max_tool_iterations=settings.max_tool_iterations,
        reveal_ms_per_char=settings.reveal_ms_per_char,
        language=registry.current_language,
    )
    engine.on_need_player_input(lambda resolve: asyncio.create_task(ask("> ", resolve, True)))
    engine.on_need_continue(lambda resolve: asyncio.create_task(ask("", resolve, False)))

    scene_id = store.state.current_scene
    for char in progression.pending_introductions(registry, store, scene_id):
        print(f"\n[{char.name}] {char.introduction}")
        store.mark_character_introduced(char.id)
    final = await engine.start_scene(scene_id)
    while isinstance(final, SceneTransition):
        for char in progression.pending_introductions(registry, store, final.next_scene):
            print(f"\n[{char.name}] {char.introduction}")
            store.mark_character_introduced(char.id)
        final = await engine.start_scene(final.next_scene)
    store.save()


def main():
    parser = argparse.ArgumentParser(description="VN Engine dev launcher")
    parser.add_argument("--blueprints", type=Path, default=None,
                        help="Blueprint directory (default: ./blueprints)")
    parser.add_argument("--demo", action="store_true",
                        help="Write the demo game into the blueprint directory first")
    parser.add_argument("--console", action="store_true",
                        help="Play in the terminal instead of serving the API")
    parser.add_argument("--offline", action="store_true",
                        help="With --console: use canned replies instead of the inference service")
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING"))

    from vn_engine.config import Settings
    settings = Settings.from_env(ROOT / ".env")
    if args.blueprints:
        settings.blueprints_dir = args.blueprints

    if args.demo:
        from vn_engine.demo import create_demo_blueprints
        create_demo_blueprints(settings.blueprints_dir)

    if args.console:
        asyncio.run(play_console(settings, args.offline))
        return

    # Build env for the subprocess so the backend picks up the same blueprints
    env = os.environ.copy()
    env["BLUEPRINTS_DIR"] = str(settings.blueprints_dir.resolve())

    procs: list[subprocess.Popen] = []

    def shutdown(*_):
        print("\nShutting down...")
        for p in procs:
            p.terminate()
        for p in procs:
            p.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    procs.append(subprocess.Popen(
        ["uv", "run", "uvicorn", "vn_engine.app:create_app", "--factory", "--reload",
         "--host", HOST, "--port", BACKEND_PORT],
        cwd=ROOT, env=env,
    ))

    for p in procs:
        p.wait()


if __name__ == "__main__":
    main()
