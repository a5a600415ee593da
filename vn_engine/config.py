"""Runtime settings read from the environment (and .env, if present)."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from vn_engine.llm import DEFAULT_ENDPOINT

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent.parent


def _env_number(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


class Settings(BaseModel):
    player2_endpoint: str = DEFAULT_ENDPOINT
    player2_api_key: str = ""
    llm_timeout: float = 60.0
    max_tool_iterations: int = 5
    reveal_ms_per_char: int = 50
    blueprints_dir: Path = ROOT / "blueprints"
    language: str = ""  # empty = first available language
    save_path: Path = ROOT / "data" / "save.json"

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "Settings":
        load_dotenv(env_file or ROOT / ".env")
        defaults = cls()
        return cls(
            player2_endpoint=os.getenv("PLAYER2_ENDPOINT", "").strip() or defaults.player2_endpoint,
            player2_api_key=os.getenv("PLAYER2_API_KEY", "").strip(),
            llm_timeout=_env_number("LLM_TIMEOUT", defaults.llm_timeout),
            max_tool_iterations=max(1, int(_env_number("MAX_TOOL_ITERATIONS", defaults.max_tool_iterations))),
            reveal_ms_per_char=int(_env_number("REVEAL_MS_PER_CHAR", defaults.reveal_ms_per_char)),
            blueprints_dir=Path(os.getenv("BLUEPRINTS_DIR", str(defaults.blueprints_dir))),
            language=os.getenv("GAME_LANGUAGE", "").strip(),
            save_path=Path(os.getenv("SAVE_PATH", str(defaults.save_path))),
        )
