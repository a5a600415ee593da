"""Scene orchestration: the turn-taking loop between player and AI character.

The engine loads a scene, voices its first non-player character through the
inference service, executes the tool calls the model makes against the game
state store, and streams events to the presentation layer:

  scene_loaded → typewriter? → (dialogue_chunk ⇄ continue)* →
  [player input → ai_thinking → (dialogue_chunk ⇄ continue)*]* →
  typewriter? → scene_transition | scene_ended

See orchestrator.py for the full flow and failure handling.
"""

from .dialogue import reveal_duration_ms, split_sentences  # noqa: F401
from .orchestrator import (  # noqa: F401
    OPENING_MESSAGE,
    SceneEngine,
    SceneError,
    TurnResult,
)
