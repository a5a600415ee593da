"""System prompt assembly for the character the model is voicing.

generate_prompt() is pure: the same scene, character and language always
give the same text. Unknown ids propagate the registry's lookup error.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from vn_engine.registry import DEFAULT_LANGUAGE, BlueprintRegistry
from vn_engine.tools import TOOL_SUMMARIES, ToolKind

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


LANGUAGE_NAMES: dict[str, str] = {
    "en_US": "English",
    "fr_FR": "French",
    "de_DE": "German",
    "it_IT": "Italian",
    "pt_BR": "Portuguese",
    "ru_RU": "Russian",
    "ja_JP": "Japanese",
    "ko_KR": "Korean",
    "zh_CN": "Chinese (Simplified)",
    "zh_TW": "Chinese (Traditional)",
    "ar_SA": "Arabic",
    "hi_IN": "Hindi",
}

# Triple-stash everywhere: prompt text must not be HTML-escaped.
SYSTEM_PROMPT_TEMPLATE = """\
**SCENE**: {{{scene.title}}}
**YOUR ROLE**: You are {{{char.name}}}. {{{char.personality}}}{{{language}}}

**SCENE CONTEXT**:
{{{scene.context}}}

**YOUR GOALS IN THIS SCENE**:
{{#each goals}}- {{{this}}}
{{/each}}
**CHARACTER BACKGROUND**:
{{{char.background}}}

**SPEAKING STYLE**:
{{{char.speaking_style}}}

**TOOLS AVAILABLE**:
{{#each tools}}- {{{name}}}: {{{summary}}}
{{/each}}
**INSTRUCTIONS**:
1. On first turn, call {{{tool.get_state}}} to check context
2. Respond naturally (1-3 sentences)
3. Use tools when player makes meaningful choices
4. Call {{{tool.end_scene}}} when your goals are achieved

Respond naturally as {{{char.name}}}. Never break character.
"""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def language_instruction(language: str) -> str:
    """Imperative output-language directive; empty for the default locale."""
    if language == DEFAULT_LANGUAGE:
        return ""
    name = LANGUAGE_NAMES.get(language, language)
    return (
        f"\n**CRITICAL LANGUAGE REQUIREMENT**: You MUST respond ONLY in {name}. "
        f"Every word of your dialogue, thoughts, and responses must be in {name}. "
        "This is MANDATORY."
    )


def generate_prompt(
    registry: BlueprintRegistry,
    scene_id: str,
    character_id: str,
    language: str | None = None,
) -> str:
    """Build the system prompt for *character_id* speaking in *scene_id*.

    Only goals owned by that character are included; other characters'
    goals and scene-global goals never appear in the prompt.
    """
    scene = registry.get_scene(scene_id)
    character = registry.get_character(character_id)
    goals = [g.description for g in scene.goals if g.character_id == character_id]

    ctx = {
        "scene": {"title": scene.title, "context": scene.prompt},
        "char": {
            "name": character.name,
            "personality": character.identity.personality,
            "background": character.identity.background,
            "speaking_style": character.identity.speaking_style,
        },
        "language": language_instruction(language or registry.current_language),
        "goals": goals,
        "tools": [{"name": k.value, "summary": TOOL_SUMMARIES[k]} for k in ToolKind],
        "tool": {
            "get_state": ToolKind.GET_STATE.value,
            "end_scene": ToolKind.END_SCENE.value,
        },
    }
    return render_prompt(SYSTEM_PROMPT_TEMPLATE, ctx).strip()
