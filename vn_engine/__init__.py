"""Scene orchestration engine for LLM-narrated interactive fiction."""
