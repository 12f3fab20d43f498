"""Enhancement tasks: prompts, parsers, fallbacks and the orchestrator."""
