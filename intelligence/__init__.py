"""LLM enrichment layer for generated MCP servers.

Compresses API descriptions, caches backend responses and runs enhancement
tasks (documentation, examples, validation, optimization) with cost control.
"""

from intelligence.enhancement.orchestrator import EnhancementOrchestrator
from intelligence.models import (
    CompressedSpecification,
    EnhancementResult,
    Feature,
    ProjectDescriptor,
    ToolDescriptor,
)

__all__ = [
    "EnhancementOrchestrator",
    "CompressedSpecification",
    "EnhancementResult",
    "Feature",
    "ProjectDescriptor",
    "ToolDescriptor",
]
