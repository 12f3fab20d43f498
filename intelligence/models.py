"""Data model shared by the compressor, cache, providers and orchestrator."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for models persisted in the cache wire format (camelCase keys)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Compressed specification
# ---------------------------------------------------------------------------


class SchemaEntry(BaseModel):
    """Schema reduced to the fields needed for generation."""
    type: str = "object"
    ref: Optional[str] = None
    properties: Optional[Dict[str, "SchemaEntry"]] = None
    items: Optional["SchemaEntry"] = None
    required: Optional[List[str]] = None
    enum: Optional[List[Any]] = None
    format: Optional[str] = None


class ParameterEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    location: str = Field("query", alias="in")
    required: Optional[bool] = None
    type: str = "string"
    description: Optional[str] = None


class RequestBodyEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    required: Optional[bool] = None
    body_schema: SchemaEntry = Field(alias="schema")


class ResponseEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: Optional[str] = None
    body_schema: Optional[SchemaEntry] = Field(None, alias="schema")


class OperationEntry(BaseModel):
    method: str
    operation_id: Optional[str] = None
    summary: Optional[str] = None
    parameters: Optional[List[ParameterEntry]] = None
    request_body: Optional[RequestBodyEntry] = None
    responses: Dict[str, ResponseEntry] = Field(default_factory=dict)


class PathEntry(BaseModel):
    path: str
    operations: List[OperationEntry]


class SpecInfo(BaseModel):
    title: str = "Untitled API"
    version: str = "0.0.0"
    description: Optional[str] = None


class CompressedSpecification(BaseModel):
    """Token-budget-constrained summary of an OpenAPI document."""
    info: SpecInfo = Field(default_factory=SpecInfo)
    paths: List[PathEntry] = Field(default_factory=list)
    schemas: Dict[str, SchemaEntry] = Field(default_factory=dict)
    token_count: int = 0

    def to_compact_json(self) -> str:
        """Serialized form the token estimate is computed from."""
        return self.model_dump_json(
            by_alias=True, exclude_none=True, exclude={"token_count"}
        )


# ---------------------------------------------------------------------------
# Provider surface
# ---------------------------------------------------------------------------


class CostPerToken(BaseModel):
    input: float
    output: float


class ProviderCapability(BaseModel):
    """Declared limits and pricing of one backend model."""
    model: str
    max_tokens: int
    supports_streaming: bool = True
    cost_per_token: CostPerToken
    languages: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)


class GenerationRequest(BaseModel):
    prompt: str
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    stop: Optional[List[str]] = None

    def sampling_params(self) -> Dict[str, Any]:
        """Parameters that take part in the cache key."""
        return {
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stop": self.stop,
        }


class TokenUsage(CamelModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0


class GenerationResponse(CamelModel):
    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CacheEntryMetadata(CamelModel):
    created: float
    accessed: float
    hits: int = 0
    cost: float = 0.0


class CacheEntry(CamelModel):
    key: str
    value: GenerationResponse
    metadata: CacheEntryMetadata


class CacheStatistics(CamelModel):
    total_requests: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    cost_savings: float = 0.0
    storage_used: int = 0


# ---------------------------------------------------------------------------
# Project description handed in by the parser
# ---------------------------------------------------------------------------


class ToolParameter(BaseModel):
    name: str
    type: str = "string"
    description: Optional[str] = None
    required: bool = False


class ToolDescriptor(BaseModel):
    """One MCP tool derived from an API operation."""
    name: str
    description: str = ""
    parameters: List[ToolParameter] = Field(default_factory=list)
    path: Optional[str] = None
    method: Optional[str] = None


class ProjectDescriptor(BaseModel):
    name: str
    version: str = "1.0.0"
    description: str = ""
    language: str = "typescript"
    tools: List[ToolDescriptor] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Enhancement outputs
# ---------------------------------------------------------------------------


class Feature(str, Enum):
    """Enhancement features a run can request."""
    DOCUMENTATION = "documentation"
    EXAMPLES = "examples"
    VALIDATION = "validation"
    OPTIMIZATION = "optimization"


class OutcomeSource(str, Enum):
    PROVIDER = "provider"
    CACHE = "cache"
    FALLBACK = "fallback"


# Task ids for the documentation sections and example kinds that sit beside
# the README ("documentation") and the per-tool examples ("examples:<tool>").
TOOL_DOC_PREFIX = "documentation:tool:"
ERROR_GUIDE_TASK = "documentation:errors"
API_REFERENCE_TASK = "documentation:api-reference"
QUICK_START_TASK = "examples:quick-start"
ERROR_HANDLING_TASK = "examples:error-handling"
ADVANCED_TASK = "examples:advanced"


class CodeExample(BaseModel):
    title: str
    description: str = ""
    code: str
    language: str = "typescript"
    output: Optional[str] = None


class ParameterDoc(BaseModel):
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""
    example: Any = None
    validation: Optional[str] = None


class ErrorCase(BaseModel):
    scenario: str
    error: str
    solution: str
    code: Optional[str] = None


class ToolDocumentation(CamelModel):
    """Reference page for a single tool."""
    tool_name: str
    description: str
    usage: str = ""
    parameters: List[ParameterDoc] = Field(default_factory=list)
    examples: List[CodeExample] = Field(default_factory=list)
    error_cases: List[ErrorCase] = Field(default_factory=list)
    best_practices: List[str] = Field(default_factory=list)


class ValidationIssue(BaseModel):
    type: str = "info"
    severity: str = "low"
    message: str
    suggestion: Optional[str] = None


class ValidationResult(BaseModel):
    is_valid: bool = Field(True, alias="isValid")
    confidence: float = 0.5
    issues: List[ValidationIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class OptimizationHint(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    category: str
    suggestion: str
    impact: str = "medium"
    implementation: str = ""
    estimated_gain: str = ""


class TaskOutcome(BaseModel):
    """Result of one enhancement task."""
    task_id: str
    feature: Feature
    content: Any = None
    source: OutcomeSource
    error: Optional[str] = None
    usage: Optional[TokenUsage] = None


class EnhancementResult(BaseModel):
    project: str
    features: List[Feature] = Field(default_factory=list)
    outcomes: Dict[str, TaskOutcome] = Field(default_factory=dict)
    cost: float = 0.0
    cache_hits: int = 0
    processing_time_ms: float = 0.0

    @property
    def documentation(self) -> Optional[str]:
        outcome = self.outcomes.get(Feature.DOCUMENTATION.value)
        return outcome.content if outcome else None

    @property
    def tool_docs(self) -> List[ToolDocumentation]:
        return [
            outcome.content for task_id, outcome in self.outcomes.items()
            if task_id.startswith(TOOL_DOC_PREFIX)
        ]

    @property
    def error_guide(self) -> Optional[str]:
        outcome = self.outcomes.get(ERROR_GUIDE_TASK)
        return outcome.content if outcome else None

    @property
    def api_reference(self) -> Optional[str]:
        outcome = self.outcomes.get(API_REFERENCE_TASK)
        return outcome.content if outcome else None

    @property
    def examples(self) -> List[CodeExample]:
        collected: List[CodeExample] = []
        for outcome in self.outcomes.values():
            if outcome.feature == Feature.EXAMPLES and outcome.content:
                collected.extend(outcome.content)
        return collected

    @property
    def fallbacks(self) -> List[str]:
        return [
            task_id for task_id, outcome in self.outcomes.items()
            if outcome.source == OutcomeSource.FALLBACK
        ]


class CostEstimate(BaseModel):
    estimated_tokens: float
    estimated_cost: float
    features: List[Feature]
    cache_hit_probability: float


class IntelligenceMetrics(BaseModel):
    request_count: int = 0
    success_rate: float = 0.0
    average_latency_ms: float = 0.0
    total_cost: float = 0.0
    cache_hit_rate: float = 0.0
    feature_usage: Dict[str, int] = Field(default_factory=dict)


SchemaEntry.model_rebuild()
