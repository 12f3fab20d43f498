"""OpenAPI specification compressor.

Reduces a parsed OpenAPI document to a :class:`CompressedSpecification` that
fits a backend token budget.  All transformations are lossy and one-way:

* ``minify`` drops everything not needed for generation and truncates text.
* ``minify_for_operation`` does the same for a subset of operation ids.
* ``optimize_for_token_limit`` applies staged reductions until the estimate
  fits, returning the most reduced version if it never does.

Token counts use the ``ceil(bytes / 4)`` heuristic throughout.
"""
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from core.logging import logger
from intelligence.models import (
    CompressedSpecification,
    OperationEntry,
    ParameterEntry,
    PathEntry,
    RequestBodyEntry,
    ResponseEntry,
    SchemaEntry,
    SpecInfo,
)

__all__ = [
    "estimate_tokens",
    "estimate_spec_tokens",
    "minify",
    "minify_for_operation",
    "optimize_for_token_limit",
]

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")

SUMMARY_MAX_LENGTH = 200
PARAMETER_DESCRIPTION_MAX_LENGTH = 50
RESPONSE_DESCRIPTION_MAX_LENGTH = 100
ELLIPSIS = "..."

# Schemas above this many properties are cut down during optimization.
COMPLEX_SCHEMA_THRESHOLD = 10
SIMPLIFIED_PROPERTY_COUNT = 5
# Share of the budget path admission may use.
PATH_BUDGET_RATIO = 0.9


# ---------------------------------------------------------------------------
# Token estimation
# ---------------------------------------------------------------------------


def estimate_tokens(text: str) -> int:
    """Rough estimate: one token per four bytes of UTF-8."""
    return math.ceil(len(text.encode("utf-8")) / 4)


def estimate_spec_tokens(compressed: CompressedSpecification) -> int:
    return estimate_tokens(compressed.to_compact_json())


def _with_token_count(compressed: CompressedSpecification) -> CompressedSpecification:
    compressed.token_count = estimate_spec_tokens(compressed)
    return compressed


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def minify(spec: Union[Mapping[str, Any], CompressedSpecification]) -> CompressedSpecification:
    """Compress an OpenAPI document for backend consumption.

    Args:
        spec: A parsed OpenAPI 3 document, or an already compressed
            specification (which is re-truncated and re-estimated).

    Returns:
        CompressedSpecification with a fresh token estimate.
    """
    if isinstance(spec, CompressedSpecification):
        return _recompress(spec)

    spec = _as_mapping(spec)
    info = _as_mapping(spec.get("info"))
    components = _as_mapping(spec.get("components"))

    compressed = CompressedSpecification(
        info=SpecInfo(
            title=_as_text(info.get("title"), "Untitled API"),
            version=_as_text(info.get("version"), "0.0.0"),
            description=truncate(info.get("description"), SUMMARY_MAX_LENGTH),
        ),
        paths=_minify_paths(_as_mapping(spec.get("paths")), components),
        schemas=_minify_schemas(_as_mapping(components.get("schemas"))),
    )
    compressed = _with_token_count(compressed)
    logger.debug(
        f"Minified spec '{compressed.info.title}': {len(compressed.paths)} paths, "
        f"{len(compressed.schemas)} schemas, ~{compressed.token_count} tokens"
    )
    return compressed


def minify_for_operation(
    spec: Mapping[str, Any], operation_ids: Iterable[str]
) -> CompressedSpecification:
    """Compress only the paths carrying one of ``operation_ids``.

    Component schemas are retained in full; no reachability analysis is done.
    """
    spec = _as_mapping(spec)
    wanted = set(operation_ids)
    info = _as_mapping(spec.get("info"))
    components = _as_mapping(spec.get("components"))

    filtered: Dict[str, Dict[str, Any]] = {}
    for path, path_item in _as_mapping(spec.get("paths")).items():
        path_item = _as_mapping(path_item)
        relevant = {
            method: operation
            for method, operation in path_item.items()
            if _is_http_method(method)
            and isinstance(operation, Mapping)
            and operation.get("operationId") in wanted
        }
        if relevant:
            filtered[path] = relevant

    compressed = CompressedSpecification(
        info=SpecInfo(
            title=_as_text(info.get("title"), "Untitled API"),
            version=_as_text(info.get("version"), "0.0.0"),
        ),
        paths=_minify_paths(filtered, components),
        schemas=_minify_schemas(_as_mapping(components.get("schemas"))),
    )
    return _with_token_count(compressed)


def optimize_for_token_limit(
    compressed: CompressedSpecification, max_tokens: int
) -> CompressedSpecification:
    """Reduce ``compressed`` in stages until it fits ``max_tokens``.

    The estimate never grows from one stage to the next.  When even the last
    stage is over budget the most reduced version is returned.
    """
    current_tokens = estimate_spec_tokens(compressed)
    if current_tokens <= max_tokens:
        return compressed

    optimized = _strip_descriptions(compressed)
    if _with_token_count(optimized).token_count <= max_tokens:
        return optimized

    optimized = _simplify_schemas(optimized)
    if _with_token_count(optimized).token_count <= max_tokens:
        return optimized

    optimized = _reduce_paths(optimized, max_tokens)
    _with_token_count(optimized)
    if optimized.token_count > max_tokens:
        logger.info(
            f"Spec still ~{optimized.token_count} tokens after all reductions "
            f"(budget {max_tokens})"
        )
    return optimized


def truncate(text: Any, max_length: int) -> Optional[str]:
    """Cut ``text`` so that text plus ellipsis is at most ``max_length`` chars."""
    if not isinstance(text, str) or not text:
        return None
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


# ---------------------------------------------------------------------------
# Minification helpers
# ---------------------------------------------------------------------------


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_text(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value)


def _is_http_method(method: Any) -> bool:
    return isinstance(method, str) and method.lower() in HTTP_METHODS


def _minify_paths(
    paths: Mapping[str, Any], components: Mapping[str, Any]
) -> List[PathEntry]:
    minified: List[PathEntry] = []
    for path, path_item in paths.items():
        path_item = _as_mapping(path_item)
        shared_parameters = path_item.get("parameters")
        operations: List[OperationEntry] = []

        for method, operation in path_item.items():
            if not _is_http_method(method) or not isinstance(operation, Mapping):
                continue
            parameters = operation.get("parameters")
            if parameters is None:
                parameters = shared_parameters
            operations.append(
                OperationEntry(
                    method=method.upper(),
                    operation_id=operation.get("operationId") if isinstance(operation.get("operationId"), str) else None,
                    summary=truncate(operation.get("summary"), SUMMARY_MAX_LENGTH),
                    parameters=_minify_parameters(parameters, components),
                    request_body=_minify_request_body(operation.get("requestBody")),
                    responses=_minify_responses(operation.get("responses")),
                )
            )

        if operations:
            minified.append(PathEntry(path=str(path), operations=operations))
    return minified


def _minify_parameters(
    parameters: Any, components: Mapping[str, Any]
) -> Optional[List[ParameterEntry]]:
    if not isinstance(parameters, list):
        return None

    minified: List[ParameterEntry] = []
    for param in parameters:
        if not isinstance(param, Mapping):
            continue
        if "$ref" in param:
            resolved = _resolve_parameter_ref(param["$ref"], components)
            if resolved is None:
                minified.append(ParameterEntry(name="ref_parameter", location="query", type="string"))
                continue
            param = resolved
        minified.append(
            ParameterEntry(
                name=_as_text(param.get("name"), "unnamed"),
                location=_as_text(param.get("in"), "query"),
                required=param.get("required") if isinstance(param.get("required"), bool) else None,
                type=_parameter_type(param.get("schema")),
                description=truncate(param.get("description"), PARAMETER_DESCRIPTION_MAX_LENGTH),
            )
        )
    return minified


def _resolve_parameter_ref(ref: Any, components: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    prefix = "#/components/parameters/"
    if not isinstance(ref, str) or not ref.startswith(prefix):
        return None
    resolved = _as_mapping(components.get("parameters")).get(ref[len(prefix):])
    if isinstance(resolved, Mapping) and "$ref" not in resolved:
        return resolved
    return None


def _parameter_type(schema: Any) -> str:
    if not isinstance(schema, Mapping):
        return "string"
    if "$ref" in schema:
        return "ref"
    return _schema_type(schema.get("type"), "string")


def _json_media(content: Any) -> Optional[Mapping[str, Any]]:
    content = _as_mapping(content)
    if isinstance(content.get("application/json"), Mapping):
        return content["application/json"]
    for media_type, media in content.items():
        if isinstance(media_type, str) and media_type.endswith("+json") and isinstance(media, Mapping):
            return media
    return None


def _minify_request_body(request_body: Any) -> Optional[RequestBodyEntry]:
    if not isinstance(request_body, Mapping) or "$ref" in request_body:
        return None
    media = _json_media(request_body.get("content"))
    if media is None:
        return None
    required = request_body.get("required")
    return RequestBodyEntry(
        required=required if isinstance(required, bool) else None,
        body_schema=_minify_schema(media.get("schema")),
    )


def _minify_responses(responses: Any) -> Dict[str, ResponseEntry]:
    minified: Dict[str, ResponseEntry] = {}
    for code, response in _as_mapping(responses).items():
        if not isinstance(response, Mapping) or "$ref" in response:
            continue
        media = _json_media(response.get("content"))
        minified[str(code)] = ResponseEntry(
            description=truncate(response.get("description"), RESPONSE_DESCRIPTION_MAX_LENGTH),
            body_schema=_minify_schema(media.get("schema")) if media is not None else None,
        )
    return minified


def _minify_schemas(schemas: Mapping[str, Any]) -> Dict[str, SchemaEntry]:
    return {str(name): _minify_schema(schema) for name, schema in schemas.items()}


def _schema_type(value: Any, default: str) -> str:
    # OpenAPI 3.1 allows a list of types
    if isinstance(value, list):
        for candidate in value:
            if isinstance(candidate, str) and candidate != "null":
                return candidate
        return default
    if isinstance(value, str) and value:
        return value
    return default


def _minify_schema(schema: Any) -> SchemaEntry:
    if not isinstance(schema, Mapping):
        return SchemaEntry(type="any")
    if "$ref" in schema:
        return SchemaEntry(type="ref", ref=str(schema["$ref"]))

    minified = SchemaEntry(type=_schema_type(schema.get("type"), "object"))

    properties = schema.get("properties")
    if isinstance(properties, Mapping):
        minified.properties = {
            str(name): _minify_schema(prop) for name, prop in properties.items()
        }
    if "items" in schema and schema["items"]:
        minified.items = _minify_schema(schema["items"])
    required = schema.get("required")
    if isinstance(required, list):
        minified.required = [str(name) for name in required]
    enum = schema.get("enum")
    if isinstance(enum, list):
        minified.enum = list(enum)
    if isinstance(schema.get("format"), str):
        minified.format = schema["format"]
    return minified


def _recompress(compressed: CompressedSpecification) -> CompressedSpecification:
    result = compressed.model_copy(deep=True)
    result.info.description = truncate(result.info.description, SUMMARY_MAX_LENGTH)
    for path in result.paths:
        for operation in path.operations:
            operation.summary = truncate(operation.summary, SUMMARY_MAX_LENGTH)
            for param in operation.parameters or []:
                param.description = truncate(param.description, PARAMETER_DESCRIPTION_MAX_LENGTH)
            for response in operation.responses.values():
                response.description = truncate(response.description, RESPONSE_DESCRIPTION_MAX_LENGTH)
    result.paths = [path for path in result.paths if path.operations]
    return _with_token_count(result)


# ---------------------------------------------------------------------------
# Optimization stages
# ---------------------------------------------------------------------------


def _strip_descriptions(compressed: CompressedSpecification) -> CompressedSpecification:
    stripped = compressed.model_copy(deep=True)
    stripped.info.description = None
    for path in stripped.paths:
        for operation in path.operations:
            for param in operation.parameters or []:
                param.description = None
            for response in operation.responses.values():
                response.description = None
    return stripped


def _simplify_schema(schema: Optional[SchemaEntry]) -> None:
    if schema is None:
        return
    if schema.properties:
        if len(schema.properties) > COMPLEX_SCHEMA_THRESHOLD:
            kept = list(schema.properties.items())[:SIMPLIFIED_PROPERTY_COUNT]
            schema.properties = dict(kept)
            if schema.required:
                schema.required = [name for name in schema.required if name in schema.properties]
        for prop in schema.properties.values():
            _simplify_schema(prop)
    _simplify_schema(schema.items)


def _simplify_schemas(compressed: CompressedSpecification) -> CompressedSpecification:
    simplified = compressed.model_copy(deep=True)
    for schema in simplified.schemas.values():
        _simplify_schema(schema)
    for path in simplified.paths:
        for operation in path.operations:
            if operation.request_body is not None:
                _simplify_schema(operation.request_body.body_schema)
            for response in operation.responses.values():
                _simplify_schema(response.body_schema)
    return simplified


def _path_score(path: PathEntry) -> int:
    score = 0
    for operation in path.operations:
        score += 2 if operation.method == "GET" else 1
        if operation.operation_id:
            score += 1
    return score


def _reduce_paths(compressed: CompressedSpecification, max_tokens: int) -> CompressedSpecification:
    reduced = compressed.model_copy(deep=True)
    ranked = sorted(reduced.paths, key=_path_score, reverse=True)
    reduced.paths = []

    budget = max_tokens * PATH_BUDGET_RATIO
    current_tokens = estimate_spec_tokens(reduced)
    for path in ranked:
        path_tokens = estimate_tokens(path.model_dump_json(by_alias=True, exclude_none=True))
        if current_tokens + path_tokens > budget:
            break
        reduced.paths.append(path)
        current_tokens += path_tokens

    logger.debug(f"Kept {len(reduced.paths)}/{len(ranked)} paths for budget {max_tokens}")
    return reduced
