"""Turn raw provider text into typed enhancement outputs.

Every parser raises MalformedResponseError when the text does not have the
expected shape; callers substitute a fallback.
"""
import json
import re
from typing import Any, List

from pydantic import ValidationError

from core.errors import MalformedResponseError
from intelligence.models import (
    CodeExample,
    OptimizationHint,
    ToolDescriptor,
    ToolDocumentation,
    ValidationResult,
)

from .fallbacks import tool_parameter_docs

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_CODE_BLOCK = re.compile(r"```[\w+-]*\n(.*?)\n```", re.DOTALL)
_OUTPUT_BLOCK = re.compile(r"(?:output|result):?\s*```[\w+-]*\n(.*?)\n```", re.DOTALL | re.IGNORECASE)
_USAGE = re.compile(r"(?:usage|how to use):?\s*(.+?)(?:\n\n|\n#|$)", re.DOTALL | re.IGNORECASE)
_PRACTICES = re.compile(r"(?:best practices?|recommendations?):?\s*\n((?:\s*[-*]\s*.+\n?)+)", re.IGNORECASE)


def _load_json(text: str) -> Any:
    match = _FENCE.search(text)
    candidate = match.group(1) if match else text
    try:
        return json.loads(candidate.strip())
    except (json.JSONDecodeError, ValueError) as e:
        raise MalformedResponseError(f"Expected JSON output: {e}") from e


def parse_documentation(text: str) -> str:
    content = text.strip()
    if not content:
        raise MalformedResponseError("Empty documentation")
    return content


def parse_tool_documentation(text: str, tool: ToolDescriptor) -> ToolDocumentation:
    """JSON tool page, or a page assembled from a markdown answer."""
    content = text.strip()
    if not content:
        raise MalformedResponseError(f"Empty documentation for {tool.name}")
    try:
        data = _load_json(content)
    except MalformedResponseError:
        data = None

    if isinstance(data, dict):
        try:
            return ToolDocumentation.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid tool documentation: {e}") from e
    if data is not None:
        raise MalformedResponseError("Expected a tool documentation object")

    usage = _USAGE.search(content)
    practices = _PRACTICES.search(content)
    return ToolDocumentation(
        tool_name=tool.name,
        description=tool.description or f"Tool for {tool.name}",
        usage=usage.group(1).strip() if usage else "See examples for usage details",
        parameters=tool_parameter_docs(tool),
        best_practices=[
            line.strip().lstrip("-*").strip()
            for line in practices.group(1).splitlines() if line.strip()
        ] if practices else [],
    )


def parse_code_example(text: str, title: str, description: str, language: str) -> List[CodeExample]:
    """Single example from the first fenced code block (or the whole answer)."""
    content = text.strip()
    if not content:
        raise MalformedResponseError(f"Empty example for {title}")
    block = _CODE_BLOCK.search(content)
    output = _OUTPUT_BLOCK.search(content)
    return [
        CodeExample(
            title=title,
            description=description,
            code=block.group(1).strip() if block else content,
            language=language,
            output=output.group(1).strip() if output else None,
        )
    ]


def parse_examples(text: str, language: str) -> List[CodeExample]:
    data = _load_json(text)
    if isinstance(data, dict):
        data = data.get("examples", [data])
    if not isinstance(data, list) or not data:
        raise MalformedResponseError("Expected a non-empty list of examples")
    try:
        return [
            CodeExample.model_validate({"language": language, **item})
            for item in data
        ]
    except (ValidationError, TypeError) as e:
        raise MalformedResponseError(f"Invalid example: {e}") from e


def parse_validation(text: str) -> ValidationResult:
    data = _load_json(text)
    if not isinstance(data, dict):
        raise MalformedResponseError("Expected a validation object")
    try:
        return ValidationResult.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid validation result: {e}") from e


def parse_optimization(text: str) -> List[OptimizationHint]:
    data = _load_json(text)
    if not isinstance(data, list):
        raise MalformedResponseError("Expected a list of optimization hints")
    try:
        return [OptimizationHint.model_validate(item) for item in data]
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid optimization hint: {e}") from e
