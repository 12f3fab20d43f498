"""Prompt builders for enhancement tasks.

Every builder is a pure function of its inputs so that identical requests
produce identical prompts and therefore identical cache keys.
"""
import json
from typing import Dict, List

from intelligence.models import CompressedSpecification, ProjectDescriptor, ToolDescriptor

SYSTEM_PROMPTS = {
    "documentation": (
        "You are an expert technical writer specializing in MCP (Model Context Protocol) "
        "server documentation. MCP servers expose tools that AI assistants call; write "
        "documentation that helps developers integrate them."
    ),
    "code-generation": (
        "You are a software engineer who builds MCP servers. MCP servers receive tool "
        "calls over stdio and return structured results; they are not REST API clients."
    ),
    "validation": (
        "You are a senior reviewer of MCP server implementations. Focus on protocol "
        "correctness, error handling, security and performance."
    ),
}

_TOOL_CATEGORIES = [
    ("Data Retrieval", ("get", "fetch", "read", "list"), ("retrieve",)),
    ("Data Modification", ("post", "put", "patch", "delete", "create", "update"), ()),
    ("Search/Query", ("search", "query", "find"), ("search",)),
    ("Authentication", ("auth", "login", "token"), ("auth",)),
    ("File Operations", ("file", "upload", "download"), ("file",)),
]


def _tool_lines(tools: List[ToolDescriptor]) -> str:
    return "\n".join(f"- {tool.name}: {tool.description or 'No description'}" for tool in tools)


def _parameter_lines(tool: ToolDescriptor) -> str:
    if not tool.parameters:
        return "- (none)"
    return "\n".join(
        f"- {param.name} ({param.type}){' *required*' if param.required else ' *optional*'}: "
        f"{param.description or 'No description'}"
        for param in tool.parameters
    )


def categorize_tools(tools: List[ToolDescriptor]) -> str:
    """Group tool names into coarse categories by name and description."""
    categories: Dict[str, List[str]] = {name: [] for name, _, _ in _TOOL_CATEGORIES}
    categories["Other"] = []

    for tool in tools:
        name = tool.name.lower()
        description = (tool.description or "").lower()
        for category, name_hints, description_hints in _TOOL_CATEGORIES:
            if any(hint in name for hint in name_hints) or any(hint in description for hint in description_hints):
                categories[category].append(tool.name)
                break
        else:
            categories["Other"].append(tool.name)

    return "\n".join(
        f"- {category}: {', '.join(names)}" for category, names in categories.items() if names
    )


def render_documentation_prompt(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    endpoints = "\n".join(
        f"{path.path}: " + ", ".join(
            f"{op.method} {op.summary or op.operation_id or ''}".rstrip() for op in path.operations
        )
        for path in spec.paths
    )
    return f"""{SYSTEM_PROMPTS['documentation']}

Generate a comprehensive, professional README.md for an MCP server.

**Project**: {project.name}
**Language**: {project.language}
**API**: {spec.info.title} v{spec.info.version}
**Description**: {spec.info.description or project.description or 'MCP server for API integration'}

**Available Tools** ({len(project.tools)}):
{_tool_lines(project.tools)}

**Tool Categories**:
{categorize_tools(project.tools)}

**Endpoints**:
{endpoints}

**Requirements**:
1. Installation, setup and usage instructions
2. Each tool documented with an example call
3. Configuration options and Claude Desktop setup
4. Troubleshooting and security considerations

**Output**: Return ONLY the README.md content in markdown format."""


def render_example_prompt(project: ProjectDescriptor, tool: ToolDescriptor) -> str:
    return f"""{SYSTEM_PROMPTS['code-generation']}

Generate practical usage examples for one tool of the MCP server "{project.name}".

**Tool**: {tool.name}
**Description**: {tool.description or 'MCP tool'}
**Language**: {project.language}

**Parameters**:
{_parameter_lines(tool)}

Show how the tool is called with realistic arguments and what the MCP response
looks like. Do not generate HTTP client code.

**Output Format**: JSON array of objects:
[{{"title": "string", "description": "string", "code": "string", "language": "{project.language}", "output": "string"}}]
Return ONLY the JSON."""


def render_tool_doc_prompt(project: ProjectDescriptor, tool: ToolDescriptor,
                           spec: CompressedSpecification) -> str:
    context = "\n".join(
        f"{path.path}: " + ", ".join(f"{op.method} {op.summary or ''}".rstrip() for op in path.operations)
        for path in spec.paths
        if any(op.operation_id == tool.name for op in path.operations)
    ) or "(no matching endpoint)"
    return f"""{SYSTEM_PROMPTS['documentation']}

Create comprehensive documentation for this MCP tool.

**Tool**: {tool.name}
**Description**: {tool.description or 'No description provided'}
**Language**: {project.language}

**Parameters**:
{_parameter_lines(tool)}

**API Context** from {spec.info.title}:
{context}

**Output Format**: JSON object with structure:
{{"toolName": "string", "description": "string", "usage": "string", "parameters": [{{"name": "string", "type": "string", "required": boolean, "description": "string", "example": "any"}}], "errorCases": [{{"scenario": "string", "error": "string", "solution": "string"}}], "bestPractices": ["string"]}}
Return ONLY the JSON."""


def render_error_guide_prompt(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    return f"""{SYSTEM_PROMPTS['documentation']}

Create an error handling guide for this MCP server.

**API**: {spec.info.title} v{spec.info.version}
**Language**: {project.language}
**Tools Count**: {len(project.tools)}

**Common Tool Categories**:
{categorize_tools(project.tools)}

**Requirements**:
1. Common error scenarios for each tool category, with messages and solutions
2. Code samples for handling errors
3. Rate limiting, authentication, network and timeout errors
4. A troubleshooting checklist

**Output**: Return ONLY the markdown content for the guide."""


def render_api_reference_prompt(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    endpoints = "\n\n".join(
        f"{path.path}:\n" + "\n".join(
            f"  {op.method.upper()} - {op.summary or op.operation_id or 'No description'}"
            for op in path.operations
        )
        for path in spec.paths
    )
    return f"""{SYSTEM_PROMPTS['documentation']}

Generate the API reference for this MCP server.

**API**: {spec.info.title} v{spec.info.version}
**Description**: {spec.info.description or 'API reference documentation'}
**Language**: {project.language}

**Available Endpoints** ({len(spec.paths)}):
{endpoints}

**MCP Tools** ({len(project.tools)}):
{_tool_lines(project.tools)}

**Requirements**:
1. Endpoint documentation with request and response examples
2. Authentication requirements and rate limits
3. Parameter descriptions, constraints and error response formats

**Output**: Return ONLY the markdown content for the API reference."""


def render_quick_start_prompt(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    return f"""{SYSTEM_PROMPTS['code-generation']}

Generate a quick start example for the {project.name} MCP server.

**Project**: {project.name}
**Language**: {project.language}
**API**: {spec.info.title}

**Available Tools**:
{_tool_lines(project.tools[:3])}

**Requirements**:
1. Connect to the server and list its tools
2. Call one tool with realistic arguments
3. Include the Claude Desktop configuration as a comment

**Output**: One fenced {project.language} code block. Do not generate HTTP client code."""


def render_error_handling_prompt(project: ProjectDescriptor) -> str:
    return f"""{SYSTEM_PROMPTS['code-generation']}

Show server-side error handling for the {project.name} MCP server.

**Project**: {project.name}
**Language**: {project.language}
**Tools**: {len(project.tools)} available

**Requirements**:
1. try/except (or try/catch) around tool handler bodies
2. Structured error results with isError set, returned to the AI assistant
3. Validation of tool parameters and handling of malformed calls
4. Logging for debugging

**Output**: One fenced {project.language} code block."""


def render_advanced_prompt(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    return f"""{SYSTEM_PROMPTS['code-generation']}

Generate an advanced usage example for the {project.name} MCP server.

**Project**: {project.name}
**Language**: {project.language}
**API**: {spec.info.title}

**Requirements**:
1. A workflow that chains several tools
2. Batching and caching of tool results
3. Monitoring of call latency

**Output**: One fenced {project.language} code block followed by a short explanation."""


def render_validation_prompt(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    files = ", ".join(project.files[:5]) or "(not provided)"
    return f"""{SYSTEM_PROMPTS['validation']}

Review this MCP server implementation for quality, security, and best practices.

**Project**: {project.name}
**API**: {spec.info.title} v{spec.info.version}
**Tools**: {len(project.tools)}
**Language**: {project.language}
**Generated Files**: {files}

**Compressed API description**:
{spec.to_compact_json()}

**Output Format**: JSON with structure:
{{"isValid": boolean, "confidence": number (0-1), "issues": [{{"type": "error|warning|info", "severity": "high|medium|low", "message": "string", "suggestion": "string"}}], "suggestions": ["string"]}}
Return ONLY the JSON."""


def render_optimization_prompt(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    tool_names = ", ".join(tool.name for tool in project.tools) or "(none)"
    return f"""Analyze this MCP server and suggest performance optimizations.

**Project**: {project.name}
**Tools**: {tool_names}
**API**: {spec.info.title}
**Endpoints**: {len(spec.paths)}

Consider request batching, caching, memory use and network efficiency.

**Output Format**: JSON array of:
[{{"category": "string", "suggestion": "string", "impact": "high|medium|low", "implementation": "string", "estimatedGain": "string"}}]
Return ONLY the JSON."""


def compact_spec_summary(spec: CompressedSpecification) -> str:
    """Short JSON digest of the spec used in log lines."""
    return json.dumps({"title": spec.info.title, "paths": len(spec.paths), "tokens": spec.token_count})
