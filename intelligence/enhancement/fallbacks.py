"""Deterministic, template-derived substitutes for failed enhancement tasks.

Code templates come in two flavours: Python for ``language == "python"``
projects, the MCP TypeScript SDK for everything else.
"""
import re
from typing import List, Optional

from intelligence.models import (
    CodeExample,
    CompressedSpecification,
    OptimizationHint,
    ParameterDoc,
    ProjectDescriptor,
    ToolDescriptor,
    ToolDocumentation,
    ValidationResult,
)

_PARAMETER_EXAMPLES = {
    "string": "example-value",
    "number": 42,
    "integer": 42,
    "boolean": True,
    "array": ["item1", "item2"],
    "object": {"key": "value"},
}


def _humanize(name: str) -> str:
    spaced = re.sub(r"([A-Z])", r" \1", name).replace("_", " ")
    return " ".join(spaced.split()).lower()


def _snake(name: str) -> str:
    return re.sub(r"[^0-9a-z]+", "_", _humanize(name)).strip("_")


def _is_python(project: ProjectDescriptor) -> bool:
    return project.language.lower() == "python"


def _example_value(param_type: str, python: bool) -> str:
    kind = param_type.lower()
    if kind in ("number", "integer"):
        return "42"
    if kind == "boolean":
        return "True" if python else "true"
    if kind == "array":
        return '["item1", "item2"]'
    if kind == "object":
        return '{"key": "value"}'
    return '"example-value"'


def _endpoint_sections(spec: CompressedSpecification) -> str:
    return "\n\n".join(
        f"### {path.path}\n\n" + "\n".join(
            f"**{op.method}** - {op.summary or op.operation_id or 'No description'}"
            for op in path.operations
        )
        for path in spec.paths
    )


# ---------------------------------------------------------------------------
# Documentation
# ---------------------------------------------------------------------------


def fallback_documentation(project: ProjectDescriptor, spec: CompressedSpecification) -> str:
    tools = "\n".join(
        f"- **{tool.name}**: {tool.description or 'No description available'}"
        for tool in project.tools
    )
    return f"""# {project.name}

MCP Server generated from {spec.info.title} API.

## Installation

```bash
npm install
npm run build
```

## Usage

This server provides {len(project.tools)} tools for interacting with the {spec.info.title} API.

## Tools

{tools}

## API Reference

{spec.info.title} v{spec.info.version}

{_endpoint_sections(spec)}
"""


def tool_parameter_docs(tool: ToolDescriptor) -> List[ParameterDoc]:
    return [
        ParameterDoc(
            name=param.name,
            type=param.type,
            required=param.required,
            description=param.description or f"{param.name} parameter",
            example=_PARAMETER_EXAMPLES.get(param.type.lower(), "example"),
        )
        for param in tool.parameters
    ]


def fallback_tool_documentation(tool: ToolDescriptor) -> ToolDocumentation:
    return ToolDocumentation(
        tool_name=tool.name,
        description=tool.description or f"Tool for {tool.name}",
        usage=f"Use this tool to {_humanize(tool.name)}",
        parameters=tool_parameter_docs(tool),
        best_practices=[
            "Validate all required parameters before calling",
            "Handle errors gracefully",
            "Use appropriate timeout values",
        ],
    )


def fallback_error_guide(project: ProjectDescriptor) -> str:
    return f"""# Error Handling Guide

This guide covers common errors and their solutions when using the {project.name} MCP server.

## Common Error Types

- **Validation Errors**: Check that all required parameters are provided
- **Network Errors**: Ensure the API endpoint is accessible
- **Authentication Errors**: Verify API credentials are correct
- **Rate Limiting**: Implement appropriate retry logic

## Best Practices

- Always validate input parameters
- Implement proper error handling
- Use appropriate timeout values
- Log errors for debugging
"""


def fallback_api_reference(spec: CompressedSpecification) -> str:
    return f"""# API Reference

## {spec.info.title} v{spec.info.version}

{spec.info.description or 'API documentation for this service.'}

## Endpoints

{_endpoint_sections(spec)}
"""


# ---------------------------------------------------------------------------
# Examples
# ---------------------------------------------------------------------------


def _python_call(tool: ToolDescriptor, indent: str) -> str:
    arguments = [
        f'{indent}        "{param.name}": {_example_value(param.type, True)},  # {param.description or param.type}'
        for param in tool.parameters if param.required
    ]
    if not arguments:
        return f'{indent}result = await session.call_tool("{tool.name}", arguments={{}})'
    body = "\n".join(arguments)
    return f"""{indent}result = await session.call_tool(
{indent}    "{tool.name}",
{indent}    arguments={{
{body}
{indent}    }},
{indent})"""


def _typescript_call(tool: ToolDescriptor, indent: str) -> str:
    arguments = [
        f'{indent}    "{param.name}": {_example_value(param.type, False)}'
        for param in tool.parameters if param.required
    ]
    if not arguments:
        return f'{indent}const result = await client.callTool({{ name: "{tool.name}", arguments: {{}} }});'
    body = ",\n".join(arguments)
    return f"""{indent}const result = await client.callTool({{
{indent}  name: "{tool.name}",
{indent}  arguments: {{
{body}
{indent}  }}
{indent}}});"""


def fallback_examples(project: ProjectDescriptor, tool: ToolDescriptor) -> List[CodeExample]:
    if _is_python(project):
        code = f"""# Call {tool.name} from an MCP client session
async def use_{_snake(tool.name)}(session):
{_python_call(tool, "    ")}
    print(result.content)
    return result"""
    else:
        code = f"""// Call {tool.name} from an MCP client
{_typescript_call(tool, "")}
console.log(result.content);"""
    return [
        CodeExample(
            title=f"Using {tool.name}",
            description=tool.description or f"Use this tool to {_humanize(tool.name)}",
            code=code,
            language=project.language,
        )
    ]


def fallback_quick_start(project: ProjectDescriptor) -> List[CodeExample]:
    tool: Optional[ToolDescriptor] = project.tools[0] if project.tools else None
    if _is_python(project):
        if tool is not None:
            call = _python_call(tool, "            ") + "\n            print(result.content)"
        else:
            call = "            print(await session.list_tools())"
        code = f"""import asyncio

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

SERVER = StdioServerParameters(command="python", args=["-m", "{_snake(project.name)}"])


async def quick_start():
    async with stdio_client(SERVER) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()
{call}


if __name__ == "__main__":
    asyncio.run(quick_start())"""
    else:
        if tool is not None:
            call = _typescript_call(tool, "  ") + "\n  console.log(result.content);"
        else:
            call = "  console.log(await client.listTools());"
        code = f"""import {{ Client }} from "@modelcontextprotocol/sdk/client/index.js";
import {{ StdioClientTransport }} from "@modelcontextprotocol/sdk/client/stdio.js";

const transport = new StdioClientTransport({{ command: "node", args: ["dist/index.js"] }});
const client = new Client({{ name: "{project.name}-quick-start", version: "1.0.0" }});

async function quickStart() {{
  await client.connect(transport);
{call}
}}

quickStart().catch(console.error);"""
    return [
        CodeExample(
            title=f"Quick Start - {project.name}",
            description=f"Basic usage example for {project.name}",
            code=code,
            language=project.language,
        )
    ]


def fallback_error_handling(project: ProjectDescriptor) -> List[CodeExample]:
    if _is_python(project):
        code = f"""# Error handling in {project.name} tool handlers
import logging

from mcp.types import TextContent

logger = logging.getLogger("{_snake(project.name)}")


async def call_tool(name: str, arguments: dict):
    try:
        # dispatch() routes the call to the tool implementation
        return await dispatch(name, arguments)
    except ValueError as e:
        return {{"content": [TextContent(type="text", text=f"Invalid arguments: {{e}}")], "isError": True}}
    except Exception as e:
        logger.exception("Tool %s failed", name)
        return {{"content": [TextContent(type="text", text=f"Error: {{e}}")], "isError": True}}"""
    else:
        code = f"""// Error handling in {project.name} tool handlers
server.setRequestHandler(CallToolRequestSchema, async (request) => {{
  try {{
    // dispatch() routes the call to the tool implementation
    return await dispatch(request.params.name, request.params.arguments);
  }} catch (error) {{
    console.error(`Tool ${{request.params.name}} failed:`, error);
    return {{
      content: [{{ type: "text", text: `Error: ${{error.message}}` }}],
      isError: true
    }};
  }}
}});"""
    return [
        CodeExample(
            title="Error Handling",
            description=f"Error handling patterns for {project.name}",
            code=code,
            language=project.language,
        )
    ]


def fallback_advanced() -> List[CodeExample]:
    return []


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


def fallback_validation() -> ValidationResult:
    return ValidationResult(
        is_valid=True,
        confidence=0.5,
        issues=[],
        suggestions=["Unable to perform automated validation"],
    )


def fallback_optimization() -> List[OptimizationHint]:
    return []
