"""Shared fixtures: sample API description, project, stub provider and fake Redis."""
import asyncio
import fnmatch
import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from core.config import IntelligenceConfig
from intelligence.adapters.providers import BaseProvider, ProviderKind
from intelligence.models import (
    CostPerToken,
    GenerationRequest,
    GenerationResponse,
    ProjectDescriptor,
    ProviderCapability,
    TokenUsage,
    ToolDescriptor,
    ToolParameter,
)

STUB_MODEL = "stub-model"


def make_config(**sections: Any) -> IntelligenceConfig:
    """Build a config with an OpenAI primary and the given section overrides."""
    data: Dict[str, Any] = {"llm": {"primary": {"provider": "openai", "model": "gpt-4-turbo"}}}
    data.update(sections)
    return IntelligenceConfig.model_validate(data)


def default_handler(request: GenerationRequest) -> str:
    """Well-formed output for every enhancement prompt."""
    prompt = request.prompt
    if "documentation for this MCP tool" in prompt:
        name = prompt.split("**Tool**: ", 1)[1].split("\n", 1)[0]
        return json.dumps({
            "toolName": name, "description": f"Generated page for {name}", "usage": "Call it",
            "bestPractices": ["Cache results"],
        })
    if "error handling guide" in prompt:
        return "# Error Handling Guide\n\nGenerated guide."
    if "API reference for this MCP server" in prompt:
        return "# API Reference\n\nGenerated reference."
    if "quick start example" in prompt:
        return "```typescript\nawait client.connect(transport);\n```"
    if "server-side error handling" in prompt:
        return "```typescript\ntry { await run(); } catch (error) { report(error); }\n```"
    if "advanced usage example" in prompt:
        return "```typescript\nawait Promise.all(calls);\n```\nResult:\n```\n[3 results]\n```"
    if "README.md" in prompt:
        return "# Weather MCP Server\n\nGenerated documentation."
    if "usage examples" in prompt:
        return json.dumps([
            {"title": "Basic call", "description": "Fetch data", "code": "await client.callTool()"}
        ])
    if "Review this MCP server" in prompt:
        return json.dumps({"isValid": False, "confidence": 0.9, "issues": [], "suggestions": ["Add retries"]})
    if "performance optimizations" in prompt:
        return json.dumps([
            {"category": "caching", "suggestion": "Cache forecasts", "impact": "high",
             "implementation": "LRU", "estimatedGain": "30%"}
        ])
    return "ok"


class StubProvider(BaseProvider):
    """In-memory provider; ``handler`` maps a request to output text or raises."""

    kind = ProviderKind.OPENAI
    default_model = STUB_MODEL
    capabilities = {
        STUB_MODEL: ProviderCapability(
            model=STUB_MODEL,
            max_tokens=8000,
            cost_per_token=CostPerToken(input=0.00001, output=0.00003),
        )
    }

    def __init__(self, handler: Optional[Callable[[GenerationRequest], str]] = None, delay: float = 0.0):
        super().__init__()
        self.handler = handler or default_handler
        self.delay = delay
        self.calls: List[GenerationRequest] = []
        self.closed = False

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        content = self.handler(request)
        return GenerationResponse(
            content=content,
            usage=TokenUsage(
                prompt_tokens=10,
                completion_tokens=20,
                total_tokens=30,
                cost=self.estimate_cost(10, 20),
            ),
            model=self.model,
        )

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    """Subset of the redis.asyncio client used by SharedResponseCache."""

    def __init__(self) -> None:
        self.store: Dict[str, Tuple[str, Optional[float]]] = {}
        self.ttls: Dict[str, List[int]] = {}
        self.closed = False

    async def get(self, key):
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and time.time() >= expires_at:
            del self.store[key]
            return None
        return value.encode("utf-8")

    async def set(self, key, value):
        self.store[key] = (value, None)
        return True

    async def setex(self, key, ttl, value):
        self.store[key] = (value, time.time() + ttl)
        self.ttls.setdefault(key, []).append(ttl)
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            removed += self.store.pop(key, None) is not None
        return removed

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key.encode("utf-8")

    async def info(self, section=None):
        return {"used_memory_human": "1.00M"}

    async def aclose(self):
        self.closed = True


@pytest.fixture
def sample_spec() -> Dict[str, Any]:
    return {
        "openapi": "3.0.3",
        "info": {"title": "Weather API", "version": "1.2.0", "description": "Forecasts and alerts."},
        "paths": {
            "/forecast/{city}": {
                "parameters": [
                    {"name": "city", "in": "path", "required": True, "schema": {"type": "string"},
                     "description": "City name"}
                ],
                "get": {
                    "operationId": "getForecast",
                    "summary": "Get the forecast for a city",
                    "responses": {
                        "200": {
                            "description": "Forecast",
                            "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Forecast"}}},
                        },
                        "404": {"description": "Unknown city"},
                    },
                },
            },
            "/alerts": {
                "get": {
                    "operationId": "listAlerts",
                    "summary": "List weather alerts",
                    "parameters": [{"$ref": "#/components/parameters/Region"}],
                    "responses": {"200": {"description": "Alerts"}},
                },
                "post": {
                    "operationId": "createAlert",
                    "requestBody": {
                        "required": True,
                        "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Alert"}}},
                    },
                    "responses": {"201": {"description": "Created"}},
                },
            },
        },
        "components": {
            "parameters": {
                "Region": {"name": "region", "in": "query", "schema": {"type": "string"}}
            },
            "schemas": {
                "Forecast": {
                    "type": "object",
                    "required": ["city"],
                    "properties": {
                        "city": {"type": "string"},
                        "temperature": {"type": "number", "format": "float"},
                    },
                },
                "Alert": {
                    "type": "object",
                    "properties": {
                        "level": {"type": "string", "enum": ["low", "high"]},
                        "message": {"type": "string"},
                    },
                },
            },
        },
    }


@pytest.fixture
def project() -> ProjectDescriptor:
    return ProjectDescriptor(
        name="weather-mcp",
        description="MCP server for the Weather API",
        tools=[
            ToolDescriptor(
                name="getForecast",
                description="Get the forecast for a city",
                parameters=[ToolParameter(name="city", required=True)],
                path="/forecast/{city}",
                method="GET",
            ),
            ToolDescriptor(name="listAlerts", description="List weather alerts"),
            ToolDescriptor(name="createAlert", description="Create an alert"),
        ],
        files=["src/index.ts", "package.json"],
    )


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
