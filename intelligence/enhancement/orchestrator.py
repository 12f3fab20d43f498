from __future__ import annotations
"""Enhancement orchestrator.

Runs enhancement tasks against a compressed specification.  Documentation
expands into the README, per-tool pages, an error guide and an API reference;
examples into a quick start, per-tool examples, error handling and an
optional advanced example:

    spec -> minify -> optimize_for_token_limit -> prompt per task
         -> cache.get -> (miss) single-flight provider.generate -> parse
         -> cache.set -> aggregate result + metrics

A failing task is replaced by a deterministic fallback; it never aborts its
siblings.  Only a pre-flight budget violation or a configuration error is
raised to the caller.
"""

import asyncio
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple, Union

from core import monitoring
from core.config import IntelligenceConfig
from core.errors import (
    BudgetExceededError,
    ConfigurationError,
    IntelligenceError,
    NetworkError,
)
from core.logging import logger
from intelligence.adapters.cache import BaseResponseCache, build_cache
from intelligence.adapters.providers import BaseProvider
from intelligence.adapters.registry import ProviderRegistry
from intelligence.adapters.singleflight import SingleFlight
from intelligence.models import (
    ADVANCED_TASK,
    API_REFERENCE_TASK,
    ERROR_GUIDE_TASK,
    ERROR_HANDLING_TASK,
    QUICK_START_TASK,
    TOOL_DOC_PREFIX,
    CacheStatistics,
    CompressedSpecification,
    CostEstimate,
    EnhancementResult,
    Feature,
    GenerationRequest,
    GenerationResponse,
    IntelligenceMetrics,
    OutcomeSource,
    ProjectDescriptor,
    TaskOutcome,
)
from intelligence.pipeline.minifier import minify, optimize_for_token_limit

from . import fallbacks, parsers, prompts

__all__ = ["EnhancementOrchestrator"]

# Pre-flight token heuristics
DOCUMENTATION_TOKEN_FACTOR = 2.0
VALIDATION_TOKEN_FACTOR = 0.5
TOKENS_PER_EXAMPLE = 500
INPUT_TOKEN_SHARE = 0.7
OUTPUT_TOKEN_SHARE = 0.3

# Cache-hit probability heuristic
BASE_HIT_RATE = 0.3
MAX_CATALOG_BONUS = 0.4
FEATURE_BONUS = 0.1
MAX_HIT_PROBABILITY = 0.8

# Sampling per task kind: (max_tokens, temperature)
_SAMPLING = {
    "readme": (2000, 0.3),
    "tool-doc": (1500, 0.2),
    "error-guide": (1500, 0.2),
    "api-reference": (2500, 0.1),
    "tool-example": (1000, 0.2),
    "quick-start": (500, 0.3),
    "error-handling": (1000, 0.2),
    "advanced": (1500, 0.5),
    "validation": (1000, 0.1),
    "optimization": (800, 0.3),
}


@dataclass
class _Task:
    task_id: str
    feature: Feature
    provider: BaseProvider
    request: GenerationRequest
    parse: Callable[[str], Any]
    fallback: Callable[[], Any]


SpecInput = Union[Mapping[str, Any], CompressedSpecification]


class EnhancementOrchestrator:
    """Cache-first, cost-tracking runner for enhancement tasks."""

    def __init__(
        self,
        config: IntelligenceConfig,
        providers: ProviderRegistry,
        cache: BaseResponseCache,
    ) -> None:
        self.config = config
        self.providers = providers
        self.cache = cache
        self._flight = SingleFlight()
        self._semaphore = asyncio.Semaphore(config.runtime.max_concurrency)
        self._metrics = IntelligenceMetrics()

    @classmethod
    def from_config(cls, config: IntelligenceConfig) -> "EnhancementOrchestrator":
        """Resolve providers and cache once; configuration errors raise here."""
        return cls(config, ProviderRegistry.from_config(config), build_cache(config.cache))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        await self.cache.connect()

    async def close(self, grace_timeout: Optional[float] = None) -> None:
        """Drain in-flight calls, flush cache stats, close cache and providers."""
        grace = self.config.runtime.shutdown_grace if grace_timeout is None else grace_timeout
        if not await self._flight.wait_idle(grace):
            logger.warning(f"Shutdown grace of {grace}s expired with calls still in flight")
        await self.cache.close()
        await self.providers.aclose()

    async def __aenter__(self) -> "EnhancementOrchestrator":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def is_feature_available(self, feature: Union[Feature, str]) -> bool:
        return bool(getattr(self.config.features, _as_feature(feature).value))

    def get_metrics(self) -> IntelligenceMetrics:
        return self._metrics.model_copy(deep=True)

    async def get_cache_stats(self) -> CacheStatistics:
        return await self.cache.get_stats()

    async def clear_cache(self, pattern: Optional[str] = None) -> None:
        await self.cache.clear(pattern)

    def estimate_cost(
        self,
        project: ProjectDescriptor,
        spec: SpecInput,
        features: Iterable[Union[Feature, str]],
    ) -> CostEstimate:
        """Predict tokens and cost for ``features`` without generating anything."""
        requested = [_as_feature(feature) for feature in features]
        base_tokens = minify(spec).token_count

        estimated_tokens = 0.0
        if Feature.DOCUMENTATION in requested:
            estimated_tokens += base_tokens * DOCUMENTATION_TOKEN_FACTOR
        if Feature.EXAMPLES in requested:
            estimated_tokens += len(project.tools) * TOKENS_PER_EXAMPLE
        if Feature.VALIDATION in requested:
            estimated_tokens += base_tokens * VALIDATION_TOKEN_FACTOR

        estimated_cost = self.providers.primary.estimate_cost(
            estimated_tokens * INPUT_TOKEN_SHARE,
            estimated_tokens * OUTPUT_TOKEN_SHARE,
        )
        return CostEstimate(
            estimated_tokens=estimated_tokens,
            estimated_cost=estimated_cost,
            features=requested,
            cache_hit_probability=_cache_hit_probability(len(project.tools), len(requested)),
        )

    async def enhance(
        self,
        project: ProjectDescriptor,
        spec: SpecInput,
        features: Optional[Iterable[Union[Feature, str]]] = None,
    ) -> EnhancementResult:
        """Run every enabled, requested feature and return a best-effort aggregate.

        Raises:
            BudgetExceededError: the pre-flight estimate is above ``costs.max_cost``.
            ConfigurationError: an unknown feature was requested.
        """
        started = time.perf_counter()
        selected = self._resolve_features(features)
        compressed = minify(spec)

        self._check_budget(project, compressed, selected)

        context_spec = optimize_for_token_limit(compressed, self.config.runtime.max_context_tokens)
        logger.debug(f"Enhancing {project.name} with {prompts.compact_spec_summary(context_spec)}")

        tasks = self._build_tasks(project, context_spec, selected)
        outcomes = await asyncio.gather(*(self._run_guarded(task) for task in tasks))

        result = EnhancementResult(project=project.name, features=selected)
        for outcome in outcomes:
            result.outcomes[outcome.task_id] = outcome
            if outcome.source == OutcomeSource.CACHE:
                result.cache_hits += 1
            elif outcome.source == OutcomeSource.PROVIDER and outcome.usage is not None:
                result.cost += outcome.usage.cost
        result.processing_time_ms = (time.perf_counter() - started) * 1000

        for feature in selected:
            self._track_feature_usage(feature.value)
        await self._update_metrics(result)

        if result.fallbacks:
            logger.warning(f"Enhancement of {project.name} used fallbacks for: {', '.join(result.fallbacks)}")
        logger.info(
            f"Enhanced {project.name}: {len(outcomes)} tasks, {result.cache_hits} cache hits, "
            f"${result.cost:.4f}, {result.processing_time_ms:.0f}ms"
        )
        return result

    # ------------------------------------------------------------------
    # Task construction
    # ------------------------------------------------------------------
    def _resolve_features(self, features: Optional[Iterable[Union[Feature, str]]]) -> List[Feature]:
        requested = list(Feature) if features is None else [_as_feature(f) for f in features]
        selected = []
        for feature in requested:
            if feature in selected:
                continue
            if self.is_feature_available(feature):
                selected.append(feature)
            else:
                logger.debug(f"Feature {feature.value} disabled by configuration")
        return selected

    def _check_budget(self, project: ProjectDescriptor, compressed: CompressedSpecification,
                      features: List[Feature]) -> None:
        max_cost = self.config.costs.max_cost
        if max_cost is None:
            return
        estimate = self.estimate_cost(project, compressed, features)
        if estimate.estimated_cost > max_cost:
            raise BudgetExceededError(estimate.estimated_cost, max_cost)
        if estimate.estimated_cost > max_cost * self.config.costs.alert_threshold:
            logger.warning(
                f"Estimated cost ${estimate.estimated_cost:.4f} is above "
                f"{self.config.costs.alert_threshold:.0%} of the ${max_cost:.2f} budget"
            )

    def _request(self, kind: str, prompt: str) -> GenerationRequest:
        max_tokens, temperature = _SAMPLING[kind]
        return GenerationRequest(prompt=prompt, max_tokens=max_tokens, temperature=temperature)

    def _build_tasks(self, project: ProjectDescriptor, spec: CompressedSpecification,
                     features: List[Feature]) -> List[_Task]:
        flags = self.config.features
        language = project.language
        tasks: List[_Task] = []

        def add(task_id: str, feature: Feature, kind: str, prompt: str,
                parse: Callable[[str], Any], fallback: Callable[[], Any]) -> None:
            tasks.append(_Task(
                task_id=task_id,
                feature=feature,
                provider=self.providers.for_task(feature.value),
                request=self._request(kind, prompt),
                parse=parse,
                fallback=fallback,
            ))

        for feature in features:
            if feature == Feature.DOCUMENTATION:
                add(feature.value, feature, "readme",
                    prompts.render_documentation_prompt(project, spec),
                    parsers.parse_documentation,
                    partial(fallbacks.fallback_documentation, project, spec))
                if flags.tool_docs:
                    for tool in project.tools:
                        add(f"{TOOL_DOC_PREFIX}{tool.name}", feature, "tool-doc",
                            prompts.render_tool_doc_prompt(project, tool, spec),
                            partial(parsers.parse_tool_documentation, tool=tool),
                            partial(fallbacks.fallback_tool_documentation, tool))
                if flags.error_guide:
                    add(ERROR_GUIDE_TASK, feature, "error-guide",
                        prompts.render_error_guide_prompt(project, spec),
                        parsers.parse_documentation,
                        partial(fallbacks.fallback_error_guide, project))
                if flags.api_reference:
                    add(API_REFERENCE_TASK, feature, "api-reference",
                        prompts.render_api_reference_prompt(project, spec),
                        parsers.parse_documentation,
                        partial(fallbacks.fallback_api_reference, spec))

            elif feature == Feature.EXAMPLES:
                if flags.quick_start:
                    add(QUICK_START_TASK, feature, "quick-start",
                        prompts.render_quick_start_prompt(project, spec),
                        partial(parsers.parse_code_example, title=f"Quick Start - {project.name}",
                                description=f"Get started with the {project.name} MCP server",
                                language=language),
                        partial(fallbacks.fallback_quick_start, project))
                for tool in project.tools[: self.config.runtime.max_examples]:
                    add(f"{feature.value}:{tool.name}", feature, "tool-example",
                        prompts.render_example_prompt(project, tool),
                        partial(parsers.parse_examples, language=language),
                        partial(fallbacks.fallback_examples, project, tool))
                if flags.error_handling_example:
                    add(ERROR_HANDLING_TASK, feature, "error-handling",
                        prompts.render_error_handling_prompt(project),
                        partial(parsers.parse_code_example, title="Error Handling",
                                description=f"Error handling patterns for {project.name}",
                                language=language),
                        partial(fallbacks.fallback_error_handling, project))
                if flags.advanced_example:
                    add(ADVANCED_TASK, feature, "advanced",
                        prompts.render_advanced_prompt(project, spec),
                        partial(parsers.parse_code_example, title="Advanced Usage Patterns",
                                description=f"Advanced techniques with {project.name}",
                                language=language),
                        fallbacks.fallback_advanced)

            elif feature == Feature.VALIDATION:
                add(feature.value, feature, "validation",
                    prompts.render_validation_prompt(project, spec),
                    parsers.parse_validation,
                    fallbacks.fallback_validation)

            elif feature == Feature.OPTIMIZATION:
                add(feature.value, feature, "optimization",
                    prompts.render_optimization_prompt(project, spec),
                    parsers.parse_optimization,
                    fallbacks.fallback_optimization)
        return tasks

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------
    async def _run_guarded(self, task: _Task) -> TaskOutcome:
        async with self._semaphore:
            started = time.perf_counter()
            try:
                return await self._run_task(task)
            except IntelligenceError as e:
                logger.warning(f"Task {task.task_id} failed, using fallback: {e}")
                return self._fallback_outcome(task, e)
            except Exception as e:
                logger.error(f"Unexpected error in task {task.task_id}, using fallback: {e}", exc_info=True)
                return self._fallback_outcome(task, e)
            finally:
                monitoring.TASK_LATENCY.labels(feature=task.feature.value).observe(
                    time.perf_counter() - started
                )

    def _fallback_outcome(self, task: _Task, error: Exception) -> TaskOutcome:
        monitoring.TASK_FALLBACKS.labels(feature=task.feature.value).inc()
        return TaskOutcome(
            task_id=task.task_id,
            feature=task.feature,
            content=task.fallback(),
            source=OutcomeSource.FALLBACK,
            error=f"{type(error).__name__}: {error}",
        )

    async def _run_task(self, task: _Task) -> TaskOutcome:
        model = task.provider.model
        params = task.request.sampling_params()

        cached = await self.cache.get(task.request.prompt, model, params)
        if cached is not None:
            return TaskOutcome(
                task_id=task.task_id,
                feature=task.feature,
                content=task.parse(cached.content),
                source=OutcomeSource.CACHE,
                usage=cached.usage,
            )

        key = self.cache.key_for(task.request.prompt, model, params)
        (response, content), shared = await self._flight.do(key, partial(self._generate_and_store, task))
        return TaskOutcome(
            task_id=task.task_id,
            feature=task.feature,
            content=content,
            source=OutcomeSource.CACHE if shared else OutcomeSource.PROVIDER,
            usage=response.usage,
        )

    async def _generate_and_store(self, task: _Task) -> Tuple[GenerationResponse, Any]:
        provider = task.provider
        try:
            response = await asyncio.wait_for(
                provider.generate(task.request),
                timeout=self.config.runtime.provider_timeout,
            )
        except asyncio.TimeoutError as e:
            monitoring.PROVIDER_CALLS.labels(provider=provider.name, status="timeout").inc()
            raise NetworkError(
                f"{provider.name} did not answer within {self.config.runtime.provider_timeout}s"
            ) from e
        except Exception:
            monitoring.PROVIDER_CALLS.labels(provider=provider.name, status="error").inc()
            raise

        monitoring.PROVIDER_CALLS.labels(provider=provider.name, status="ok").inc()
        monitoring.GENERATION_COST.inc(response.usage.cost)

        # Parse before storing so malformed output is never cached
        content = task.parse(response.content)
        await self.cache.set(
            task.request.prompt,
            provider.model,
            response,
            task.request.sampling_params(),
            ttl=self.config.cache.ttl,
        )
        return response, content

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------
    def _track_feature_usage(self, feature: str) -> None:
        self._metrics.feature_usage[feature] = self._metrics.feature_usage.get(feature, 0) + 1

    async def _update_metrics(self, result: EnhancementResult) -> None:
        metrics = self._metrics
        succeeded = not result.fallbacks
        metrics.request_count += 1
        if metrics.request_count == 1:
            metrics.average_latency_ms = result.processing_time_ms
            metrics.success_rate = 1.0 if succeeded else 0.0
        else:
            # Rolling averages weighted towards the latest run
            metrics.average_latency_ms = (metrics.average_latency_ms + result.processing_time_ms) / 2
            metrics.success_rate = (metrics.success_rate + (1.0 if succeeded else 0.0)) / 2
        metrics.total_cost += result.cost
        metrics.cache_hit_rate = (await self.cache.get_stats()).hit_rate


def _as_feature(feature: Union[Feature, str]) -> Feature:
    try:
        return Feature(feature)
    except ValueError:
        raise ConfigurationError(f"Unknown enhancement feature: {feature}") from None


def _cache_hit_probability(tool_count: int, feature_count: int) -> float:
    catalog_bonus = min(tool_count / 10, MAX_CATALOG_BONUS)
    return min(BASE_HIT_RATE + catalog_bonus + feature_count * FEATURE_BONUS, MAX_HIT_PROBABILITY)
