"""
Pipeline orchestrator using LangGraph.

Wires one analysis request end to end:

    validate_request -> extract_first_party -> call_provider
        -> validate_analysis -> persist

Any fallible node that records an error routes to ``handle_error`` instead
of the next node. Failures are always classified onto the error taxonomy
before they leave the pipeline.

Features:
    - Stateful execution with LangGraph StateGraph
    - Conditional edges for error handling
    - Retry with exponential backoff around the AI provider call
    - Cancellation through an ``asyncio.Event``
    - Degraded mode when first-party extraction fails
    - Partial result retention for failed validations
    - Per-node timing and structured logging
"""

import asyncio
import json
import operator
import time
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Annotated, Any, Awaitable, Callable, Literal, Optional, TypedDict
from uuid import uuid4

from langgraph.graph import END, StateGraph

from clonecheck.config.settings import Settings, get_settings
from clonecheck.models.schemas import AnalysisRecord, FirstPartyData
from clonecheck.services.analysis_validator import AnalysisValidator
from clonecheck.services.first_party import FirstPartyExtractor
from clonecheck.services.storage import AnalysisStorage, AnalysisStore
from clonecheck.services.validation_service import ValidationService
from clonecheck.utils.errors import (
    AppError,
    ValidationError,
    build_error_response,
    classify_error,
    resolve_request_id,
)
from clonecheck.utils.logger import analysis_context, get_logger
from clonecheck.utils.results import InvalidKind
from clonecheck.utils.retry import (
    PartialResultStore,
    generate_error_guidance,
    retry_with_backoff,
)

logger = get_logger(__name__)


# The AI provider is an external collaborator: (url, goal, first_party) -> parsed JSON
AnalysisProvider = Callable[[str, Optional[str], Optional[FirstPartyData]], Awaitable[Any]]


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Pipeline State Definition (TypedDict for LangGraph)
# =============================================================================

class AnalysisStateDict(TypedDict, total=False):
    """
    TypedDict-based pipeline state for LangGraph.

    ``error`` holds the classified ``AppError`` once any node fails.
    """
    # Identifiers
    run_id: str
    request_id: str
    user_id: str

    # Input
    request_body: Any
    cancel_event: Optional[asyncio.Event]

    # Step outputs
    url: str
    goal: Optional[str]
    first_party: Optional[dict]
    raw_analysis: Any
    analysis: Optional[dict]
    record: Optional[dict]

    # Status tracking
    status: str
    error: Optional[AppError]
    errors: Annotated[list[str], operator.add]

    # Metadata
    metadata: dict
    step_timings: dict
    provider_attempts: int


# =============================================================================
# Decorators for Node Execution
# =============================================================================

def track_timing(func: Callable):
    """Record node duration and convert unexpected exceptions into a classified error."""
    @wraps(func)
    async def wrapper(self, state: AnalysisStateDict) -> dict[str, Any]:
        start_time = time.time()
        node_name = func.__name__.strip("_").replace("_node", "")

        logger.debug(f"Starting node: {node_name}", run_id=state.get("run_id"))

        try:
            result = await func(self, state)
        except Exception as e:
            error = classify_error(e)
            logger.error(
                f"Node failed: {node_name}",
                run_id=state.get("run_id"),
                error=error.message,
                code=error.code,
            )
            result = {
                "error": error,
                "errors": [f"{node_name}: {error.message}"],
                "status": AnalysisStatus.FAILED.value,
            }

        duration_ms = int((time.time() - start_time) * 1000)
        step_timings = state.get("step_timings", {}).copy()
        step_timings[node_name] = duration_ms
        result["step_timings"] = step_timings

        logger.debug(f"Completed node: {node_name}", run_id=state.get("run_id"), duration_ms=duration_ms)
        return result

    return wrapper


# =============================================================================
# Main Pipeline Class
# =============================================================================

class AnalysisPipeline:
    """
    LangGraph-based pipeline for one analysis request.

    Example:
        >>> async with AnalysisPipeline(provider=call_gemini) as pipeline:
        ...     record = await pipeline.run({"url": "https://example.com"}, user_id="u1")
        ...     print(record.analysis["synthesis"]["summary"])
    """

    def __init__(
        self,
        provider: AnalysisProvider,
        settings: Optional[Settings] = None,
        store: Optional[AnalysisStorage] = None,
        first_party_extractor: Optional[FirstPartyExtractor] = None,
        validation_service: Optional[ValidationService] = None,
        partial_results: Optional[PartialResultStore] = None,
        extract_first_party: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the pipeline.

        Args:
            provider: Async AI provider call returning the raw analysis payload
            settings: Application settings (uses defaults if not provided)
            store: Analysis storage (in-memory if not provided)
            first_party_extractor: Extractor for target-site metadata
            validation_service: Shared validators
            partial_results: Holder for raw payloads that failed validation
            extract_first_party: Whether to scrape the target site at all
            sleep: Backoff sleep, injectable for tests
        """
        self.settings = settings if settings is not None else get_settings()
        self.provider = provider
        self.store = store if store is not None else AnalysisStore()
        self.validator = validation_service if validation_service is not None else ValidationService()
        self.analysis_validator = AnalysisValidator(self.validator)
        self.partial_results = partial_results if partial_results is not None else PartialResultStore()
        self.extract_first_party = extract_first_party
        self._sleep = sleep

        if first_party_extractor is None and extract_first_party:
            first_party_extractor = FirstPartyExtractor(
                timeout_ms=self.settings.first_party_timeout_ms,
                max_bytes=self.settings.first_party_max_bytes,
                validation_service=self.validator,
            )
        self._first_party_extractor = first_party_extractor

        self._graph = self._build_graph()

    async def __aenter__(self) -> "AnalysisPipeline":
        if self._first_party_extractor is not None:
            await self._first_party_extractor.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _build_graph(self):
        """
        Build the LangGraph state machine.

        Graph structure:
            validate_request --(ok)--> extract_first_party -> call_provider
                    |                                             |
                 (error)                                    (ok)  |  (error)
                    |                                             v
                    |                        validate_analysis <--+--> handle_error
                    |                              |      \\
                    v                            (ok)   (error)
               handle_error                        v        \\
                                                persist --> handle_error
        """
        graph = StateGraph(AnalysisStateDict)

        graph.add_node("validate_request", self._validate_request_node)
        graph.add_node("extract_first_party", self._extract_first_party_node)
        graph.add_node("call_provider", self._call_provider_node)
        graph.add_node("validate_analysis", self._validate_analysis_node)
        graph.add_node("persist", self._persist_node)
        graph.add_node("handle_error", self._handle_error_node)

        graph.set_entry_point("validate_request")

        graph.add_conditional_edges(
            "validate_request",
            self._route_on_error,
            {"continue": "extract_first_party", "error": "handle_error"},
        )
        graph.add_edge("extract_first_party", "call_provider")
        graph.add_conditional_edges(
            "call_provider",
            self._route_on_error,
            {"continue": "validate_analysis", "error": "handle_error"},
        )
        graph.add_conditional_edges(
            "validate_analysis",
            self._route_on_error,
            {"continue": "persist", "error": "handle_error"},
        )
        graph.add_conditional_edges(
            "persist",
            self._route_on_error,
            {"continue": END, "error": "handle_error"},
        )
        graph.add_edge("handle_error", END)

        return graph.compile()

    @staticmethod
    def _route_on_error(state: AnalysisStateDict) -> Literal["continue", "error"]:
        return "error" if state.get("error") is not None else "continue"

    # =========================================================================
    # Node Implementations
    # =========================================================================

    @track_timing
    async def _validate_request_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        """Node 1: validate ``{url, goal?}`` and canonicalize the URL."""
        result = self.validator.check_analysis_request(state.get("request_body"))
        if not result.ok:
            logger.info("Rejected analysis request", reason=result.message)
            return {
                "error": result.to_error(value=state.get("request_body")),
                "errors": [f"validate_request: {result.message}"],
                "status": AnalysisStatus.FAILED.value,
            }

        request = result.value
        return {
            "url": request.url,
            "goal": request.goal,
            "status": AnalysisStatus.IN_PROGRESS.value,
        }

    @track_timing
    async def _extract_first_party_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        """Node 2: scrape the target site; failures degrade to no first-party data."""
        if not self.extract_first_party or self._first_party_extractor is None:
            return {"first_party": None}

        data = await self._first_party_extractor.extract_or_none(state["url"])
        return {
            "first_party": data.model_dump() if data else None,
            "metadata": {**state.get("metadata", {}), "first_party_available": data is not None},
        }

    async def _invoke_provider(self, url: str, goal: Optional[str], first_party: Optional[FirstPartyData]) -> Any:
        timeout_ms = self.settings.ai_timeout_ms
        try:
            raw = await asyncio.wait_for(self.provider(url, goal, first_party), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise AppError.timeout(f"AI provider did not respond within {timeout_ms}ms") from e

        if isinstance(raw, (str, bytes)):
            try:
                return json.loads(raw)
            except json.JSONDecodeError as e:
                raise ValidationError(
                    f"AI provider returned malformed JSON: {e}",
                    kind=InvalidKind.INVALID_FORMAT,
                    field="analysis",
                ) from e
        return raw

    @track_timing
    async def _call_provider_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        """Node 3: call the AI provider with retry and backoff."""
        first_party = FirstPartyData(**state["first_party"]) if state.get("first_party") else None

        result = await retry_with_backoff(
            lambda: self._invoke_provider(state["url"], state.get("goal"), first_party),
            max_attempts=self.settings.retry_max_attempts,
            delay_ms=self.settings.retry_delay_ms,
            backoff_multiplier=self.settings.retry_backoff_multiplier,
            max_delay_ms=self.settings.retry_max_delay_ms,
            cancel_event=state.get("cancel_event"),
            sleep=self._sleep,
        )

        if result.cancelled:
            error = AppError.internal(
                "Analysis cancelled before completion",
                details={"cancelled": True, "attempts": result.attempts},
            )
        elif not result.success:
            error = classify_error(result.error)
        else:
            logger.info("AI provider responded", attempts=result.attempts, total_time_ms=result.total_time_ms)
            return {"raw_analysis": result.data, "provider_attempts": result.attempts}

        return {
            "error": error,
            "errors": [f"call_provider: {error.message}"],
            "status": AnalysisStatus.FAILED.value,
            "provider_attempts": result.attempts,
        }

    @track_timing
    async def _validate_analysis_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        """Node 4: repair the payload and parse it as an enhanced analysis."""
        raw = state.get("raw_analysis")
        try:
            analysis = self.analysis_validator.parse_enhanced_analysis(
                raw, state["url"], state.get("first_party")
            )
        except ValidationError:
            await self.partial_results.save(state["run_id"], raw)
            raise

        return {"analysis": analysis.to_dict()}

    @track_timing
    async def _persist_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        """Node 5: hand the validated analysis to storage."""
        record = await self.store.create(
            user_id=state["user_id"],
            url=state["url"],
            goal=state.get("goal"),
            analysis=state["analysis"],
        )
        await self.partial_results.clear(state["run_id"])
        return {
            "record": record.model_dump(),
            "status": AnalysisStatus.COMPLETED.value,
        }

    @track_timing
    async def _handle_error_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        """Node 6: summarize the failure with user guidance."""
        error = state["error"]
        guidance = generate_error_guidance(error, context="analyzing the website")

        logger.warning(
            "Analysis failed",
            run_id=state.get("run_id"),
            code=error.code,
            error_type=error.error_type.value,
            retryable=error.retryable,
            errors=state.get("errors", []),
        )

        return {
            "status": AnalysisStatus.FAILED.value,
            "metadata": {
                **state.get("metadata", {}),
                "guidance": guidance.to_dict(),
                "failed_at": datetime.now(timezone.utc).isoformat(),
            },
        }

    # =========================================================================
    # Public API
    # =========================================================================

    async def run_state(
        self,
        body: Any,
        user_id: str = "anonymous",
        request_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AnalysisStateDict:
        """Execute the graph and return its final state without raising."""
        run_id = str(uuid4())
        initial_state: AnalysisStateDict = {
            "run_id": run_id,
            "request_id": request_id or run_id,
            "user_id": user_id,
            "request_body": body,
            "cancel_event": cancel_event,
            "first_party": None,
            "raw_analysis": None,
            "analysis": None,
            "record": None,
            "status": AnalysisStatus.PENDING.value,
            "error": None,
            "errors": [],
            "metadata": {"started_at": datetime.now(timezone.utc).isoformat()},
            "step_timings": {},
            "provider_attempts": 0,
        }

        with analysis_context(run_id=run_id, user_id=user_id):
            logger.info("Starting analysis run")
            return await self._graph.ainvoke(initial_state)

    async def run(
        self,
        body: Any,
        user_id: str = "anonymous",
        request_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AnalysisRecord:
        """
        Execute the complete pipeline for one request.

        Args:
            body: Untrusted request body ``{url, goal?}``
            user_id: Owner of the stored analysis
            request_id: Correlation id for logs
            cancel_event: Set to abandon the provider retry loop

        Returns:
            The stored ``AnalysisRecord``

        Raises:
            AppError: The classified failure.
        """
        final_state = await self.run_state(body, user_id, request_id, cancel_event)

        error = final_state.get("error")
        if error is not None:
            raise error

        logger.info(
            "Analysis run completed",
            run_id=final_state["run_id"],
            duration_ms=sum(final_state.get("step_timings", {}).values()),
        )
        return AnalysisRecord.model_validate(final_state["record"])

    async def handle_request(
        self,
        body: Any,
        user_id: str = "anonymous",
        request_id_header: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> tuple[int, dict[str, Any]]:
        """
        Run the pipeline and produce ``(status, body)`` for an HTTP layer.

        Success is ``201`` with the stored record; failures use the
        ``{error, code, requestId, details?}`` body.
        """
        request_id = resolve_request_id(request_id_header)
        with analysis_context(request_id=request_id):
            try:
                record = await self.run(body, user_id, request_id, cancel_event)
            except Exception as e:
                return build_error_response(e, request_id, production=self.settings.is_production)
            return 201, record.to_dict()

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Close service connections."""
        if self._first_party_extractor is not None:
            await self._first_party_extractor.disconnect()


# =============================================================================
# Convenience Functions
# =============================================================================

async def analyze_url(
    url: str,
    provider: AnalysisProvider,
    goal: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> AnalysisRecord:
    """
    Convenience function to analyze one URL.

    Example:
        >>> record = await analyze_url("https://example.com", provider=call_gemini)
    """
    body = {"url": url} if goal is None else {"url": url, "goal": goal}
    async with AnalysisPipeline(provider=provider, settings=settings) as pipeline:
        return await pipeline.run(body)


__all__ = [
    "AnalysisPipeline",
    "AnalysisProvider",
    "AnalysisStateDict",
    "AnalysisStatus",
    "analyze_url",
]
