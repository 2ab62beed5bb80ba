"""
Collaborators the iteration loop depends on.

`Analyzer` and `Generator` are protocols implemented outside the engine.
`LLMCall` binds a router to a candidate set and strategy so a generator
can reach the backends without knowing how they are chosen.
`LLMDocumentGenerator` is the default generator: it asks a backend for
the whole document as a JSON object.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from docforge.errors import GenerationError
from docforge.logging_config import logger
from docforge.models import AnalysisResult, BackendResponse, ChatMessage, ProviderConfig, TaskType, UserRequest
from docforge.provider.base import MessageLike
from docforge.routing.router import ProviderRouter

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

SYSTEM_PROMPT = (
    "You write product requirement documents. Reply with a single JSON object "
    "using the sections metadata, product_overview, functional_requirements, "
    "technical_specifications and, where relevant, user_interface, data_model, "
    "api_specification, security_requirements and testing_strategy. "
    "Do not add prose outside the JSON object."
)


@runtime_checkable
class Analyzer(Protocol):
    async def analyze(self, request: UserRequest) -> AnalysisResult:
        ...


@runtime_checkable
class Generator(Protocol):
    async def generate(
        self,
        request: UserRequest,
        analysis: AnalysisResult,
        *,
        previous: Optional[Any],
        feedback: Sequence[str],
        llm: "LLMCall",
    ) -> Any:
        ...


class StaticAnalyzer:
    """Returns the same analysis for every request."""

    def __init__(self, result: Optional[AnalysisResult] = None) -> None:
        self.result = result or AnalysisResult()

    async def analyze(self, request: UserRequest) -> AnalysisResult:
        return self.result.model_copy(deep=True)


class LLMCall:
    def __init__(
        self,
        router: ProviderRouter,
        candidates: Sequence[ProviderConfig],
        strategy: Any = None,
        *,
        task_type: TaskType = TaskType.DOCUMENT_GENERATION,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.router = router
        self.candidates = list(candidates)
        self.strategy = strategy
        self.task_type = task_type
        self.options = options
        self.use_cache = True
        self.responses: List[BackendResponse] = []

    @property
    def last_response(self) -> Optional[BackendResponse]:
        return self.responses[-1] if self.responses else None

    async def __call__(
        self,
        messages: Sequence[MessageLike],
        *,
        task_type: Optional[TaskType] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> BackendResponse:
        response = await self.router.dispatch(
            messages,
            task_type or self.task_type,
            self.strategy,
            self.candidates,
            options if options is not None else self.options,
            use_cache=self.use_cache,
        )
        self.responses.append(response)
        return response


def _dump(value: Any) -> str:
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def build_generation_prompt(request: UserRequest, analysis: AnalysisResult) -> str:
    lines = [
        "Write a complete requirements document for the following request.",
        "",
        f"Request:\n{request.raw_input}",
        "",
        f"Application type: {analysis.app_type}",
        f"Complexity: {analysis.complexity.value}",
    ]
    if analysis.features:
        lines.append("Detected features: " + ", ".join(analysis.features))
    if analysis.suggested_stack:
        lines.append(f"Suggested stack:\n{_dump(analysis.suggested_stack)}")
    return "\n".join(lines)


def build_refinement_prompt(document: Any, feedback: Sequence[str]) -> str:
    prompt = "Please refine the following document based on the feedback provided.\n\n"
    prompt += f"Current document:\n{_dump(document)}\n\n"
    if feedback:
        prompt += "Feedback to address:\n"
        prompt += "".join(f"{idx}. {item}\n" for idx, item in enumerate(feedback, start=1))
        prompt += "\n"
    prompt += (
        "Return the improved document as one JSON object. Keep sections that need "
        "no change and address every feedback item."
    )
    return prompt


def parse_document(content: str, previous: Optional[Any] = None) -> Dict[str, Any]:
    """
    Extract a JSON object from a backend reply and merge it over the
    previous document. Accepts bare JSON, fenced code blocks, or JSON
    embedded in surrounding text.
    """
    text = (content or "").strip()
    candidates = [text]
    candidates.extend(match.strip() for match in _FENCED_BLOCK.findall(text))
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            base = dict(previous) if isinstance(previous, dict) else {}
            base.update(parsed)
            return base

    raise GenerationError(
        "Backend response did not contain a JSON document",
        details={"content_preview": text[:200]},
    )


class LLMDocumentGenerator:
    def __init__(self, system_prompt: str = SYSTEM_PROMPT) -> None:
        self.system_prompt = system_prompt

    async def generate(
        self,
        request: UserRequest,
        analysis: AnalysisResult,
        *,
        previous: Optional[Any],
        feedback: Sequence[str],
        llm: LLMCall,
    ) -> Dict[str, Any]:
        if previous is None:
            prompt = build_generation_prompt(request, analysis)
        else:
            prompt = build_refinement_prompt(previous, feedback)
        messages = [
            ChatMessage(role="system", content=self.system_prompt),
            ChatMessage(role="user", content=prompt),
        ]
        response = await llm(messages, task_type=TaskType.DOCUMENT_GENERATION)
        logger.debug(
            "generator: %s answered (%d chars, cache_hit=%s)",
            response.provider_id,
            len(response.content),
            response.cache_hit,
        )
        return parse_document(response.content, previous)


__all__ = [
    "Analyzer",
    "Generator",
    "LLMCall",
    "LLMDocumentGenerator",
    "SYSTEM_PROMPT",
    "StaticAnalyzer",
    "build_generation_prompt",
    "build_refinement_prompt",
    "parse_document",
]
