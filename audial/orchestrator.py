"""Two-attempt generation: stream, extract, validate, and retry at most once.

States::

    IDLE -> STREAMING(1) -> VALIDATING -> ACCEPTED
                                       -> RETRYING -> STREAMING(2) -> DONE
    any streaming stage -> FAILED

The second attempt is never validated: its output is accepted once it can be
extracted. There is no third attempt.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from .errors import AudialError, ExtractionError, MissingPromptError
from .events import ClearEvent, DeltaEvent, DoneEvent, ErrorEvent, StatusEvent, StreamEvent
from .extract import ParseResult, extract_artifact, parse_output
from .policy import ValidationPolicy, ValidationResult
from .prompts import build_edit_prompt, build_new_prompt, build_retry_prompt, build_system_prompt
from .providers.litellm import CompletionStreamer, LiteLLMStreamer
from .providers.routing import Provider, classify_provider_error, resolve_api_key, resolve_provider
from .references import ReferenceLibrary
from .schemas import GenerateRequest
from .settings import GenerationSettings
from .validator import validate_pattern_code

_LOGGER = logging.getLogger("audial.orchestrator")

RETRY_STATUS = "simplifying..."
MAX_ATTEMPTS = 2


class GenerationState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    VALIDATING = "validating"
    RETRYING = "retrying"
    ACCEPTED = "accepted"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: Mapping[GenerationState, frozenset[GenerationState]] = MappingProxyType(
    {
        GenerationState.IDLE: frozenset({GenerationState.STREAMING}),
        GenerationState.STREAMING: frozenset(
            {GenerationState.VALIDATING, GenerationState.DONE, GenerationState.FAILED}
        ),
        GenerationState.VALIDATING: frozenset(
            {GenerationState.ACCEPTED, GenerationState.RETRYING, GenerationState.FAILED}
        ),
        GenerationState.RETRYING: frozenset({GenerationState.STREAMING}),
        GenerationState.ACCEPTED: frozenset(),
        GenerationState.DONE: frozenset(),
        GenerationState.FAILED: frozenset(),
    }
)
TERMINAL_STATES = frozenset(
    {GenerationState.ACCEPTED, GenerationState.DONE, GenerationState.FAILED}
)


class PreparedRequest(BaseModel):
    """A request that passed configuration checks and is ready to stream."""

    request: GenerateRequest
    model: str
    provider: Provider
    api_key: str = Field(repr=False)
    system_prompt: str
    user_prompt: str

    model_config = ConfigDict(frozen=True, extra="forbid")


StreamerFactory = Callable[[PreparedRequest], CompletionStreamer]


@dataclass
class GenerationAttempt:
    number: int
    user_prompt: str
    chunks: list[str] = field(default_factory=list)
    validation: ValidationResult | None = None

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class GenerationTask:
    """Drives one client request through the generation state machine.

    Consume :meth:`events` exactly once; every yielded event is meant to be
    forwarded to the client as-is.
    """

    def __init__(
        self,
        prepared: PreparedRequest,
        streamer: CompletionStreamer,
        *,
        policy: ValidationPolicy,
        references: ReferenceLibrary | None = None,
    ) -> None:
        self._prepared = prepared
        self._streamer = streamer
        self._policy = policy
        self._references = references
        self.state = GenerationState.IDLE
        self.attempts: list[GenerationAttempt] = []
        self.outcome: ParseResult | None = None
        self.error: AudialError | None = None

    @property
    def prepared(self) -> PreparedRequest:
        return self._prepared

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, target: GenerationState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid generation transition {self.state.value} -> {target.value}")
        _LOGGER.debug("Generation state %s -> %s", self.state.value, target.value)
        self.state = target

    def _fail(self, error: AudialError) -> ErrorEvent:
        self.error = error
        self._transition(GenerationState.FAILED)
        return ErrorEvent.of(str(error))

    async def _stream_attempt(self, attempt: GenerationAttempt) -> AsyncIterator[StreamEvent]:
        stream = self._streamer.stream(
            system_prompt=self._prepared.system_prompt,
            user_prompt=attempt.user_prompt,
        )
        # Closing the provider stream also covers client disconnects.
        async with aclosing(stream):
            async for text in stream:
                attempt.chunks.append(text)
                yield DeltaEvent.of(text)

    def _retry_user_prompt(self, issues: tuple[str, ...]) -> str:
        request = self._prepared.request
        retry_prompt = build_retry_prompt(request.prompt or "", issues)
        if request.effective_mode == "edit" and request.current_code:
            return build_edit_prompt(request.current_code, retry_prompt)
        return build_new_prompt(retry_prompt, self._references)

    def _accept(self, attempt: GenerationAttempt, target: GenerationState) -> StreamEvent:
        outcome = parse_output(attempt.text)
        if not outcome.success:
            _LOGGER.info("Attempt %d could not be parsed: %s", attempt.number, outcome.error)
            return self._fail(
                ExtractionError(outcome.error or "unparseable response", attempt.text)
            )
        self.outcome = outcome
        self._transition(target)
        return DoneEvent()

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self.state is not GenerationState.IDLE:
            raise RuntimeError("a generation task can only be run once")

        first = GenerationAttempt(number=1, user_prompt=self._prepared.user_prompt)
        self.attempts.append(first)
        self._transition(GenerationState.STREAMING)
        try:
            async with aclosing(self._stream_attempt(first)) as deltas:
                async for event in deltas:
                    yield event
        except Exception as exc:
            _LOGGER.warning("Generation attempt 1 failed: %s", exc, exc_info=True)
            yield self._fail(classify_provider_error(exc))
            return

        self._transition(GenerationState.VALIDATING)
        extracted = extract_artifact(first.text)
        if not extracted.success or extracted.code is None:
            # Extraction failures are terminal; only validation failures retry.
            yield self._fail(ExtractionError(extracted.error or "no code", first.text))
            return

        first.validation = validate_pattern_code(extracted.code, self._policy)
        if first.validation.valid:
            yield self._accept(first, GenerationState.ACCEPTED)
            return

        _LOGGER.info(
            "Attempt 1 failed validation with %d issue(s); retrying once.",
            len(first.validation.issues),
        )
        self._transition(GenerationState.RETRYING)
        yield StatusEvent(status=RETRY_STATUS)
        second = GenerationAttempt(
            number=MAX_ATTEMPTS,
            user_prompt=self._retry_user_prompt(first.validation.issues),
        )
        self.attempts.append(second)
        yield ClearEvent()

        self._transition(GenerationState.STREAMING)
        try:
            async with aclosing(self._stream_attempt(second)) as deltas:
                async for event in deltas:
                    yield event
        except Exception as exc:
            _LOGGER.warning("Generation attempt 2 failed: %s", exc, exc_info=True)
            yield self._fail(classify_provider_error(exc))
            return

        yield self._accept(second, GenerationState.DONE)

    async def run(self) -> ParseResult:
        """Drain the event stream and return the accepted artifact."""
        async for _ in self.events():
            pass
        if self.error is not None:
            raise self.error
        assert self.outcome is not None
        return self.outcome


def _default_streamer_factory(settings: GenerationSettings) -> StreamerFactory:
    def factory(prepared: PreparedRequest) -> CompletionStreamer:
        return LiteLLMStreamer(
            prepared.model,
            api_key=prepared.api_key,
            max_tokens=settings.max_tokens,
            provider=prepared.provider,
        )

    return factory


class GenerationOrchestrator:
    """Validates inbound requests and creates one :class:`GenerationTask` per request."""

    def __init__(
        self,
        settings: GenerationSettings | None = None,
        *,
        streamer_factory: StreamerFactory | None = None,
        references: ReferenceLibrary | None = None,
    ) -> None:
        self._settings = settings or GenerationSettings()
        self._streamer_factory = streamer_factory or _default_streamer_factory(self._settings)
        self._references = references

    @property
    def settings(self) -> GenerationSettings:
        return self._settings

    def prepare(self, request: GenerateRequest) -> PreparedRequest:
        """Run the configuration checks that must pass before any streaming."""
        model = request.model or self._settings.default_model
        provider = resolve_provider(model)
        api_key = resolve_api_key(provider, request.api_key)
        prompt = (request.prompt or "").strip()
        if not prompt:
            raise MissingPromptError("missing prompt")

        if request.effective_mode == "edit" and request.current_code:
            user_prompt = build_edit_prompt(
                request.current_code,
                prompt,
                request.chat_history,
                history_limit=self._settings.chat_history_limit,
            )
        else:
            user_prompt = build_new_prompt(prompt, self._references)

        return PreparedRequest(
            request=request,
            model=model,
            provider=provider,
            api_key=api_key,
            system_prompt=build_system_prompt(self._settings.policy),
            user_prompt=user_prompt,
        )

    def start(self, request: GenerateRequest) -> GenerationTask:
        prepared = self.prepare(request)
        _LOGGER.info("Starting %s generation with %s.", request.effective_mode, prepared.model)
        return GenerationTask(
            prepared,
            self._streamer_factory(prepared),
            policy=self._settings.policy,
            references=self._references,
        )
