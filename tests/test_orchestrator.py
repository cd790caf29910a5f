from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from audial.errors import (
    CredentialMismatchError,
    ExtractionError,
    LLMInferenceError,
    MissingCredentialError,
    MissingPromptError,
    ProviderAuthError,
)
from audial.events import ClearEvent, DeltaEvent, DoneEvent, ErrorEvent, StatusEvent, StreamEvent
from audial.orchestrator import (
    RETRY_STATUS,
    GenerationOrchestrator,
    GenerationState,
    GenerationTask,
    PreparedRequest,
)
from audial.providers.routing import AUTH_ERROR_MESSAGE
from audial.schemas import GenerateRequest
from audial.settings import GenerationSettings

from .patterns import SHORT_CODE, VALID_CODE, fenced

_KEY = "sk-ant-test"
_BROKEN_CODE = VALID_CODE.replace("setcpm(90)\n", "")


class _ScriptedStreamer:
    """Replays one scripted completion per call; exceptions are raised mid-stream."""

    def __init__(self, *scripts: list[str | Exception]) -> None:
        self._scripts = list(scripts)
        self.prompts: list[tuple[str, str]] = []
        self.closed = 0

    async def stream(self, *, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        self.prompts.append((system_prompt, user_prompt))
        script = self._scripts.pop(0)
        try:
            for item in script:
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed += 1


def _orchestrator(streamer: _ScriptedStreamer) -> tuple[GenerationOrchestrator, list[PreparedRequest]]:
    prepared: list[PreparedRequest] = []

    def factory(request: PreparedRequest) -> _ScriptedStreamer:
        prepared.append(request)
        return streamer

    return GenerationOrchestrator(GenerationSettings(), streamer_factory=factory), prepared


async def _drain(task: GenerationTask) -> list[StreamEvent]:
    return [event async for event in task.events()]


def _deltas(events: list[StreamEvent]) -> str:
    return "".join(event.delta.text for event in events if isinstance(event, DeltaEvent))


@pytest.mark.asyncio
async def test_valid_first_attempt_is_accepted() -> None:
    streamer = _ScriptedStreamer(["Here you go:\n```javascript\n", VALID_CODE, "\n```"])
    orchestrator, prepared = _orchestrator(streamer)

    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))
    events = await _drain(task)

    assert [type(event) for event in events] == [DeltaEvent, DeltaEvent, DeltaEvent, DoneEvent]
    assert task.state is GenerationState.ACCEPTED
    assert task.outcome is not None
    assert task.outcome.code == VALID_CODE
    assert task.error is None
    assert len(streamer.prompts) == 1
    assert prepared[0].model == "claude-sonnet-4-20250514"
    assert prepared[0].provider == "anthropic"
    assert "warm dub" in streamer.prompts[0][1]


@pytest.mark.asyncio
async def test_failed_validation_retries_once_without_revalidating() -> None:
    streamer = _ScriptedStreamer([fenced(_BROKEN_CODE)], [fenced(SHORT_CODE)])
    orchestrator, _ = _orchestrator(streamer)

    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))
    events = await _drain(task)

    assert [type(event) for event in events] == [
        DeltaEvent,
        StatusEvent,
        ClearEvent,
        DeltaEvent,
        DoneEvent,
    ]
    assert events[1] == StatusEvent(status=RETRY_STATUS)
    assert task.state is GenerationState.DONE
    assert task.outcome is not None
    assert task.outcome.code == SHORT_CODE

    first, second = task.attempts
    assert first.validation is not None
    assert first.validation.issues == ("missing setcpm() - set tempo at the start",)
    assert second.number == 2
    assert second.validation is None

    retry_prompt = streamer.prompts[1][1]
    assert "warm dub" in retry_prompt
    assert "- missing setcpm() - set tempo at the start" in retry_prompt
    assert streamer.closed == 2


@pytest.mark.asyncio
async def test_retry_in_edit_mode_keeps_current_code() -> None:
    streamer = _ScriptedStreamer([fenced(_BROKEN_CODE)], [fenced(VALID_CODE)])
    orchestrator, _ = _orchestrator(streamer)

    request = GenerateRequest(
        prompt="add a bassline",
        mode="edit",
        currentCode=SHORT_CODE,
        apiKey=_KEY,
    )
    task = orchestrator.start(request)
    await _drain(task)

    first_prompt = streamer.prompts[0][1]
    retry_prompt = streamer.prompts[1][1]
    assert first_prompt.startswith("you are editing an existing strudel composition")
    assert retry_prompt.startswith("you are editing an existing strudel composition")
    assert SHORT_CODE in retry_prompt
    assert "your previous attempt had issues:" in retry_prompt


@pytest.mark.asyncio
async def test_extraction_failure_is_terminal() -> None:
    streamer = _ScriptedStreamer(["Sorry, ", "I can only describe music."])
    orchestrator, _ = _orchestrator(streamer)

    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))
    events = await _drain(task)

    assert events[-1] == ErrorEvent.of("no code block found in response")
    assert not any(isinstance(event, (StatusEvent, ClearEvent)) for event in events)
    assert task.state is GenerationState.FAILED
    assert isinstance(task.error, ExtractionError)
    assert task.error.raw_response == "Sorry, I can only describe music."
    assert len(streamer.prompts) == 1


@pytest.mark.asyncio
async def test_multiple_blocks_on_first_attempt_fail() -> None:
    streamer = _ScriptedStreamer([fenced(VALID_CODE) + "\n" + fenced(VALID_CODE)])
    orchestrator, _ = _orchestrator(streamer)

    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))
    events = await _drain(task)

    assert events[-1] == ErrorEvent.of("found 2 code blocks, expected exactly 1")
    assert task.state is GenerationState.FAILED


@pytest.mark.asyncio
async def test_unparseable_second_attempt_fails() -> None:
    streamer = _ScriptedStreamer([fenced(_BROKEN_CODE)], [fenced('$: s("bd")')])
    orchestrator, _ = _orchestrator(streamer)

    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))
    events = await _drain(task)

    assert isinstance(events[-1], ErrorEvent)
    assert events[-1].error.message.startswith("code must start with setcpm(...)")
    assert task.state is GenerationState.FAILED
    assert task.outcome is None


@pytest.mark.asyncio
async def test_transport_errors_are_classified() -> None:
    streamer = _ScriptedStreamer(["```javascript\n", RuntimeError("401 Unauthorized")])
    orchestrator, _ = _orchestrator(streamer)

    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))
    events = await _drain(task)

    assert events == [DeltaEvent.of("```javascript\n"), ErrorEvent.of(AUTH_ERROR_MESSAGE)]
    assert task.state is GenerationState.FAILED
    assert isinstance(task.error, ProviderAuthError)
    assert streamer.closed == 1


@pytest.mark.asyncio
async def test_transport_error_on_retry_attempt() -> None:
    streamer = _ScriptedStreamer([fenced(_BROKEN_CODE)], [TimeoutError("read timed out")])
    orchestrator, _ = _orchestrator(streamer)

    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))

    with pytest.raises(LLMInferenceError, match="read timed out"):
        await task.run()
    assert task.state is GenerationState.FAILED


@pytest.mark.asyncio
async def test_run_returns_outcome_and_task_runs_once() -> None:
    streamer = _ScriptedStreamer([fenced(VALID_CODE)])
    orchestrator, _ = _orchestrator(streamer)
    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))

    outcome = await task.run()

    assert outcome.code == VALID_CODE
    assert task.finished
    with pytest.raises(RuntimeError):
        await task.run()


@pytest.mark.asyncio
async def test_closing_events_closes_provider_stream() -> None:
    streamer = _ScriptedStreamer(["one", "two", "three"])
    orchestrator, _ = _orchestrator(streamer)
    task = orchestrator.start(GenerateRequest(prompt="warm dub", apiKey=_KEY))

    events = task.events()
    assert await events.__anext__() == DeltaEvent.of("one")
    await events.aclose()

    assert streamer.closed == 1
    assert task.state is GenerationState.STREAMING


class TestPrepare:
    def test_missing_prompt(self) -> None:
        orchestrator, _ = _orchestrator(_ScriptedStreamer())

        with pytest.raises(MissingPromptError, match="missing prompt"):
            orchestrator.prepare(GenerateRequest(prompt="   ", apiKey=_KEY))

    def test_null_prompt_is_missing(self) -> None:
        orchestrator, _ = _orchestrator(_ScriptedStreamer())
        request = GenerateRequest.model_validate({"prompt": None, "apiKey": _KEY})

        with pytest.raises(MissingPromptError, match="missing prompt"):
            orchestrator.prepare(request)

    def test_system_prompt_uses_generation_policy(self) -> None:
        orchestrator = GenerationOrchestrator(GenerationSettings.from_env())

        prepared = orchestrator.prepare(GenerateRequest(prompt="warm dub", apiKey=_KEY))

        assert "at least 1, at most 6." in prepared.system_prompt
        assert "At most 4 randomness operations" in prepared.system_prompt

    def test_missing_credential(self) -> None:
        orchestrator, _ = _orchestrator(_ScriptedStreamer())

        with pytest.raises(MissingCredentialError):
            orchestrator.prepare(GenerateRequest(prompt="warm dub"))

    def test_credential_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        orchestrator, _ = _orchestrator(_ScriptedStreamer())

        prepared = orchestrator.prepare(GenerateRequest(prompt="warm dub"))

        assert prepared.api_key == "sk-ant-env"
        assert "sk-ant-env" not in repr(prepared)

    def test_key_provider_mismatch(self) -> None:
        orchestrator, _ = _orchestrator(_ScriptedStreamer())

        with pytest.raises(CredentialMismatchError):
            orchestrator.prepare(GenerateRequest(prompt="warm dub", model="gpt-4o", apiKey=_KEY))

    def test_edit_without_code_is_a_new_composition(self) -> None:
        orchestrator, _ = _orchestrator(_ScriptedStreamer())

        prepared = orchestrator.prepare(
            GenerateRequest(prompt="warm dub", mode="edit", currentCode="  ", apiKey=_KEY)
        )

        assert prepared.user_prompt.startswith("create a strudel composition")
