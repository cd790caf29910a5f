from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError, InvalidPolicyError
from .events import ErrorEvent, encode_sse
from .logging_utils import log_exception
from .orchestrator import GenerationOrchestrator, GenerationTask
from .references import ReferenceLibrary, load_reference_library
from .schemas import GenerateRequest
from .settings import GenerationSettings
from .validator import validate_pattern_code

_LOGGER = logging.getLogger("audial.server")
_SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


class ValidateRequest(BaseModel):
    code: str
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


def _load_references() -> ReferenceLibrary | None:
    try:
        return load_reference_library()
    except Exception as exc:
        _LOGGER.warning("Reference data unavailable; continuing without it: %s", exc)
        return None


async def _event_stream(task: GenerationTask) -> AsyncIterator[str]:
    try:
        async for event in task.events():
            yield encode_sse(event)
    except Exception as exc:
        _LOGGER.warning("Generation stream crashed: %s", exc, exc_info=True)
        log_exception("generation stream", exc)
        yield encode_sse(ErrorEvent.of("stream error"))


def create_app(
    settings: GenerationSettings | None = None,
    *,
    orchestrator: GenerationOrchestrator | None = None,
) -> FastAPI:
    if orchestrator is None:
        orchestrator = GenerationOrchestrator(
            settings or GenerationSettings.from_env(),
            references=_load_references(),
        )
    app = FastAPI(title="audial")
    app.state.orchestrator = orchestrator

    @app.post("/api/generate")
    async def generate(request: GenerateRequest) -> Response:
        try:
            task = orchestrator.start(request)
        except ConfigurationError as exc:
            _LOGGER.info("Rejected generation request: %s", exc)
            return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
        return StreamingResponse(
            _event_stream(task),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @app.post("/api/validate")
    async def validate(body: ValidateRequest) -> Response:
        try:
            result = validate_pattern_code(body.code, body.config)
        except InvalidPolicyError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        return JSONResponse(result.model_dump(mode="json"))

    return app
