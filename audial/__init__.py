from __future__ import annotations

from .errors import (
    AudialError,
    ConfigurationError,
    CredentialMismatchError,
    ExtractionError,
    InvalidPolicyError,
    LLMInferenceError,
    MissingCredentialError,
    MissingPromptError,
)
from .events import (
    ClearEvent,
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    StatusEvent,
    StreamAccumulator,
    StreamEvent,
    encode_sse,
)
from .extract import (
    ParseResult,
    extract_artifact,
    is_code_unchanged,
    normalize_code,
    parse_output,
)
from .logging_utils import configure_logging as _configure_logging
from .orchestrator import GenerationOrchestrator, GenerationState, GenerationTask
from .policy import DEFAULT_POLICY, ValidationPolicy, ValidationResult, resolve_policy
from .prompts import build_edit_prompt, build_new_prompt, build_retry_prompt, build_system_prompt
from .runtime import RuntimePatternError, format_runtime_error
from .schemas import ChatMessage, GenerateRequest
from .settings import GenerationSettings
from .validator import check_structure, validate_pattern_code

__all__ = [
    "DEFAULT_POLICY",
    "AudialError",
    "ChatMessage",
    "ClearEvent",
    "ConfigurationError",
    "CredentialMismatchError",
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "ExtractionError",
    "GenerateRequest",
    "GenerationOrchestrator",
    "GenerationSettings",
    "GenerationState",
    "GenerationTask",
    "InvalidPolicyError",
    "LLMInferenceError",
    "MissingCredentialError",
    "MissingPromptError",
    "ParseResult",
    "RuntimePatternError",
    "StatusEvent",
    "StreamAccumulator",
    "StreamEvent",
    "ValidationPolicy",
    "ValidationResult",
    "build_edit_prompt",
    "build_new_prompt",
    "build_retry_prompt",
    "build_system_prompt",
    "check_structure",
    "encode_sse",
    "extract_artifact",
    "format_runtime_error",
    "is_code_unchanged",
    "normalize_code",
    "parse_output",
    "resolve_policy",
    "validate_pattern_code",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
