from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidPolicyError

_LOGGER = logging.getLogger("audial.policy")

# Limits that are deliberately not part of the policy surface.
MIN_LINES = 5
MAX_GAIN = 2.0
MAX_FAST_FACTOR = 64


class ValidationPolicy(BaseModel):
    """Numeric and boolean limits applied by the content validator.

    Field names are snake_case; the camelCase aliases match the external
    configuration surface (``maxVoices``, ``requireSetcpm``...). Either
    spelling is accepted on input.
    """

    max_voices: int = Field(default=8, ge=0, alias="maxVoices")
    max_lines: int = Field(default=250, ge=0, alias="maxLines")
    max_random_usage: int = Field(default=15, ge=0, alias="maxRandomUsage")
    max_effects_per_voice: int = Field(default=8, ge=0, alias="maxEffectsPerVoice")
    require_setcpm: bool = Field(default=True, alias="requireSetcpm")
    reject_localhost: bool = Field(default=True, alias="rejectLocalhost")
    max_delay_feedback: float = Field(default=0.7, ge=0.0, alias="maxDelayFeedback")
    max_room_size: float = Field(default=0.95, ge=0.0, alias="maxRoomSize")

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    def merged(self, overrides: Mapping[str, Any] | None) -> "ValidationPolicy":
        """Return a new policy with ``overrides`` applied on top of this one."""
        if not overrides:
            return self
        base = self.model_dump(by_alias=True)
        for key, value in overrides.items():
            if value is None:
                continue
            field = type(self).model_fields.get(key)
            base[field.alias if field is not None and field.alias else key] = value
        try:
            return type(self).model_validate(base)
        except ValidationError as exc:
            _LOGGER.debug("Rejected policy overrides %r: %s", dict(overrides), exc)
            raise InvalidPolicyError(f"invalid validation policy: {exc}") from exc


DEFAULT_POLICY = ValidationPolicy()


def resolve_policy(
    overrides: ValidationPolicy | Mapping[str, Any] | None = None,
) -> ValidationPolicy:
    if overrides is None:
        return DEFAULT_POLICY
    if isinstance(overrides, ValidationPolicy):
        return overrides
    return DEFAULT_POLICY.merged(overrides)


class ValidationResult(BaseModel):
    valid: bool
    issues: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_consistency(self) -> "ValidationResult":
        if self.valid == bool(self.issues):
            raise ValueError("valid must be True exactly when there are no issues")
        return self

    @classmethod
    def from_issues(cls, issues: list[str] | tuple[str, ...]) -> "ValidationResult":
        return cls(valid=not issues, issues=tuple(issues))
