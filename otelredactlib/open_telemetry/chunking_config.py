"""Configuration model for chunking oversized telemetry fields."""

import os
from dataclasses import dataclass, field
from typing import ClassVar

from otelredactlib.open_telemetry.chunking import (
    DEFAULT_CHUNK_EVENT_NAME,
    DEFAULT_MAX_CHUNK_CHARS,
)

# Environment variable names
ENV_VAR_ENABLED: str = "OTEL_CHUNKING_ENABLED"
ENV_VAR_MAX_CHARS: str = "OTEL_CHUNKING_MAX_CHARS"
ENV_VAR_KEEP_ORIGINAL_KEY: str = "OTEL_CHUNKING_KEEP_ORIGINAL_KEY"
ENV_VAR_EVENT_NAME: str = "OTEL_CHUNKING_EVENT_NAME"

_TRUTHY_VALUES: frozenset[str] = frozenset(("true", "1", "yes", "on"))


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUTHY_VALUES


@dataclass(frozen=True)
class ChunkingConfig:
    """
    Immutable configuration for chunking behavior.

    Loaded from environment variables with sensible defaults.
    """

    enabled: bool = True
    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    keep_original_key: bool = False
    event_name: str = DEFAULT_CHUNK_EVENT_NAME
    errors: list[str] = field(default_factory=list, compare=False)

    DEFAULT_ENABLED: ClassVar[bool] = True

    @classmethod
    def from_environment(cls) -> "ChunkingConfig":
        """
        Load configuration from environment variables.

        Environment Variables:
            OTEL_CHUNKING_ENABLED: Enable/disable chunking
            OTEL_CHUNKING_MAX_CHARS: Maximum characters per field
            OTEL_CHUNKING_KEEP_ORIGINAL_KEY: Keep a truncated preview under the original key
            OTEL_CHUNKING_EVENT_NAME: Suffix of synthetic chunk event names
        """
        errors: list[str] = []
        enabled = _parse_bool(os.environ.get(ENV_VAR_ENABLED, str(cls.DEFAULT_ENABLED)))

        max_chunk_chars = DEFAULT_MAX_CHUNK_CHARS
        max_chars_str = os.environ.get(ENV_VAR_MAX_CHARS, "")
        if max_chars_str:
            try:
                max_chunk_chars = int(max_chars_str)
            except ValueError:
                errors.append(f"{ENV_VAR_MAX_CHARS} must be an integer, got {max_chars_str!r}")

        keep_original_key = _parse_bool(os.environ.get(ENV_VAR_KEEP_ORIGINAL_KEY, "false"))
        event_name = os.environ.get(ENV_VAR_EVENT_NAME, "").strip() or DEFAULT_CHUNK_EVENT_NAME

        return cls(
            enabled=enabled,
            max_chunk_chars=max_chunk_chars,
            keep_original_key=keep_original_key,
            event_name=event_name,
            errors=errors,
        )

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of validation errors.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors: list[str] = list(self.errors)
        if self.max_chunk_chars <= 0:
            errors.append(f"{ENV_VAR_MAX_CHARS} must be positive")
        if not self.event_name:
            errors.append(f"{ENV_VAR_EVENT_NAME} must not be empty")
        return errors
