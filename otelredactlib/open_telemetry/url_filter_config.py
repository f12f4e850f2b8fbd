"""Configuration model for URL filtering of spans and log records.

This module provides immutable configuration for URL filtering behavior,
loaded from environment variables with validation.
"""

import os
import re
from dataclasses import dataclass, field
from typing import ClassVar, Optional

from otelredactlib.open_telemetry.url_filter_engine import DEFAULT_MAX_CACHE_SIZE
from otelredactlib.open_telemetry.url_filter_rule import (
    UrlFilterRuleSpec,
    create_url_filter_rule,
)

# Environment variable names
ENV_VAR_ENABLED: str = "OTEL_URL_FILTER_ENABLED"
ENV_VAR_RULES: str = "OTEL_URL_FILTER_RULES"
ENV_VAR_TRAVERSAL_KEYS: str = "OTEL_URL_FILTER_TRAVERSAL_KEYS"
ENV_VAR_CACHE_SIZE: str = "OTEL_URL_FILTER_CACHE_SIZE"
ENV_VAR_VERBOSITY: str = "OTEL_URL_FILTER_VERBOSITY"

# Boolean parsing
_TRUTHY_VALUES: frozenset[str] = frozenset(("true", "1", "yes", "on"))


def _parse_bool(value: str) -> bool:
    """
    Parse boolean value from string.

    Args:
        value: String value to parse

    Returns:
        True if value is in truthy set (case-insensitive), False otherwise
    """
    return value.strip().lower() in _TRUTHY_VALUES


def _parse_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_rule_spec(text: str) -> UrlFilterRuleSpec:
    """
    Turn one configured rule into a rule spec.

    Entries written as ``/pattern/`` are regular expressions; anything else
    is a substring.

    Raises:
        re.error: If a regex entry does not compile
    """
    if len(text) > 2 and text.startswith("/") and text.endswith("/"):
        return re.compile(text[1:-1])
    return text


@dataclass(frozen=True)
class UrlFilterConfig:
    """
    Immutable configuration for URL filtering behavior.

    Loaded from environment variables with sensible defaults.
    """

    enabled: bool
    rules: list[UrlFilterRuleSpec]
    traversal_keys: Optional[list[str]] = None
    max_cache_size: int = DEFAULT_MAX_CACHE_SIZE
    verbosity: Optional[str] = None
    errors: list[str] = field(default_factory=list, compare=False)

    # Default values
    DEFAULT_ENABLED: ClassVar[bool] = True
    DEFAULT_RULES: ClassVar[list[str]] = []

    @classmethod
    def from_environment(cls) -> "UrlFilterConfig":
        """
        Load configuration from environment variables.

        Returns:
            Immutable configuration instance

        Environment Variables:
            OTEL_URL_FILTER_ENABLED: Enable/disable filtering
            OTEL_URL_FILTER_RULES: Comma-separated rules (``/regex/`` or substring)
            OTEL_URL_FILTER_TRAVERSAL_KEYS: Comma-separated attribute keys to scan
            OTEL_URL_FILTER_CACHE_SIZE: Size of the URL extraction cache
            OTEL_URL_FILTER_VERBOSITY: "trace" exports every span unfiltered
        """
        errors: list[str] = []

        enabled = _parse_bool(
            os.environ.get(ENV_VAR_ENABLED, str(cls.DEFAULT_ENABLED))
        )

        rules: list[UrlFilterRuleSpec] = []
        for text in _parse_list(os.environ.get(ENV_VAR_RULES, ",".join(cls.DEFAULT_RULES))):
            try:
                rules.append(parse_rule_spec(text))
            except re.error as e:
                errors.append(f"{ENV_VAR_RULES} entry {text!r} is not a valid regex: {e}")

        traversal_keys_str = os.environ.get(ENV_VAR_TRAVERSAL_KEYS, "")
        traversal_keys = _parse_list(traversal_keys_str) or None

        max_cache_size = DEFAULT_MAX_CACHE_SIZE
        cache_size_str = os.environ.get(ENV_VAR_CACHE_SIZE, "")
        if cache_size_str:
            try:
                max_cache_size = int(cache_size_str)
            except ValueError:
                errors.append(f"{ENV_VAR_CACHE_SIZE} must be an integer, got {cache_size_str!r}")

        verbosity = os.environ.get(ENV_VAR_VERBOSITY) or None

        return cls(
            enabled=enabled,
            rules=rules,
            traversal_keys=traversal_keys,
            max_cache_size=max_cache_size,
            verbosity=verbosity,
            errors=errors,
        )

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of validation errors.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors: list[str] = list(self.errors)

        if self.enabled and not self.rules:
            errors.append(f"{ENV_VAR_ENABLED} is true but {ENV_VAR_RULES} is empty")

        if self.max_cache_size <= 0:
            errors.append(f"{ENV_VAR_CACHE_SIZE} must be positive")

        for spec in self.rules:
            try:
                create_url_filter_rule(spec)
            except (TypeError, ValueError) as e:
                errors.append(f"Invalid URL filter rule {spec!r}: {e}")

        return errors
