"""URL extraction and rule evaluation shared by the URL filter exporters.

This module provides:
- UrlFilterEngine: finds URL-like substrings inside arbitrary telemetry
  values and evaluates them against an ordered list of UrlFilterRule
"""

import hashlib
import json
import logging
import re
from threading import Lock
from typing import Any, Iterable, List, Mapping, Optional

from cachetools import LRUCache

from otelredactlib.open_telemetry.attribute_names import UrlFilterAttributeNames
from otelredactlib.open_telemetry.url_filter_rule import (
    UrlFilterRule,
    UrlFilterRuleSpec,
    create_url_filter_rule,
)
from otelredactlib.utilities.logger.log_levels import SRC_LOG_LEVELS

logger = logging.getLogger(__name__)
logger.setLevel(SRC_LOG_LEVELS["URL_FILTER"])

MAX_EXTRACTION_DEPTH: int = 10
DEFAULT_MAX_CACHE_SIZE: int = 1000
# Strings longer than this are keyed by a digest instead of their raw text
CACHE_KEY_MAX_RAW_LENGTH: int = 200

URL_PATTERN: re.Pattern[str] = re.compile(
    r"(?:[a-zA-Z][a-zA-Z0-9+.\-]*://[^\s/]*)?/[^\s\"'<>]*"
)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def _json_default(value: Any) -> Any:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    return str(value)


def _is_container(value: Any) -> bool:
    return isinstance(value, _SEQUENCE_TYPES) or isinstance(value, Mapping)


class UrlFilterEngine:
    """
    Extracts URL candidates from telemetry values and matches them against rules.

    Extraction results are memoized in an LRU cache whose keys are prefixed
    with ``cache_version``. Every rule mutation bumps the version, so stale
    entries are never read again and simply age out of the LRU.

    The cache is guarded by a lock; exporters may call ``matches`` from
    several batch worker threads at once.
    """

    def __init__(
        self,
        rules: Optional[Iterable[UrlFilterRuleSpec]] = None,
        traversal_keys: Optional[Iterable[str]] = None,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
    ) -> None:
        """
        Initialize the engine.

        Args:
            rules: Rule specifications (strings, compiled regexes or
                   {"pattern": ...} mappings)
            traversal_keys: Mapping keys whose scalar values are scanned for
                            URLs. Defaults to the common URL attribute names.
            max_cache_size: Maximum number of memoized extraction results
        """
        if max_cache_size <= 0:
            raise ValueError("max_cache_size must be positive")

        self._rules: List[UrlFilterRule] = [
            create_url_filter_rule(spec) for spec in (rules or [])
        ]
        self._traversal_keys: frozenset[str] = (
            frozenset(traversal_keys)
            if traversal_keys is not None
            else UrlFilterAttributeNames.DEFAULT_TRAVERSAL_KEYS
        )
        self._cache: LRUCache[str, List[str]] = LRUCache(maxsize=max_cache_size)
        self._cache_lock = Lock()
        self._cache_version: int = 0

    @property
    def rules(self) -> tuple[UrlFilterRule, ...]:
        return tuple(self._rules)

    @property
    def traversal_keys(self) -> frozenset[str]:
        return self._traversal_keys

    @property
    def cache_version(self) -> int:
        return self._cache_version

    def add_rule(self, spec: UrlFilterRuleSpec) -> "UrlFilterEngine":
        """Append a rule and invalidate cached extraction results."""
        rule = create_url_filter_rule(spec)
        self._rules = [*self._rules, rule]
        self._bump_cache_version()
        logger.debug("Added URL filter rule %s", rule)
        return self

    def remove_rule(self, rule: UrlFilterRuleSpec) -> "UrlFilterEngine":
        """Remove the first rule equal to ``rule`` and invalidate the cache."""
        target = create_url_filter_rule(rule)
        remaining = list(self._rules)
        try:
            remaining.remove(target)
        except ValueError:
            logger.debug("URL filter rule %s not registered, nothing removed", target)
        self._rules = remaining
        self._bump_cache_version()
        return self

    def clear_rules(self) -> "UrlFilterEngine":
        """Remove every rule and invalidate the cache."""
        self._rules = []
        self._bump_cache_version()
        return self

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def _bump_cache_version(self) -> None:
        with self._cache_lock:
            self._cache_version += 1

    def matches(self, value: Any) -> bool:
        """
        Determine whether any URL found in ``value`` matches any rule.

        Args:
            value: A string, sequence, mapping, or scalar telemetry value

        Returns:
            True if at least one extracted candidate matches a rule
        """
        rules = self._rules
        if not rules:
            return False
        for candidate in self.extract_urls(value):
            for rule in rules:
                if rule.matches(candidate):
                    return True
        return False

    def extract_urls(self, value: Any, depth: int = 0) -> List[str]:
        """
        Find URL-like substrings inside ``value``.

        Results of depth 0 calls are memoized per cache version. Any failure
        during extraction is logged and reported as "no URLs found".

        Args:
            value: The value to scan
            depth: Starting nesting depth (values deeper than
                   MAX_EXTRACTION_DEPTH are not scanned)

        Returns:
            List of URL candidates, possibly empty
        """
        try:
            if value is None:
                return []
            # Only full-depth results are memoized
            cache_key = self._cache_key(value) if depth == 0 else None
            if cache_key is not None:
                with self._cache_lock:
                    cached = self._cache.get(cache_key)
                if cached is not None:
                    return list(cached)

            urls = self._extract(value, depth, set())

            if cache_key is not None:
                with self._cache_lock:
                    self._cache[cache_key] = urls
            return list(urls)
        except Exception as e:
            logger.warning(
                "URL extraction failed for value of type %s: %s",
                type(value).__name__,
                e,
            )
            return []

    def _cache_key(self, value: Any) -> Optional[str]:
        version = self._cache_version
        if isinstance(value, str) and len(value) <= CACHE_KEY_MAX_RAW_LENGTH:
            return f"{version}:s:{value}"
        try:
            serialized = json.dumps(value, default=_json_default)
        except (TypeError, ValueError) as e:
            # Cyclic values cannot be serialized; extract without memoizing
            logger.debug("Skipping extraction cache for unserializable value: %s", e)
            return None
        digest = hashlib.sha1(serialized.encode("utf-8"), usedforsecurity=False)
        return f"{version}:h:{digest.hexdigest()}"

    def _extract(self, value: Any, depth: int, visited: set[int]) -> List[str]:
        if depth > MAX_EXTRACTION_DEPTH:
            logger.warning(
                "URL extraction depth limit (%d) exceeded, skipping nested value",
                MAX_EXTRACTION_DEPTH,
            )
            return []

        if isinstance(value, str):
            match = URL_PATTERN.search(value)
            return [match.group(0)] if match else []

        if not _is_container(value):
            return []

        marker = id(value)
        if marker in visited:
            logger.debug("Skipping cyclic reference during URL extraction")
            return []
        visited.add(marker)
        try:
            urls: List[str] = []
            if isinstance(value, Mapping):
                for key, item in value.items():
                    if key in self._traversal_keys or _is_container(item):
                        urls.extend(self._extract(item, depth + 1, visited))
            else:
                for item in value:
                    urls.extend(self._extract(item, depth + 1, visited))
            return urls
        finally:
            visited.discard(marker)


class UrlFilterRulesMixin:
    """
    Runtime rule management for exporters that own a UrlFilterEngine.

    Subclasses must set ``self._engine``.
    """

    _engine: UrlFilterEngine

    @property
    def engine(self) -> UrlFilterEngine:
        return self._engine

    def add_rule(self, spec: UrlFilterRuleSpec) -> "UrlFilterRulesMixin":
        self._engine.add_rule(spec)
        return self

    def remove_rule(self, rule: UrlFilterRuleSpec) -> "UrlFilterRulesMixin":
        self._engine.remove_rule(rule)
        return self

    def clear_rules(self) -> "UrlFilterRulesMixin":
        self._engine.clear_rules()
        return self

    def clear_cache(self) -> None:
        self._engine.clear_cache()

    def matches(self, value: Any) -> bool:
        return self._engine.matches(value)
