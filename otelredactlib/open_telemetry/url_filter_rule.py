"""URL filter rules.

A rule is either a case-insensitive substring or a regular expression.
``create_url_filter_rule`` accepts the three supported input shapes:

- a plain string (substring match)
- a compiled ``re.Pattern`` (regex match)
- a mapping ``{"pattern": str | re.Pattern}``
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Pattern, Union

UrlFilterRuleSpec = Union[str, Pattern[str], Mapping[str, Any], "UrlFilterRule"]


class UrlFilterRuleKind(Enum):
    SUBSTRING = "substring"
    REGEX = "regex"


@dataclass(frozen=True)
class UrlFilterRule:
    """
    Immutable matcher for a single filter pattern.
    """

    kind: UrlFilterRuleKind
    pattern: Union[str, Pattern[str]]
    _folded: str = field(default="", init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.kind is UrlFilterRuleKind.SUBSTRING:
            if not isinstance(self.pattern, str) or not self.pattern:
                raise ValueError("Substring filter rule requires a non-empty string")
            object.__setattr__(self, "_folded", self.pattern.casefold())
        else:
            if not isinstance(self.pattern, re.Pattern) or not self.pattern.pattern:
                raise ValueError("Regex filter rule requires a non-empty pattern")

    @classmethod
    def substring(cls, text: str) -> "UrlFilterRule":
        return cls(kind=UrlFilterRuleKind.SUBSTRING, pattern=text)

    @classmethod
    def regex(cls, pattern: Union[str, Pattern[str]]) -> "UrlFilterRule":
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        return cls(kind=UrlFilterRuleKind.REGEX, pattern=pattern)

    def matches(self, candidate: str) -> bool:
        """
        Test a candidate string against this rule.

        Args:
            candidate: The string to test (typically an extracted URL)

        Returns:
            True if the candidate contains the substring (case-insensitive)
            or the regex finds a match anywhere in it
        """
        if self.kind is UrlFilterRuleKind.SUBSTRING:
            return self._folded in candidate.casefold()
        return self.pattern.search(candidate) is not None  # type: ignore[union-attr]

    def __str__(self) -> str:
        if self.kind is UrlFilterRuleKind.SUBSTRING:
            return str(self.pattern)
        return f"/{self.pattern.pattern}/"  # type: ignore[union-attr]


def create_url_filter_rule(spec: UrlFilterRuleSpec) -> UrlFilterRule:
    """
    Build a rule from any of the accepted specification shapes.

    Args:
        spec: A string, a compiled regex, a mapping with a "pattern" key,
              or an existing rule (returned unchanged)

    Returns:
        The matching UrlFilterRule

    Raises:
        ValueError: If the pattern is empty
        TypeError: If the spec has an unsupported shape
    """
    if isinstance(spec, UrlFilterRule):
        return spec
    if isinstance(spec, str):
        return UrlFilterRule.substring(spec)
    if isinstance(spec, re.Pattern):
        return UrlFilterRule.regex(spec)
    if isinstance(spec, Mapping):
        if "pattern" not in spec:
            raise ValueError("Filter rule mapping must contain a 'pattern' key")
        pattern = spec["pattern"]
        if isinstance(pattern, (str, re.Pattern)):
            return create_url_filter_rule(pattern)
        raise TypeError(
            f"Unsupported filter rule pattern type: {type(pattern).__name__}"
        )
    raise TypeError(f"Unsupported filter rule spec type: {type(spec).__name__}")
