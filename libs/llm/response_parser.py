"""
Response Parser - defensive JSON extraction for generation outputs.

Design principle: try structured first, repair lightly, and never let a
decode error cross a stage boundary. Every call returns a tagged ParseResult;
stages branch on `ok` and fall back to their own default.

Usage:
    result = parse_json(response.content, expect=list, default=[])
    if not result.ok:
        ...  # stage default
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from libs.core.exceptions import MalformedResponse

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)


@dataclass
class ParseResult:
    """Result of a parse attempt."""
    data: Any
    ok: bool
    strategy_used: str
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def default(cls, value: Any, warnings: Optional[list[str]] = None) -> "ParseResult":
        """Failed parse carrying the caller's default."""
        return cls(data=value, ok=False, strategy_used="default", warnings=warnings or [])

    def unwrap(self) -> Any:
        """Return data, raising MalformedResponse when the parse failed."""
        if not self.ok:
            raise MalformedResponse(
                "Generation output is not usable JSON",
                context={"warnings": self.warnings},
            )
        return self.data


def parse_json(
    raw_output: Optional[str],
    expect: Optional[type] = None,
    default: Any = None,
) -> ParseResult:
    """
    Extract a JSON value from generation output.

    Order: fenced ```json block, whole text, outermost {...} / [...] span.
    Each candidate is tried as-is, then after repair.

    Args:
        raw_output: Raw text from the provider
        expect: dict or list; any other decoded type counts as a failure
        default: Value carried by the result when parsing fails

    Returns:
        ParseResult (ok=False with `default` on failure)
    """
    warnings: list[str] = []
    if not raw_output or not raw_output.strip():
        return ParseResult.default(default, ["Empty output"])

    text = _THINK_BLOCK.sub("", raw_output).strip()

    for label, candidate in _candidates(text, expect):
        data = _loads(candidate)
        strategy = label
        if data is None:
            data = _loads(_repair_json(candidate))
            strategy = f"{label}_repaired"
        if data is None:
            continue
        if expect is not None and not isinstance(data, expect):
            warnings.append(f"{label}: expected {expect.__name__}, got {type(data).__name__}")
            continue
        if strategy.endswith("_repaired"):
            warnings.append("JSON required repair")
        return ParseResult(data=data, ok=True, strategy_used=strategy, warnings=warnings)

    warnings.append("No JSON value found")
    logger.debug(f"[Parser] Unparsable output: {text[:200]!r}")
    return ParseResult.default(default, warnings)


def _candidates(text: str, expect: Optional[type]) -> list[tuple[str, str]]:
    """Candidate substrings, most specific first."""
    candidates = []

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        candidates.append(("fenced", fenced.group(1).strip()))

    candidates.append(("direct", text))

    spans = []
    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = text.find(open_char)
        end = text.rfind(close_char) + 1
        if start >= 0 and end > start:
            spans.append((start, open_char, text[start:end]))

    if expect is list:
        spans.sort(key=lambda s: (s[1] != "[", s[0]))
    elif expect is dict:
        spans.sort(key=lambda s: (s[1] != "{", s[0]))
    else:
        spans.sort(key=lambda s: s[0])

    for _, open_char, span in spans:
        candidates.append(("array_span" if open_char == "[" else "object_span", span))

    return candidates


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


def _repair_json(text: str) -> str:
    """Apply common JSON repairs."""
    repaired = text

    # Trailing commas before closing brackets
    repaired = re.sub(r",(\s*[}\]])", r"\1", repaired)

    # Single-quoted keys and string values
    repaired = re.sub(r"'(\w+)'(\s*:)", r'"\1"\2', repaired)
    repaired = re.sub(r":\s*'([^']*)'", r': "\1"', repaired)

    # Python literals
    repaired = re.sub(r"\bTrue\b", "true", repaired)
    repaired = re.sub(r"\bFalse\b", "false", repaired)
    repaired = re.sub(r"\bNone\b", "null", repaired)

    return repaired
