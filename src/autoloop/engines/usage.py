"""Token usage extraction from heterogeneous CLI agent output."""

from __future__ import annotations

import re
from dataclasses import dataclass

_JSON_PROMPT_TOKENS = re.compile(
    r'"(?:prompt_tokens|input_tokens|promptTokenCount)"\s*:\s*(\d+)',
    re.IGNORECASE,
)
_JSON_COMPLETION_TOKENS = re.compile(
    r'"(?:completion_tokens|output_tokens|candidatesTokenCount)"\s*:\s*(\d+)',
    re.IGNORECASE,
)
_JSON_TOTAL_TOKENS = re.compile(r'"(?:total_tokens|totalTokenCount)"\s*:\s*(\d+)', re.IGNORECASE)

_TOKENS_USED = re.compile(r"tokens used\s*[:\r\n ]+\s*([\d,]+)", re.IGNORECASE)
_INPUT_TOKENS = re.compile(r"input[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_OUTPUT_TOKENS = re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_TOTAL_TOKENS = re.compile(r"total[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)


@dataclass(slots=True)
class TokenUsage:
    """Best-effort token counts; `None` means the tool did not say."""

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None
    source: str

    @property
    def input_tokens(self) -> int:
        return self.prompt_tokens or 0

    @property
    def output_tokens(self) -> int:
        """Completion tokens, or the unattributed remainder of the total."""

        if self.completion_tokens is not None:
            return self.completion_tokens
        if self.total_tokens is None:
            return 0
        return max(self.total_tokens - self.input_tokens, 0)


def extract_token_usage(text: str) -> TokenUsage:
    """Read token counters from JSON fields first, then from textual markers."""

    structured = _extract(
        text,
        prompt_pattern=_JSON_PROMPT_TOKENS,
        completion_pattern=_JSON_COMPLETION_TOKENS,
        total_patterns=(_JSON_TOTAL_TOKENS,),
        source="structured",
    )
    if structured is not None:
        return structured

    textual = _extract(
        text,
        prompt_pattern=_INPUT_TOKENS,
        completion_pattern=_OUTPUT_TOKENS,
        total_patterns=(_TOTAL_TOKENS, _TOKENS_USED),
        source="textual",
    )
    if textual is not None:
        return textual

    return TokenUsage(prompt_tokens=None, completion_tokens=None, total_tokens=None, source="none")


def _extract(
    text: str,
    *,
    prompt_pattern: re.Pattern[str],
    completion_pattern: re.Pattern[str],
    total_patterns: tuple[re.Pattern[str], ...],
    source: str,
) -> TokenUsage | None:
    prompt = _extract_int(prompt_pattern, text)
    completion = _extract_int(completion_pattern, text)
    total: int | None = None
    for pattern in total_patterns:
        total = _extract_int(pattern, text)
        if total is not None:
            break
    if prompt is None and completion is None and total is None:
        return None
    if total is None:
        total = sum(value for value in (prompt, completion) if value is not None)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        source=source,
    )


def _extract_int(pattern: re.Pattern[str], text: str) -> int | None:
    # Last match wins: agents print running totals.
    matches = pattern.findall(text)
    if not matches:
        return None
    raw = matches[-1].replace(",", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)
