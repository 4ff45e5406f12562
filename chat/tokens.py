"""Token estimation and response-time formatting."""

import math
import re
from collections.abc import Callable

# Latin letters, digits and ASCII punctuation: roughly four per token
_ASCII_PATTERN = re.compile(r"[A-Za-z0-9.,?!;:()\[\]{}'\"<>/\\@#$%^&*_+=|~`-]")
# CJK unified ideographs: roughly one token each
_CJK_PATTERN = re.compile(r"[\u4e00-\u9fa5]")

TokenEstimator = Callable[[str], int]


def estimate_token_count(text: str) -> int:
    """Estimate the number of tokens in text.

    A tokenizer-free heuristic: ASCII word characters and punctuation count a
    quarter token each, CJK ideographs a full token, and everything else
    (whitespace, emoji, other scripts) half a token.

    Args:
        text: Text to measure

    Returns:
        Estimated token count (0 for empty or whitespace-only text)
    """
    if not text or not text.strip():
        return 0

    ascii_count = len(_ASCII_PATTERN.findall(text))
    cjk_count = len(_CJK_PATTERN.findall(text))
    other_count = len(text) - ascii_count - cjk_count

    return math.ceil(ascii_count / 4) + cjk_count + math.ceil(other_count / 2)


def format_response_time(milliseconds: int) -> str:
    """Format a duration for display: ``"850ms"`` or ``"1.5s"``."""
    if milliseconds <= 0:
        return "0ms"
    if milliseconds < 1000:
        return f"{milliseconds}ms"
    seconds = f"{milliseconds / 1000:.2f}".rstrip("0").rstrip(".")
    return f"{seconds}s"
