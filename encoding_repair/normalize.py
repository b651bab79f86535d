"""
Core detection and repair logic.

Responsibilities:
- corruption detection by known signatures only
- literal, ordered, repeat-until-stable repair
- best-effort decoding of raw bytes pulled out of the store
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from charset_normalizer import from_bytes

from .rules import (
    MAX_REPAIR_PASSES,
    PATTERNS,
    WESTERN_ENCODINGS,
    CorruptionPattern,
    continuation_chars,
)

logger = logging.getLogger(__name__)

_CONTINUATION = "".join(re.escape(ch) for ch in continuation_chars())

SIGNATURES: Dict[str, re.Pattern] = {
    # lossy transcoding replaced each unmappable byte with "?"
    "question_marks": re.compile(r"\?{2,}"),
    # two-byte UTF-8 (lead C2, C3, C5, C6, CB) read back as Latin-1/cp1252
    "double_utf8": re.compile(f"[ÂÃÅÆË][{_CONTINUATION}]"),
    # E2 80 / 82 / 84 xx punctuation and symbols read back as cp1252 or Latin-1
    "smart_quote": re.compile(f"â[€\u0080‚\u0082„\u0084][{_CONTINUATION}]"),
}


def find_signatures(text: Any) -> List[str]:
    """Names of the corruption signatures present in ``text``, in a stable order."""
    if not isinstance(text, str) or not text:
        return []
    return [name for name, rx in SIGNATURES.items() if rx.search(text)]


def is_corrupted(text: Any) -> bool:
    """
    True if ``text`` carries at least one known corruption signature.

    Correctly accented text is not flagged: plain non-ASCII is never a
    signature on its own.
    """
    if not isinstance(text, str) or not text:
        return False
    return any(rx.search(text) for rx in SIGNATURES.values())


def _apply_once(text: str, patterns: Sequence[CorruptionPattern]) -> str:
    for pattern in patterns:
        if pattern.corrupted in text:
            text = text.replace(pattern.corrupted, pattern.replacement)
    return text


def repair(text: Any, patterns: Sequence[CorruptionPattern] = PATTERNS) -> Any:
    """
    Return ``text`` with every known corrupted fragment replaced.

    Rules:
    - Non-strings and empty strings come back untouched.
    - Patterns are matched as literal substrings, in table order.
    - Whole-table passes repeat until one changes nothing, so stacked
      encodings (UTF-8 mangled twice) unwind fully and the result is stable
      under another call.
    """
    if not isinstance(text, str) or not text:
        return text

    result = text
    for _ in range(MAX_REPAIR_PASSES):
        fixed = _apply_once(result, patterns)
        if fixed == result:
            return result
        result = fixed

    logger.debug(f"Repair did not settle after {MAX_REPAIR_PASSES} passes: {text!r}")
    return result


def is_invalid_utf8(value: Any) -> bool:
    """True for raw bytes that do not decode as UTF-8 (single-byte text in the store)."""
    if not isinstance(value, (bytes, bytearray, memoryview)):
        return False
    try:
        bytes(value).decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


def coerce_text(value: Any) -> Optional[str]:
    """
    Text view of a column value, or None when it is not text-like.

    Rules:
    - Bytes that are valid UTF-8 are decoded as UTF-8.
    - Anything else is decoded with the Western single-byte encoding
      charset-normalizer considers most likely.
    - If detection gives nothing, Latin-1 is used; it never fails and keeps
      every byte, so writing the result back loses nothing.
    """
    if isinstance(value, str):
        return value
    if not isinstance(value, (bytes, bytearray, memoryview)):
        return None

    raw = bytes(value)
    if not is_invalid_utf8(raw):
        return raw.decode("utf-8")

    match = from_bytes(raw, cp_isolation=WESTERN_ENCODINGS).best()
    encoding = match.encoding if match is not None else "latin-1"
    try:
        return raw.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        return raw.decode("latin-1")


def char_codes(text: str) -> List[Dict[str, Any]]:
    return [{"char": ch, "code": ord(ch), "hex": f"{ord(ch):x}"} for ch in text]
