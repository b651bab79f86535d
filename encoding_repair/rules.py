"""
Deterministic repair rules.

The pattern table is built once at import and never mutated. Patterns are
grouped in tiers and the table order is total:

- tier first (WORD, then SEQUENCE, then CHARACTER)
- longer corrupted fragments before shorter ones inside a tier
- ties broken by the fragment text itself
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, List, Tuple

MAX_REPAIR_PASSES = 8

# Bytes a UTF-8 multi-byte sequence can continue with.
CONTINUATION_BYTES = bytes(range(0x80, 0xC0))

DEFAULT_SAMPLE_CAP = 20
DEFAULT_CHANGE_CAP = 50
DEFAULT_DIAGNOSE_LIMIT = 50
DIAGNOSE_SAMPLES_PER_TABLE = 10

# Candidates when guessing the encoding of non-UTF-8 bytes in the store.
WESTERN_ENCODINGS = ["cp1252", "latin_1"]


class PatternTier(enum.IntEnum):
    WORD = 1
    SEQUENCE = 2
    CHARACTER = 3


@dataclass(frozen=True)
class CorruptionPattern:
    corrupted: str
    replacement: str
    tier: PatternTier


def _decode_byte(byte: int, codec: str) -> str:
    raw = bytes([byte])
    try:
        return raw.decode(codec)
    except UnicodeDecodeError:
        # cp1252 leaves 0x81, 0x8D, 0x8F, 0x90 and 0x9D undefined
        return raw.decode("latin-1")


def misdecode(text: str, codec: str = "cp1252") -> str:
    """
    Render ``text`` the way a UTF-8 -> single-byte mistake would.

    Each UTF-8 byte is decoded on its own with ``codec``; bytes the codec
    leaves undefined fall back to Latin-1, which is what lenient decoders
    emit for them.
    """
    return "".join(_decode_byte(b, codec) for b in text.encode("utf-8"))


def continuation_chars() -> str:
    """Every character a UTF-8 continuation byte turns into under cp1252 or Latin-1."""
    chars = set(CONTINUATION_BYTES.decode("latin-1"))
    chars.update(_decode_byte(b, "cp1252") for b in CONTINUATION_BYTES)
    return "".join(sorted(chars))


# Whole words and names. In the "??" forms lossy transcoding turned each
# UTF-8 byte of an accented letter into "?".
WORD_PATTERNS = {
    "Gon??alves": "Gonçalves",
    "Jo??o": "João",
    "Mar??a": "Maria",
    "Ant??nio": "António",
    "Jos??": "José",
    "Lu??s": "Luís",
    "Andr??": "André",
    "In??s": "Inês",
    "Concei????o": "Conceição",
    "Sebasti??o": "Sebastião",
    "cria????o": "criação",
    "informa????es": "informações",
    "solu????o": "solução",
    "configura????o": "configuração",
    "configura????es": "configurações",
    "administra????o": "administração",
    "situa????o": "situação",
    "avan??ado": "avançado",
    "fun????o": "função",
    "gest??o": "gestão",
    "rela????o": "relação",
    "vers??o": "versão",
    "edi????o": "edição",
    "produ????o": "produção",
    "instala????o": "instalação",
    "opera????o": "operação",
    "execu????o": "execução",
    # proper nouns that keep the trema
    misdecode("Agüero"): "Agüero",
    misdecode("Argüello"): "Argüello",
}

SEQUENCE_PATTERNS = {
    # "-ção" / "-ções" endings
    "????o": "ção",
    "????es": "ções",
    misdecode("ção"): "ção",
    misdecode("ções"): "ções",
    misdecode("ência"): "ência",
    misdecode("ário"): "ário",
    misdecode("ária"): "ária",
    # Trema was dropped by the 2009 orthography agreement.
    misdecode("qü"): "qu",
    misdecode("gü"): "gu",
    misdecode("ües"): "ues",
}

# General punctuation that encodes as E2 80 xx.
SMART_PUNCTUATION = "‘’‚“”„†‡•…‰‹›–—"

# Latin-1 supplement: every accented Portuguese letter plus º, ª and NBSP.
LATIN1_SUPPLEMENT = "".join(chr(cp) for cp in range(0xA0, 0x100))


def character_targets() -> str:
    """
    Characters whose mis-decoded form gets a CHARACTER pattern.

    Besides the Latin-1 supplement this covers every character a
    continuation byte turns into (C1 controls, cp1252 symbols such as
    ƒ, Œ, €, ™), which is what a second round of mis-decoding leaves behind.
    """
    return "".join(dict.fromkeys(LATIN1_SUPPLEMENT + continuation_chars()))


def _codec_variants(text: str) -> List[str]:
    variants = [misdecode(text, "cp1252"), misdecode(text, "latin-1")]
    return list(dict.fromkeys(variants))


def _entries() -> Iterable[Tuple[str, str, PatternTier]]:
    for corrupted, replacement in WORD_PATTERNS.items():
        yield corrupted, replacement, PatternTier.WORD
    for corrupted, replacement in SEQUENCE_PATTERNS.items():
        yield corrupted, replacement, PatternTier.SEQUENCE
    for ch in SMART_PUNCTUATION:
        for corrupted in _codec_variants(ch):
            yield corrupted, ch, PatternTier.SEQUENCE
    for ch in character_targets():
        for corrupted in _codec_variants(ch):
            yield corrupted, ch, PatternTier.CHARACTER


def build_pattern_table(
    entries: Iterable[Tuple[str, str, PatternTier]],
) -> Tuple[CorruptionPattern, ...]:
    """
    Deduplicate and order pattern entries.

    The same fragment listed twice with the same replacement collapses to
    the higher-priority tier. The same fragment with two different
    replacements is rejected.
    """
    seen: dict[str, CorruptionPattern] = {}
    for corrupted, replacement, tier in entries:
        if not corrupted or corrupted == replacement:
            raise ValueError(f"pattern {corrupted!r} is empty or maps to itself")
        existing = seen.get(corrupted)
        if existing is None:
            seen[corrupted] = CorruptionPattern(corrupted, replacement, PatternTier(tier))
            continue
        if existing.replacement != replacement:
            raise ValueError(
                f"pattern {corrupted!r} maps to both "
                f"{existing.replacement!r} and {replacement!r}"
            )
        if tier < existing.tier:
            seen[corrupted] = CorruptionPattern(corrupted, replacement, PatternTier(tier))

    return tuple(
        sorted(seen.values(), key=lambda p: (p.tier, -len(p.corrupted), p.corrupted))
    )


PATTERNS: Tuple[CorruptionPattern, ...] = build_pattern_table(_entries())
