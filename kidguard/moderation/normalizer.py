"""Deterministic text canonicalization for evasion-resistant matching."""

from __future__ import annotations

import re
import unicodedata

from kidguard.moderation.models import NormalizedText

LEETSPEAK_MAP: dict[str, str] = {
    "0": "o",
    "1": "i",
    "3": "e",
    "4": "a",
    "5": "s",
    "7": "t",
    "@": "a",
    "$": "s",
    "!": "i",
    "(": "c",
}

_LEET_TABLE = str.maketrans(LEETSPEAK_MAP)

_WHITESPACE_RE = re.compile(r"\s+")

# A run of separators with a letter on both sides.  [^\W\d_] is "letter".
CAMOUFLAGE_RE = re.compile(r"(?<=[^\W\d_])[.\-_*+\s]+(?=[^\W\d_])")


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def canonicalize(text: str) -> str:
    """Lowercase, drop accents and collapse whitespace (no leetspeak)."""
    text = strip_diacritics(text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def remove_camouflage(text: str) -> str:
    """Remove separators used to split words (``p.u.t.a``, ``p u t a``)."""
    return CAMOUFLAGE_RE.sub("", text)


def normalize(text: str) -> NormalizedText:
    """Return the ``source``, ``spaced`` and ``tight`` variants of *text*.

    Pure and idempotent: feeding ``spaced`` (or ``tight``) back in returns it
    unchanged.
    """
    if not text:
        return NormalizedText(source="", spaced="", tight="")
    source = canonicalize(text)
    spaced = source.translate(_LEET_TABLE)
    return NormalizedText(source=source, spaced=spaced, tight=remove_camouflage(spaced))
