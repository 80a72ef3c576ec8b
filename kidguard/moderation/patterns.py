"""Stateless rule engine over normalized text.

Rules are compiled once at import time and are only ever used through
``Pattern.search`` / ``Pattern.finditer``, which carry no position state
between calls.  Two evaluations of the same input always agree.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from kidguard.moderation.models import Category, ModerationDecision, Severity
from kidguard.moderation.normalizer import CAMOUFLAGE_RE, normalize

# ---------------------------------------------------------------------------
# Rule model
# ---------------------------------------------------------------------------


class RuleKind(str, Enum):
    LITERAL = "literal"  # whole word on the spaced text
    REGEX = "regex"  # hand-written expression
    TIGHT = "tight"  # word searched inside separator-stripped text
    SPACED = "spaced"  # letters separated by arbitrary whitespace


REASONS: dict[Category, str] = {
    Category.SELF_HARM: (
        "Contenido sobre autolesiones no permitido. "
        "Si lo estás pasando mal, habla con un adulto de confianza."
    ),
    Category.VIOLENCE: "Contenido violento o amenazas.",
    Category.SEXUAL: "Contenido sexual no permitido.",
    Category.SLUR: "Lenguaje ofensivo no permitido.",
    Category.PROFANITY: "Lenguaje no permitido. Reformula el mensaje.",
    Category.BULLYING: "No se permiten insultos ni burlas.",
    Category.PII: "No compartas datos personales.",
    Category.LINK: "No compartas enlaces ni redes sociales.",
}


@dataclass(frozen=True)
class PatternRule:
    """One entry of the ordered rule catalog."""

    name: str
    category: Category
    severity: Severity
    pattern: re.Pattern[str]
    kind: RuleKind = RuleKind.REGEX
    targets: tuple[str, ...] = ("spaced",)

    @property
    def reason(self) -> str:
        return REASONS[self.category]


# Letter boundaries: a trailing "!" or "1" is leetspeak in `spaced` but
# punctuation in `source`, so word rules look at both.
_WORD_START = r"(?<![^\W\d_])"
_WORD_END = r"(?![^\W\d_])"
_WORD_TARGETS = ("spaced", "source")


def _literal(category: Category, severity: Severity, word: str) -> PatternRule:
    body = r"\s*".join(re.escape(part) for part in word.split())
    return PatternRule(
        name=f"{category.value}:{word}",
        category=category,
        severity=severity,
        pattern=re.compile(rf"{_WORD_START}{body}(?:e?s)?{_WORD_END}"),
        kind=RuleKind.LITERAL,
        targets=_WORD_TARGETS,
    )


def _tight(category: Category, severity: Severity, word: str) -> PatternRule:
    return PatternRule(
        name=f"{category.value}:tight:{word}",
        category=category,
        severity=severity,
        pattern=re.compile(re.escape(word.replace(" ", ""))),
        kind=RuleKind.TIGHT,
        targets=("tight",),
    )


def _spaced_out(category: Category, severity: Severity, word: str) -> PatternRule:
    letters = [re.escape(ch) for ch in word.replace(" ", "")]
    return PatternRule(
        name=f"{category.value}:spaced:{word}",
        category=category,
        severity=severity,
        pattern=re.compile(_WORD_START + r"\s*".join(letters) + _WORD_END),
        kind=RuleKind.SPACED,
        targets=_WORD_TARGETS,
    )


def _regex(
    category: Category,
    severity: Severity,
    name: str,
    expression: str,
    targets: tuple[str, ...] = ("spaced",),
) -> PatternRule:
    return PatternRule(
        name=f"{category.value}:{name}",
        category=category,
        severity=severity,
        pattern=re.compile(expression),
        kind=RuleKind.REGEX,
        targets=targets,
    )


def _group(
    category: Category,
    severity: Severity,
    words: Iterable[str],
    tight: Iterable[str] = (),
    spaced_out: Iterable[str] = (),
) -> list[PatternRule]:
    rules = [_literal(category, severity, w) for w in words]
    rules += [_tight(category, severity, w) for w in tight]
    rules += [_spaced_out(category, severity, w) for w in spaced_out]
    return rules


# ---------------------------------------------------------------------------
# Catalog (order matters: first match wins)
# ---------------------------------------------------------------------------

_HIGH = Severity.HIGH
_MEDIUM = Severity.MEDIUM

DEFAULT_RULES: tuple[PatternRule, ...] = tuple(
    _group(
        Category.SELF_HARM,
        _HIGH,
        words=[
            "suicidate", "matate", "kill yourself", "kys", "cortate las venas",
            "quitate la vida", "tirate por la ventana",
        ],
        tight=["suicidate", "matate", "killyourself"],
        spaced_out=["suicidate"],
    )
    + _group(
        Category.VIOLENCE,
        _HIGH,
        words=[
            "te mato", "te voy a matar", "te voy a pegar", "muere", "muerete",
            "kill you", "te rajo", "te reviento",
        ],
    )
    + _group(
        Category.SEXUAL,
        _HIGH,
        words=["follar", "sexo", "porno", "porn", "desnudo", "desnuda", "naked", "nudes"],
        tight=["porno", "sexo", "follar", "desnud", "nudes"],
        spaced_out=["follar"],
    )
    + _group(
        Category.SLUR,
        _HIGH,
        words=[
            "maricon", "marica", "bollera", "subnormal", "retrasado", "retrasada",
            "mongolo", "sudaca", "nigger", "nigga", "faggot", "retard",
        ],
        tight=["maricon", "subnormal", "nigger", "faggot"],
    )
    + _group(
        Category.PROFANITY,
        _MEDIUM,
        words=[
            "puta", "puto", "hijoputa", "hijo de puta", "mierda", "joder", "cono",
            "cojones", "gilipollas", "cabron", "zorra", "hostia", "mecagoen",
            "me cago en", "fuck", "shit", "bitch", "asshole", "dick", "cock",
        ],
        tight=[
            "puta", "puto", "hijoputa", "mierda", "joder", "gilipollas", "cabron",
            "zorra", "fuck", "shit", "bitch",
        ],
        spaced_out=["puta", "puto", "mierda", "joder", "gilipollas", "zorra", "fuck"],
    )
    + _group(
        Category.BULLYING,
        _MEDIUM,
        words=[
            "idiota", "imbecil", "estupido", "estupida", "tonto", "tonta", "gordo",
            "gorda", "feo", "fea", "perdedor", "fracasado", "fracasada", "inutil",
            "pringado", "loser", "stupid", "idiot",
        ],
        tight=["idiota", "imbecil", "estupido"],
        spaced_out=["idiota"],
    )
    + [
        _regex(Category.PII, _HIGH, "nine-digits", r"\b\d{9}\b", ("source",)),
        _regex(Category.PII, _HIGH, "phone-3-3-4", r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b", ("source",)),
        _regex(Category.PII, _HIGH, "phone-3-3-3", r"\b\d{3}[-.\s]\d{3}[-.\s]\d{3}\b", ("source",)),
        _regex(Category.PII, _HIGH, "phone-3-2-2-2", r"\b\d{3}[-.\s]\d{2}[-.\s]\d{2}[-.\s]\d{2}\b", ("source",)),
        _regex(Category.PII, _HIGH, "phone-intl", r"\+\d{2}\s?\d{3}[-.\s]?\d{3}[-.\s]?\d{3}\b", ("source",)),
        _regex(Category.PII, _HIGH, "email", r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", ("source",)),
        _regex(Category.PII, _HIGH, "disclosure", r"\bmi\s*(?:numero|telefono|movil|direccion)\b"),
        _regex(Category.PII, _HIGH, "home", r"\bvivo\s+en\b|\bmi\s*casa\s*esta\b"),
        _regex(Category.PII, _HIGH, "ask-contact", r"\b(?:pasame|dame)\s*tu\s*(?:numero|telefono|movil|direccion|insta)\b"),
        _regex(Category.PII, _HIGH, "meet", r"\bven\s*a\s*verme\b|\bquedamos\b|\bnos\s*vemos\s*en\b|\bte\s*recojo\b"),
        _regex(Category.LINK, _MEDIUM, "url", r"https?://\S+", ("source",)),
        _regex(Category.LINK, _MEDIUM, "www", r"\bwww\.\S+", ("source",)),
        _regex(
            Category.LINK, _MEDIUM, "domain",
            r"\b[a-z0-9-]{2,}\.(?:com|es|net|org|io|app|dev|xyz|club|me|gg|ly)\b", ("source",),
        ),
        _regex(
            Category.LINK, _MEDIUM, "social",
            r"\b(?:instagram|insta|tiktok|snapchat|snap|whatsapp|wasap|telegram|discord)\b",
        ),
    ]
)


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


def _removed_runs(spaced: str) -> list[tuple[int, str]]:
    """Separator runs dropped from *spaced*, keyed by their offset in tight."""
    runs: list[tuple[int, str]] = []
    removed = 0
    for m in CAMOUFLAGE_RE.finditer(spaced):
        runs.append((m.start() - removed, m.group()))
        removed += len(m.group())
    return runs


def _is_camouflaged(start: int, end: int, runs: list[tuple[int, str]]) -> bool:
    """True when a tight-text hit was assembled across camouflage separators.

    A hit counts when it bridges a punctuation separator (``p.u.t.a``,
    ``mi-erda``) or at least two whitespace gaps (``p u t a``).  A single
    space between two real words (``por nosotros``) is ordinary prose.
    """
    spanned = [sep for offset, sep in runs if start < offset < end]
    if any(sep.strip() for sep in spanned):
        return True
    return len(spanned) >= 2


class PatternMatcher:
    """Ordered, stateless rule evaluation; the first hit wins."""

    def __init__(self, rules: Iterable[PatternRule] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[PatternRule, ...]:
        return self._rules

    def match(
        self, spaced: str, tight: str, source: Optional[str] = None
    ) -> Optional[ModerationDecision]:
        """Return a disallow decision for the first matching rule, else ``None``.

        *tight* must be the separator-stripped form of *spaced*.  When
        *source* (pre-leetspeak text) is not supplied, digit heuristics fall
        back to *spaced*.
        """
        variants = {"spaced": spaced, "tight": tight, "source": source if source is not None else spaced}
        runs: Optional[list[tuple[int, str]]] = None

        for rule in self._rules:
            for target in rule.targets:
                text = variants[target]
                if not text:
                    continue
                if rule.kind is RuleKind.TIGHT:
                    if runs is None:
                        runs = _removed_runs(spaced)
                    hit = any(_is_camouflaged(m.start(), m.end(), runs) for m in rule.pattern.finditer(text))
                else:
                    hit = rule.pattern.search(text) is not None
                if hit:
                    return ModerationDecision(
                        allowed=False,
                        reason=rule.reason,
                        categories={rule.category.value},
                        severity=rule.severity,
                    )
        return None

    def match_text(self, text: str) -> Optional[ModerationDecision]:
        """Normalize *text* and match it."""
        normalized = normalize(text)
        return self.match(normalized.spaced, normalized.tight, normalized.source)
