"""Ordered sanitization rules used to simplify a prompt after a safety rejection.

Each rule is a small value object with an ``apply(text)`` method so rules can be
tested one by one. ``simplify_prompt`` runs them in order.
"""

import re
from dataclasses import dataclass
from typing import Sequence, Tuple

BASIC_CONCEPTS = (
    "professional video",
    "smooth camera movement",
    "good lighting",
    "social media content",
    "high quality",
)


@dataclass(frozen=True)
class RegexRule:
    name: str
    pattern: str
    replacement: str = ""
    flags: int = re.IGNORECASE

    def apply(self, text: str) -> str:
        return re.sub(self.pattern, self.replacement, text, flags=self.flags)


@dataclass(frozen=True)
class TruncateRule:
    name: str
    max_length: int = 200
    keep: int = 100
    preamble: Tuple[str, ...] = BASIC_CONCEPTS

    def apply(self, text: str) -> str:
        if len(text) <= self.max_length:
            return text
        return ", ".join(self.preamble) + ". " + text[: self.keep].rstrip()


DEFAULT_RULES = (
    RegexRule("parenthetical_asides", r"\([^)]*\)"),
    RegexRule(
        "numeric_magnitudes",
        r"\b\d+(?:\.\d+)?\s*(?:%|(?:seconds?|secs?|minutes?|mins?|degrees?|cm|mm|inches?|bpm|fps)\b)",
    ),
    RegexRule("very_slow_smooth", r"very slow,?\s*smooth\s*", "slow "),
    RegexRule("subtle", r"subtle,?\s*(?:slow)?\s*"),
    RegexRule("gradually", r"gradually,?\s*"),
    RegexRule("clean_manicured", r"clean,?\s*manicured\s*"),
    RegexRule("pristine_minimalist", r"pristine,?\s*minimalist\s*", "simple "),
    RegexRule("precise_centered", r"precise,?\s*centered\s*", "centered "),
    RegexRule("bathed_in", r"bathed in\s*(?:the\s*)?", "with "),
    RegexRule("golden_hour", r"soft,?\s*golden hour\s*", "warm "),
    RegexRule("dust_motes", r"dust motes\s*gently\s*dance\s*in\s*(?:the\s*)?sunbeams", "sunlit scene"),
    RegexRule("redundant_adjective_pairs", r"\s+(?:warm,?\s*inviting|clean,?\s*subtle|gentle,?\s*subtle)\s*", " "),
    RegexRule("intensifiers", r"\b(?:very|extremely|incredibly|super|ultra)\s+"),
    RegexRule("whitespace", r"\s+", " "),
    RegexRule("space_before_punctuation", r"\s+([,.;:!?])", r"\1"),
    TruncateRule("truncate"),
)


def simplify_prompt(prompt: str, rules: Sequence = DEFAULT_RULES) -> str:
    """Apply the sanitization rules in order and return the simplified prompt."""
    text = prompt
    for rule in rules:
        text = rule.apply(text)
    return text.strip()
