"""Refusal detection — signature matching over normalized responses.

A conservative heuristic: missed refusals are acceptable, so the signature
list stays short and phrase-like. The set is data, not code; extend it via
configuration or a signatures file rather than editing this module.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from fallback_router.models import NormalizedResponse, Verdict

# Lowercase phrase fragments. Keep sorted for readability.
DEFAULT_REFUSAL_SIGNATURES: tuple[str, ...] = (
    "as an ai language model",
    "i am not able to help with",
    "i am unable to",
    "i can't assist with",
    "i can't help with",
    "i cannot assist with",
    "i cannot help with",
    "i cannot provide",
    "i'm not able to help with",
    "i'm sorry, but i can't",
    "i'm sorry, but i cannot",
    "i'm unable to",
    "i won't be able to help",
)


def _normalize(s: str) -> str:
    """Lowercase, unify apostrophes and collapse whitespace."""
    return " ".join(s.replace("’", "'").lower().split())


def load_signatures(path: str | Path) -> tuple[str, ...]:
    """Read one signature per line. Blank lines and ``#`` comments are skipped."""
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return tuple(
        line.strip() for line in lines if line.strip() and not line.strip().startswith("#")
    )


class RefusalClassifier:
    """Marks a response refused if its text contains any signature."""

    def __init__(self, signatures: Iterable[str] = DEFAULT_REFUSAL_SIGNATURES):
        normalized = {_normalize(s) for s in signatures}
        normalized.discard("")
        self._signatures = tuple(sorted(normalized))

    @property
    def signatures(self) -> tuple[str, ...]:
        return self._signatures

    def extended(self, extra: Iterable[str]) -> RefusalClassifier:
        return RefusalClassifier((*self._signatures, *extra))

    def match(self, response: NormalizedResponse) -> str | None:
        """Return the first matching signature, or None."""
        text = _normalize(response.text or "")
        for sig in self._signatures:
            if sig in text:
                return sig
        return None

    def classify(self, response: NormalizedResponse) -> Verdict:
        # An empty answer is a non-answer.
        if not (response.text or "").strip():
            return Verdict.REFUSED
        if self.match(response) is not None:
            return Verdict.REFUSED
        return Verdict.ACCEPTED
