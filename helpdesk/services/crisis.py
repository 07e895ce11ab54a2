"""
Crisis keyword detection.

Plain case-insensitive substring scan over a fixed phrase list. Matching is not
word-boundary aware ("cutting" also matches inside "undercutting"), which is
kept for compatibility with tickets already triaged this way.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

DEFAULT_CRISIS_KEYWORDS: Tuple[str, ...] = (
    "suicide",
    "kill myself",
    "end my life",
    "want to die",
    "take my life",
    "suicidal",
    "killing myself",
    "ending it all",
    "better off dead",
    "self harm",
    "hurt myself",
    "cutting",
    "cut myself",
    "self injury",
    "crisis",
    "emergency",
    "urgent help",
    "immediate help",
    "desperate",
    "can't cope",
    "overwhelmed",
    "breakdown",
    "mental breakdown",
    "overdose",
    "too many pills",
    "drink to death",
    "hopeless",
    "worthless",
    "no point",
    "give up",
    "can't go on",
)


@dataclass(frozen=True)
class CrisisResult:
    detected: bool
    keywords: List[str] = field(default_factory=list)


class CrisisDetector:
    def __init__(self, keywords: Optional[Iterable[str]] = None):
        source = keywords if keywords else DEFAULT_CRISIS_KEYWORDS
        phrases = []
        for keyword in source:
            phrase = keyword.strip().lower()
            if phrase and phrase not in phrases:
                phrases.append(phrase)
        self.keywords = tuple(phrases)

    def scan(self, *texts: Optional[str]) -> CrisisResult:
        """Scan one or more texts (joined by a space) and report every matched phrase."""
        haystack = " ".join(t for t in texts if t).strip().lower()
        if not haystack:
            return CrisisResult(detected=False)

        matched = [phrase for phrase in self.keywords if phrase in haystack]
        return CrisisResult(detected=bool(matched), keywords=matched)
