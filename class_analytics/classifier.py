"""Behavior event classification: positive / negative / neutral."""

import re
from typing import Iterable, Optional, Sequence, Tuple

from pydantic import BaseModel

from class_analytics.models import ABSENCE_KEYWORD, EventCategory


class ClassificationRule(BaseModel):
    """
    One vocabulary entry.

    A rule matches when its pattern is a substring of the normalized event
    type. If any of its exceptions also matches, the rule yields
    `exception_category` instead. `justification_exempts` makes a non-empty
    justification text (that is not itself a denial) count as an exception.
    """
    pattern: str
    category: EventCategory
    exceptions: Tuple[str, ...] = ()
    exception_category: EventCategory = EventCategory.NEUTRAL
    justification_exempts: bool = False


# Phrases in a justification cell that mean "not justified".
JUSTIFICATION_DENIALS: Tuple[str, ...] = ("ללא", "לא מוצדק")

NEGATIVE_TERMS: Tuple[str, ...] = (
    "איחור",
    "הפרעה",
    "אי הכנת",  # covers "אי הכנת שיעורים" and "אי הכנת ש.ב"
    "ללא ציוד",
    "אי הבאת ציוד",
    "הוצאה",
    "שיחת משמעת",
    "פטפוט",
    "שוטטות",
    "אי השתתפות",
    "חוצפה",
    "אלימות",
    "חוסר ציוד",
)

POSITIVE_TERMS: Tuple[str, ...] = (
    "מילה טובה",
    "הצטיינות",
    "חיזוק",
    "פרגון",
    "תפילה",
    "הגעה בזמן",
    "שיפור",
    "השתתפות טובה",
    "השתתפות פעילה",
    "לבוש הולם",
    "שותף במהלך השיעור",
    "שותף בשיעור",
)

# Negative rules come first so that negative wins on overlap.
DEFAULT_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        pattern=ABSENCE_KEYWORD,
        category=EventCategory.NEGATIVE,
        exceptions=("מוצדק",),
        justification_exempts=True,
    ),
    *(ClassificationRule(pattern=term, category=EventCategory.NEGATIVE) for term in NEGATIVE_TERMS),
    *(ClassificationRule(pattern=term, category=EventCategory.POSITIVE) for term in POSITIVE_TERMS),
)

_INVISIBLE = re.compile(r"[\u200B-\u200F\u202A-\u202E\u2066-\u2069\uFEFF]")
_QUOTES = re.compile(r"['\"׳״]")
_WHITESPACE = re.compile(r"\s+")


def normalize_event_type(raw_type: Optional[str]) -> str:
    """Strip invisible marks and quotes, collapse whitespace."""
    if not raw_type:
        return ""
    text = _INVISIBLE.sub("", str(raw_type))
    text = _QUOTES.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def is_justified(justification: Optional[str],
                 denials: Iterable[str] = JUSTIFICATION_DENIALS) -> bool:
    text = (justification or "").strip()
    return bool(text) and not any(denial in text for denial in denials)


class EventClassifier:
    """Maps a free-text event label to a category using an ordered rule table."""

    def __init__(self, rules: Sequence[ClassificationRule] = DEFAULT_RULES,
                 justification_denials: Sequence[str] = JUSTIFICATION_DENIALS):
        self.rules = tuple(rules)
        self.justification_denials = tuple(justification_denials)

    def _first_match(self, normalized: str, category: EventCategory) -> Optional[ClassificationRule]:
        for rule in self.rules:
            if rule.category == category and rule.pattern in normalized:
                return rule
        return None

    def _is_denial(self, text: str) -> bool:
        # "חיסור לא מוצדק" contains "מוצדק" but is not excused.
        return any(denial in text for denial in self.justification_denials)

    def classify(self, raw_type: Optional[str], justification: Optional[str] = "") -> EventCategory:
        """
        Classify one event.

        Args:
            raw_type: Event type label as exported
            justification: Free-text justification cell

        Returns:
            The event's category
        """
        normalized = normalize_event_type(raw_type)
        if not normalized:
            return EventCategory.NEUTRAL

        negatives = [
            rule for rule in self.rules
            if rule.category == EventCategory.NEGATIVE and rule.pattern in normalized
        ]
        if negatives:
            denied = self._is_denial(normalized)
            for rule in negatives:
                if not denied and any(exc in normalized for exc in rule.exceptions):
                    return rule.exception_category
                if rule.justification_exempts and is_justified(justification, self.justification_denials):
                    return rule.exception_category
            return EventCategory.NEGATIVE

        if self._first_match(normalized, EventCategory.POSITIVE) is not None:
            return EventCategory.POSITIVE

        return EventCategory.NEUTRAL


default_classifier = EventClassifier()


def categorize_event(raw_type: Optional[str], justification: Optional[str] = "") -> EventCategory:
    """Classify with the default Hebrew vocabulary."""
    return default_classifier.classify(raw_type, justification)
