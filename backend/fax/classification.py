"""Opportunity-type classification.

The store only carries free-text opportunity types (``ndc_optimization``,
``therapeutic_interchange``, ``Brand to Generic`` ...). This module infers
the change kind used to pre-check a response checkbox. It is kept apart from
rendering so a stored enum can replace it later.
"""
from typing import Optional

from backend.models.enums import ChangeKind

_GENERIC_KEYWORDS = ("generic", "brand_to_generic", "brand to generic", "ndc", "biosimilar")
_THERAPEUTIC_KEYWORDS = ("therapeutic", "interchange", "alternative", "class", "switch")
_FORMULARY_KEYWORDS = ("formulary", "tier", "coverage", "preferred", "missing_therapy", "combo")


def _normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower().replace("-", "_")


def classify_change(
    opportunity_type: Optional[str],
    current_drug: Optional[str] = None,
    recommended_drug: Optional[str] = None,
) -> ChangeKind:
    """
    Infer the kind of change an opportunity proposes.

    Keyword matches on the type win, checked generic first. With no type
    match, two drug names that share their first word (same molecule,
    different product) count as a generic substitution.
    """
    kind = _normalize(opportunity_type)
    spaced = kind.replace("_", " ")

    if any(k in kind or k in spaced for k in _GENERIC_KEYWORDS):
        return ChangeKind.GENERIC_SUBSTITUTION
    if any(k in kind or k in spaced for k in _THERAPEUTIC_KEYWORDS):
        return ChangeKind.THERAPEUTIC_ALTERNATIVE
    if any(k in kind or k in spaced for k in _FORMULARY_KEYWORDS):
        return ChangeKind.FORMULARY_CHANGE

    current_words = _normalize(current_drug).split()
    recommended_words = _normalize(recommended_drug).split()
    if current_words and recommended_words:
        if current_words[0] == recommended_words[0]:
            return ChangeKind.GENERIC_SUBSTITUTION
        return ChangeKind.THERAPEUTIC_ALTERNATIVE

    return ChangeKind.UNCLASSIFIED
