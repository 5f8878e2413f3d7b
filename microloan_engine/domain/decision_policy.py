"""Automatic decision policy: risk band -> outcome.

No band is ever approved automatically. Bands A and B are pre-approved and
parked as ``observed`` until a reviewer confirms them; only a manual decision
can produce ``approved``.
"""

from dataclasses import dataclass
from typing import Dict
from microloan_engine.domain.models import DecisionResult


@dataclass(frozen=True)
class BandOutcome:
    result: DecisionResult
    comments: str


AUTOMATIC_DECISION_POLICY: Dict[str, BandOutcome] = {
    "A": BandOutcome(
        DecisionResult.OBSERVED,
        "Automatically pre-approved - Band A: excellent credit profile. "
        "Final approval by an analyst is required.",
    ),
    "B": BandOutcome(
        DecisionResult.OBSERVED,
        "Automatically pre-approved - Band B: good credit profile. "
        "Final approval by an analyst is required.",
    ),
    "C": BandOutcome(
        DecisionResult.OBSERVED,
        "Manual review required - Band C: moderate credit profile",
    ),
    "D": BandOutcome(
        DecisionResult.REJECTED,
        "Automatic rejection - Band D: insufficient credit profile. May be reviewed manually.",
    ),
}

DEFAULT_APPROVAL_COMMENT = "Approved after analyst review"


def outcome_for_band(band: str) -> BandOutcome:
    """Unknown bands fall back to the most conservative outcome"""
    return AUTOMATIC_DECISION_POLICY.get(band, AUTOMATIC_DECISION_POLICY["D"])
