"""Match confidence scoring for raw hits.

Two stages. An exact email or phone match is a hard identifier and scores
100 outright unless the listing carries a different name. Otherwise the
name, contact and locality factors each get a match strength in [0, 1]
and are combined with configurable weights into a 0-100 score.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from engine.db.database import utcnow
from sources.base import IdentityProfile, RawHit

logger = logging.getLogger(__name__)

AUTO_PROCEED_THRESHOLD = 80
MANUAL_REVIEW_THRESHOLD = 40


class Classification(str, Enum):
    AUTO_PROCEED = "AUTO_PROCEED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    REJECT = "REJECT"


CLASSIFICATION_RANK = {
    Classification.REJECT: 0,
    Classification.NEEDS_REVIEW: 1,
    Classification.AUTO_PROCEED: 2,
}


def classify(score: int) -> Classification:
    if score >= AUTO_PROCEED_THRESHOLD:
        return Classification.AUTO_PROCEED
    if score >= MANUAL_REVIEW_THRESHOLD:
        return Classification.NEEDS_REVIEW
    return Classification.REJECT


@dataclass(frozen=True)
class ScoringWeights:
    """Points each factor contributes at full strength.

    These are product-calibrated values, not derived ones.
    """
    name: float = 40.0
    contact: float = 35.0
    locality: float = 25.0

    def __post_init__(self):
        if min(self.name, self.contact, self.locality) < 0:
            raise ValueError("Scoring weights must be non-negative")

    def combine(self, strengths: dict[str, float]) -> int:
        total = sum(getattr(self, factor) * strength for factor, strength in strengths.items())
        return max(0, min(100, round(total)))


@dataclass(frozen=True)
class FactorReason:
    """How one identity field compared against the listing."""
    factor: str
    applicable: bool
    strength: float
    detail: str

    def to_dict(self) -> dict:
        return {
            "factor": self.factor,
            "applicable": self.applicable,
            "strength": self.strength,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ConfidenceResult:
    score: int
    classification: Classification
    factors: dict = field(default_factory=dict)
    reasoning: tuple[FactorReason, ...] = ()
    validated_at: datetime = field(default_factory=utcnow)

    def reasoning_dicts(self) -> list[dict]:
        return [r.to_dict() for r in self.reasoning]


class Scorer(Protocol):
    def score(self, hit: RawHit, identity: IdentityProfile) -> ConfidenceResult:
        ...


def _normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[^a-z\s]", "", (name or "").lower())).strip()


def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")[-10:]


def relevant_identity(identity: IdentityProfile, data_type: str) -> IdentityProfile:
    """The identity fields a hit of ``data_type`` can be checked against."""
    named = dict(full_name=identity.full_name, aliases=identity.aliases)
    if data_type == "EMAIL":
        return IdentityProfile(emails=identity.emails, **named)
    if data_type == "PHONE":
        return IdentityProfile(phones=identity.phones, **named)
    if data_type == "ADDRESS":
        return IdentityProfile(addresses=identity.addresses, **named)
    return identity


def name_factor(identity: IdentityProfile, listed_name: Optional[str]) -> FactorReason:
    if not listed_name or not identity.full_name:
        return FactorReason("name", False, 0.0, "No name to compare")

    listed = _normalize_name(listed_name)
    profile = _normalize_name(identity.full_name)
    listed_parts, profile_parts = listed.split(), profile.split()

    if listed == profile:
        return FactorReason("name", True, 1.0, "Exact name match")
    if any(_normalize_name(alias) == listed for alias in identity.aliases):
        return FactorReason("name", True, 0.9, "Matches a known alias")
    if not listed_parts or not profile_parts:
        return FactorReason("name", True, 0.0, "Name mismatch")

    same_first = listed_parts[0] == profile_parts[0]
    same_last = listed_parts[-1] == profile_parts[-1]
    if same_first and same_last:
        return FactorReason("name", True, 0.85, "First and last name match")
    if same_last and len(profile_parts[-1]) > 2:
        return FactorReason("name", True, 0.4, "Last name match only")
    if same_first and len(profile_parts[0]) > 2:
        return FactorReason("name", True, 0.25, "First name match only")
    return FactorReason("name", True, 0.0, "Name mismatch")


def contact_factor(identity: IdentityProfile, listing: dict) -> tuple[FactorReason, Optional[str]]:
    """Contact factor plus the hard identifier that matched exactly, if any."""
    listed_emails = [e.lower().strip() for e in listing.get("emails") or [] if e]
    listed_phones = [_digits(p) for p in listing.get("phones") or [] if _digits(p)]
    profile_emails = [e.lower().strip() for e in identity.emails]
    profile_phones = [_digits(p) for p in identity.phones if _digits(p)]

    if not ((listed_emails and profile_emails) or (listed_phones and profile_phones)):
        return FactorReason("contact", False, 0.0, "No email or phone to compare"), None

    if any(e in profile_emails for e in listed_emails):
        return FactorReason("contact", True, 1.0, "Exact email match"), "email"
    if any(p in profile_phones for p in listed_phones):
        return FactorReason("contact", True, 1.0, "Exact phone match"), "phone"

    profile_domains = {e.split("@")[-1] for e in profile_emails}
    if any(len(p) >= 7 and any(q.endswith(p[-7:]) for q in profile_phones) for p in listed_phones):
        return FactorReason("contact", True, 0.4, "Phone partial match (last 7 digits)"), None
    if any("@" in e and e.split("@")[-1] in profile_domains for e in listed_emails):
        return FactorReason("contact", True, 0.4, "Email domain match"), None
    return FactorReason("contact", True, 0.0, "Email and phone differ"), None


def locality_factor(identity: IdentityProfile, listing: dict) -> FactorReason:
    street = (listing.get("street") or "").lower().strip()
    city = (listing.get("city") or "").lower().strip()
    state = (listing.get("state") or "").lower().strip()
    if not (street or city or state) or not identity.addresses:
        return FactorReason("locality", False, 0.0, "No location to compare")

    best = FactorReason("locality", True, 0.0, "Location differs")
    for address in identity.addresses:
        same_street = bool(street) and street == address.street.lower().strip()
        same_city = bool(city) and city == address.city.lower().strip()
        same_state = bool(state) and state == address.state.lower().strip()

        if same_street and same_city and same_state:
            return FactorReason("locality", True, 1.0, "Street, city and state match")
        if same_city and same_state:
            candidate = FactorReason("locality", True, 0.8, "City and state match")
        elif same_state:
            candidate = FactorReason("locality", True, 0.5, "State match only")
        elif same_city:
            candidate = FactorReason("locality", True, 0.3, "City match only")
        else:
            continue
        if candidate.strength > best.strength:
            best = candidate
    return best


def _reject(detail: str) -> ConfidenceResult:
    return ConfidenceResult(
        score=0,
        classification=Classification.REJECT,
        factors={},
        reasoning=(FactorReason("input", False, 0.0, detail),),
    )


class ConfidenceScorer:
    """Scores raw hits against the identity being scanned for."""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def score(self, hit: RawHit, identity: IdentityProfile) -> ConfidenceResult:
        if identity is None or identity.is_empty():
            return _reject("No identity fields to score against")
        if not isinstance(hit, RawHit) or not hit.source:
            return _reject("Malformed hit")
        if hit.listing is not None and not isinstance(hit.listing, dict):
            return _reject("Malformed listing")

        listing = hit.listing or {}
        subset = relevant_identity(identity, hit.data_type)

        name = name_factor(subset, listing.get("name"))
        contact, hard_identifier = contact_factor(subset, listing)
        locality = locality_factor(subset, listing)
        reasoning = (name, contact, locality)
        strengths = {r.factor: r.strength for r in reasoning}

        name_conflicts = name.applicable and name.strength < 0.85
        if hard_identifier and not name_conflicts:
            return ConfidenceResult(
                score=100,
                classification=Classification.AUTO_PROCEED,
                factors={**strengths, "hard_identifier": hard_identifier},
                reasoning=reasoning,
            )

        score = self.weights.combine(strengths)
        return ConfidenceResult(
            score=score,
            classification=classify(score),
            factors=strengths,
            reasoning=reasoning,
        )


def apply_confidence(exposure, result: ConfidenceResult) -> None:
    """Copy a confidence result onto an exposure row."""
    exposure.confidence_score = result.score
    exposure.confidence_classification = result.classification.value
    exposure.confidence_factors = dict(result.factors)
    exposure.confidence_reasoning = result.reasoning_dicts()
    exposure.confidence_validated_at = result.validated_at


def hit_from_exposure(exposure) -> RawHit:
    return RawHit(
        source=exposure.source,
        source_name=exposure.source_name,
        source_url=exposure.source_url,
        data_type=exposure.data_type,
        data_preview=exposure.data_preview,
        severity=exposure.severity,
        listing=exposure.listing,
    )


def rescore_exposure(exposure, identity: IdentityProfile, scorer: Optional[Scorer] = None) -> ConfidenceResult:
    """Re-validate a stored exposure with the same thresholds used at scan time.

    A match the user already confirmed keeps its cleared manual-action flag.
    """
    scorer = scorer or ConfidenceScorer()
    result = scorer.score(hit_from_exposure(exposure), identity)
    apply_confidence(exposure, result)
    if not exposure.user_confirmed:
        exposure.requires_manual_action = result.classification != Classification.AUTO_PROCEED
    logger.debug("Rescored exposure %s: %s (%d)", exposure.id, result.classification.value, result.score)
    return result
