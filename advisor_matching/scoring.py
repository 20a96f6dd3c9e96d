"""
Factor scorer for provider/client pairs.

Each factor is a pure function of the two profiles returning a value in
[0, 1] plus whether it had to fall back to its neutral default. The total is
a weighted mean of the factor values, scaled to 0-100, using the learned
factor weights.

Usage:
    scorer = FactorScorer()
    result = scorer.score(client, provider, {'industry_expertise': 1.1})
    result.total_score      # 0-100
    result.factor_values    # {'industry_expertise': 1.0, ...}
"""

from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, List, Mapping, Optional, Tuple
import logging

from .schemas import ClientData, ProviderData

logger = logging.getLogger(__name__)

FactorResult = Tuple[float, bool]

MIN_EFFECTIVE_WEIGHT = 0.1
DEFAULT_WEIGHT = 1.0


@dataclass
class FactorScore:
    """One factor's contribution to a match score."""
    raw_score: float
    weight: float
    weighted_score: float
    contribution: float  # percent of the total weighted score
    used_default: bool = False


@dataclass
class ScoreResult:
    """Complete breakdown of a provider/client match score."""
    total_score: float  # 0-100 scale
    breakdown: Dict[str, FactorScore]
    confidence: float
    defaults_used: List[str] = field(default_factory=list)

    @property
    def factor_values(self) -> Dict[str, float]:
        return {name: f.raw_score for name, f in self.breakdown.items()}

    def top_factors(self, n: int = 3) -> List[str]:
        ranked = sorted(
            self.breakdown.items(),
            key=lambda item: (item[1].weighted_score, item[0]),
            reverse=True,
        )
        return [name for name, _ in ranked[:n]]

    def to_dict(self) -> dict:
        return {
            'total_score': self.total_score,
            'breakdown': {name: asdict(f) for name, f in self.breakdown.items()},
            'confidence': self.confidence,
            'defaults_used': list(self.defaults_used),
        }


# =============================================================================
# FACTOR FUNCTIONS
# =============================================================================

def _provider_terms(provider: ProviderData) -> List[str]:
    return [t.lower().strip() for t in provider.specializations + provider.industries_served if t and t.strip()]


def industry_expertise(client: ClientData, provider: ProviderData) -> FactorResult:
    terms = _provider_terms(provider)
    if not client.industry or not (terms or provider.bio):
        return 0.5, True

    industry = client.industry.lower().strip()
    provider_text = ' '.join(terms + [provider.bio.lower()])

    if industry in provider_text or any(term in industry for term in terms):
        return 1.0, False
    if 'tech' in industry and 'tech' in provider_text:
        return 0.9, False
    if 'general' in provider_text or 'business' in provider_text:
        return 0.7, False
    return 0.6, False


def geographic_proximity(client: ClientData, provider: ProviderData) -> FactorResult:
    if not client.province or not provider.province:
        return 0.5, True
    if client.province != provider.province:
        return 0.4, False
    if client.city and provider.city and client.city.strip().lower() == provider.city.strip().lower():
        return 1.0, False
    return 0.8, False


def business_size_match(client: ClientData, provider: ProviderData) -> FactorResult:
    employees = client.employee_count
    years = provider.years_experience
    if employees is None or years is None:
        return 0.7, True

    if employees <= 10 and years >= 3:
        return 1.0, False
    if employees <= 50 and years >= 5:
        return 0.9, False
    if employees <= 100 and years >= 7:
        return 0.8, False
    if employees > 100 and years >= 10:
        return 0.9, False
    return 0.6, False


def service_specialization(client: ClientData, provider: ProviderData) -> FactorResult:
    complexity = client.complexity_level
    years = provider.years_experience
    if not complexity or years is None:
        return 0.7, True

    if complexity == 'low' and years >= 2:
        return 1.0, False
    if complexity == 'medium' and years >= 5:
        return 1.0, False
    if complexity == 'high':
        if years >= 8:
            return 1.0, False
        if years >= 5:
            return 0.8, False
    return 0.7, False


def availability_capacity(client: ClientData, provider: ProviderData) -> FactorResult:
    if not provider.accepting_clients:
        return 0.0, False
    capacity = provider.current_capacity
    if capacity is None:
        return 0.7, True
    if capacity >= 5:
        return 1.0, False
    if capacity >= 3:
        return 0.8, False
    if capacity >= 1:
        return 0.6, False
    return 0.3, False


def track_record(client: ClientData, provider: ProviderData) -> FactorResult:
    rating = provider.average_rating
    used_default = rating is None
    if used_default:
        rating = 5.0
    value = rating / 5.0 + min(provider.total_matches / 20.0, 0.2)
    return min(1.0, value), used_default


def experience_level(client: ClientData, provider: ProviderData) -> FactorResult:
    if provider.years_experience is None:
        return 0.5, True
    return min(1.0, provider.years_experience / 10.0), False


def communication_style(client: ClientData, provider: ProviderData) -> FactorResult:
    client_known = bool(client.preferred_channel or client.communication_style)
    provider_known = bool(provider.preferred_channel or provider.communication_style)
    if not client_known or not provider_known:
        return 0.75, True

    same_channel = client.preferred_channel and client.preferred_channel == provider.preferred_channel
    same_style = (
        client.communication_style
        and client.communication_style.lower() == provider.communication_style.lower()
    )
    if same_channel or same_style:
        return 1.0, False
    return 0.6, False


FACTORS: Dict[str, Callable[[ClientData, ProviderData], FactorResult]] = {
    'industry_expertise': industry_expertise,
    'geographic_proximity': geographic_proximity,
    'business_size_match': business_size_match,
    'service_specialization': service_specialization,
    'availability_capacity': availability_capacity,
    'track_record': track_record,
    'experience_level': experience_level,
    'communication_style': communication_style,
}

FACTOR_NAMES = list(FACTORS)

FACTOR_LABELS = {
    'industry_expertise': 'Industry expertise match',
    'geographic_proximity': 'Geographic proximity',
    'business_size_match': 'Experience with businesses of this size',
    'service_specialization': 'Experience with this level of complexity',
    'availability_capacity': 'Availability for new clients',
    'track_record': 'Strong client track record',
    'experience_level': 'Years of experience',
    'communication_style': 'Compatible communication style',
}


def compute_factor_values(client: ClientData, provider: ProviderData) -> Dict[str, float]:
    """Raw factor values for a pair, without weighting."""
    return {name: fn(client, provider)[0] for name, fn in FACTORS.items()}


class FactorScorer:
    """
    Weighted multi-factor scorer.

    Pure and deterministic: the same profiles and weights always produce the
    same ScoreResult. Weights at or below 0.1 are raised to 0.1; factors
    with no weight use 1.0.
    """

    def score(
        self,
        client: ClientData,
        provider: ProviderData,
        weights: Optional[Mapping[str, float]] = None,
    ) -> ScoreResult:
        weights = weights or {}
        values: Dict[str, float] = {}
        defaults_used: List[str] = []

        for name, fn in FACTORS.items():
            value, used_default = fn(client, provider)
            values[name] = max(0.0, min(1.0, value))
            if used_default:
                defaults_used.append(name)

        effective = {
            name: max(MIN_EFFECTIVE_WEIGHT, float(weights.get(name, DEFAULT_WEIGHT)))
            for name in FACTORS
        }
        weighted = {name: values[name] * effective[name] for name in FACTORS}
        total_weighted = sum(weighted.values())
        total_weight = sum(effective.values())

        breakdown = {}
        for name in FACTORS:
            share = (weighted[name] / total_weighted * 100) if total_weighted else 0.0
            breakdown[name] = FactorScore(
                raw_score=round(values[name], 4),
                weight=round(effective[name], 4),
                weighted_score=round(weighted[name], 4),
                contribution=round(share, 2),
                used_default=name in defaults_used,
            )

        total = 100.0 * total_weighted / total_weight
        total = max(0.0, min(100.0, total))
        confidence = round(1 - (len(defaults_used) / len(FACTORS)) * 0.6, 2)

        return ScoreResult(
            total_score=round(total, 2),
            breakdown=breakdown,
            confidence=confidence,
            defaults_used=defaults_used,
        )

    def explain(self, result: ScoreResult, n: int = 3) -> List[str]:
        """Plain-language reasons for the strongest factors in ``result``."""
        reasons = []
        for name in result.top_factors(n):
            factor = result.breakdown[name]
            if factor.raw_score <= 0:
                continue
            reasons.append(f"{FACTOR_LABELS[name]} ({factor.raw_score:.0%})")
        return reasons
