"""
Revenue forecaster for a single match.

Estimates the client's size and service mix, prices each service from
Canadian market rate bands, and projects revenue month by month. Market
factors (province, season, industry trends), four named scenarios and
confidence bands are layered on top of the probability-adjusted base.

Usage:
    forecaster = RevenueForecaster(store, cache)
    forecast = await forecaster.forecast('match-123', months=12)
    forecast['base_projections']['probability_adjusted']['annual_total']
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from django.utils import timezone

from .cache import TTLCache
from .conf import get_engine_config
from .exceptions import NotFoundError, ValidationError
from .schemas import ClientData, ProviderData
from .store import OutcomeStore

logger = logging.getLogger(__name__)


BASE_RATES = {
    'tax_preparation': {'min': 150, 'avg': 300, 'max': 800},
    'bookkeeping': {'min': 50, 'avg': 85, 'max': 150},
    'financial_statements': {'min': 1500, 'avg': 3500, 'max': 8000},
    'business_consulting': {'min': 200, 'avg': 400, 'max': 1000},
    'audit_assurance': {'min': 5000, 'avg': 15000, 'max': 50000},
    'payroll_services': {'min': 75, 'avg': 125, 'max': 250},
}

SIZE_MULTIPLIERS = {
    'startup': 0.8,
    'small': 1.0,
    'medium': 1.5,
    'large': 2.5,
    'enterprise': 4.0,
}

# (upper bound on annual revenue, size)
SIZE_THRESHOLDS = [
    (100_000, 'startup'),
    (1_000_000, 'small'),
    (10_000_000, 'medium'),
    (100_000_000, 'large'),
]

DEFAULT_SERVICE_DEMAND = {
    'tax_preparation': 0.9,
    'bookkeeping': 0.8,
    'financial_statements': 0.6,
    'business_consulting': 0.4,
    'payroll_services': 0.5,
}

ANNUAL_VOLUME = {
    'tax_preparation': {'startup': 1, 'small': 2, 'medium': 4, 'large': 8, 'enterprise': 12},
    'bookkeeping': {'startup': 12, 'small': 12, 'medium': 12, 'large': 12, 'enterprise': 12},
    'financial_statements': {'startup': 1, 'small': 2, 'medium': 4, 'large': 4, 'enterprise': 4},
    'business_consulting': {'startup': 2, 'small': 4, 'medium': 8, 'large': 12, 'enterprise': 24},
    'payroll_services': {'startup': 12, 'small': 12, 'medium': 12, 'large': 12, 'enterprise': 12},
    'audit_assurance': {'startup': 1, 'small': 1, 'medium': 1, 'large': 1, 'enterprise': 1},
}

PROJECT_SERVICES = {'tax_preparation', 'financial_statements', 'audit_assurance'}

PROVINCIAL_MULTIPLIERS = {
    'ON': 1.15, 'BC': 1.10, 'AB': 1.05, 'QC': 1.08,
    'NS': 0.95, 'NB': 0.92, 'MB': 0.95, 'SK': 0.93,
    'PE': 0.90, 'NL': 0.88, 'NT': 1.20, 'NU': 1.25, 'YT': 1.15,
}

SEASONAL_MULTIPLIERS = {'Q1': 1.25, 'Q2': 0.85, 'Q3': 0.90, 'Q4': 1.15}

MARKET_TRENDS = {
    'digital_transformation': 1.15,
    'compliance_complexity': 1.08,
    'remote_work_impact': 1.05,
}

Z_VALUES = {'confidence_95': 1.96, 'confidence_80': 1.28, 'confidence_50': 0.67}

DEFAULT_CLIENT_REVENUE = 50_000
DEFAULT_PROVINCE = 'ON'
MAX_FORECAST_MONTHS = 60


def business_size(annual_revenue: Optional[float]) -> str:
    revenue = annual_revenue if annual_revenue else DEFAULT_CLIENT_REVENUE
    for upper, size in SIZE_THRESHOLDS:
        if revenue < upper:
            return size
    return 'enterprise'


def season_for(moment: datetime) -> str:
    return f"Q{(moment.month - 1) // 3 + 1}"


def complexity_multiplier(years: Optional[int], quality: Optional[float]) -> float:
    years = years if years is not None else 5
    quality = quality if quality is not None else 5
    return 0.8 + years / 20 + quality / 50


def monthly_growth_rate(quality: Optional[float], probability: float) -> float:
    quality = quality if quality is not None else 5
    return max(0.0, 0.02 + (quality - 5) / 100 + (probability - 0.5) * 0.02)


def monthly_projections(ongoing: float, project: float, growth: float, months: int) -> List[dict]:
    """Ongoing revenue compounds monthly; project revenue spreads over the first year."""
    projections = []
    cumulative = 0
    monthly_ongoing = ongoing / 12
    for month in range(1, months + 1):
        ongoing_month = monthly_ongoing * (1 + growth) ** (month - 1)
        project_month = project / 12 if month <= 12 else 0.0
        total = round(ongoing_month + project_month)
        cumulative += total
        projections.append({
            'month': month,
            'ongoing_revenue': round(ongoing_month),
            'project_revenue': round(project_month),
            'projected_revenue': total,
            'cumulative_revenue': cumulative,
        })
    return projections


def scenario_analysis(base_revenue: float, scenarios: Dict[str, dict], planning_factor: float = 0.9) -> dict:
    built = {
        name: {
            'multiplier': params['multiplier'],
            'probability': params['probability'],
            'annual_revenue': round(base_revenue * params['multiplier']),
        }
        for name, params in scenarios.items()
    }
    weighted = sum(s['annual_revenue'] * s['probability'] for s in built.values())
    revenues = [s['annual_revenue'] for s in built.values()]
    return {
        'scenarios': built,
        'weighted_average_revenue': round(weighted),
        'scenario_range': {
            'min': min(revenues),
            'max': max(revenues),
            'spread': max(revenues) - min(revenues),
        },
        'recommended_planning_revenue': round(weighted * planning_factor),
    }


def confidence_intervals(base_revenue: float, data_quality: float) -> dict:
    quality_adjustment = (1 - data_quality) * 0.5
    sd = base_revenue * 0.25 * (1 + quality_adjustment)
    intervals = {
        name: {
            'lower_bound': round(base_revenue - z * sd),
            'upper_bound': round(base_revenue + z * sd),
            'confidence_level': float(name.split('_')[1]) / 100,
        }
        for name, z in Z_VALUES.items()
    }
    intervals['standard_deviation'] = round(sd)
    intervals['data_quality_impact'] = round(quality_adjustment, 4)
    return intervals


class RevenueForecaster:
    """Per-match revenue projections with market, scenario and confidence layers."""

    def __init__(
        self,
        store: OutcomeStore,
        cache: Optional[TTLCache] = None,
        config: Optional[dict] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.cache = cache if cache is not None else TTLCache()
        self.config = config or get_engine_config()
        self.clock = clock

    async def forecast(self, match_id: str, months: int = 12, include_market_factors: bool = True,
                       bypass_cache: bool = False) -> dict:
        if not match_id:
            raise ValidationError("match_id is required")
        if not isinstance(months, int) or not 1 <= months <= MAX_FORECAST_MONTHS:
            raise ValidationError(f"months must be between 1 and {MAX_FORECAST_MONTHS}")

        key = f"forecast:{match_id}:{months}:{int(include_market_factors)}"
        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return {**cached, 'from_cache': True}

        outcome = await self.store.get_outcome(match_id)
        if outcome is None:
            raise NotFoundError(f"unknown match {match_id}", match_id=match_id)

        provider_row = await self.store.get_provider_profile(outcome.provider_id)
        client_row = await self.store.get_client_profile(outcome.client_id)
        provider = ProviderData.from_model(provider_row) if provider_row else None
        client = ClientData.from_model(client_row) if client_row else None
        prediction = await self.store.get_prediction(match_id)
        interactions = await self.store.get_interactions(match_id)

        quality_scores = [i.quality_score for i in interactions if i.quality_score is not None]
        avg_quality = sum(quality_scores) / len(quality_scores) if quality_scores else None
        probability = (
            prediction.partnership_probability if prediction is not None
            else self.config['default_partnership_probability']
        )

        base = self.base_projections(client, provider, avg_quality, probability, months)
        adjusted_total = base['probability_adjusted']['annual_total']
        data_quality = self.data_quality(provider, prediction, avg_quality)

        forecast = {
            'match_id': match_id,
            'forecast_period_months': months,
            'base_projections': base,
            'market_adjustments': (
                self.market_adjustments(base, client, provider) if include_market_factors else None
            ),
            'scenario_analysis': scenario_analysis(
                adjusted_total, self.config['scenarios'], self.config['planning_factor']
            ),
            'confidence_intervals': confidence_intervals(adjusted_total, data_quality),
            'forecast_metadata': {
                'generated_at': self.clock().isoformat(),
                'data_quality_score': round(data_quality, 2),
                'forecast_confidence': round(
                    data_quality * 0.5 + min(0.3, len(interactions) / 20 * 0.3) + probability * 0.2, 4
                ),
                'total_interactions': len(interactions),
            },
            'from_cache': False,
        }
        logger.info(f"Forecast for {match_id}: annual_total={adjusted_total}")
        self.cache.set(key, forecast, self.config['cache_ttl_seconds']['forecast'])
        return forecast

    def base_projections(self, client: Optional[ClientData], provider: Optional[ProviderData],
                         avg_quality: Optional[float], probability: float, months: int) -> dict:
        size = business_size(client.annual_revenue if client else None)
        years = provider.years_experience if provider else None
        complexity = complexity_multiplier(years, avg_quality)

        demand = dict(DEFAULT_SERVICE_DEMAND)
        for service in (client.services_needed if client else []):
            if service in BASE_RATES:
                demand[service] = 1.0

        services = {}
        project_total = 0
        ongoing_total = 0
        for service, service_demand in demand.items():
            if service_demand <= 0:
                continue
            rate = BASE_RATES[service]['avg'] * complexity * SIZE_MULTIPLIERS[size]
            volume = ANNUAL_VOLUME.get(service, {}).get(size, 1)
            annual = round(rate * volume * service_demand)
            service_type = 'project' if service in PROJECT_SERVICES else 'ongoing'
            services[service] = {
                'rate_per_service': round(rate),
                'annual_volume': volume,
                'demand': service_demand,
                'annual_revenue': annual,
                'service_type': service_type,
            }
            if service_type == 'project':
                project_total += annual
            else:
                ongoing_total += annual

        growth = monthly_growth_rate(avg_quality, probability)
        projections = monthly_projections(ongoing_total, project_total, growth, months)
        for month in projections:
            month['adjusted_revenue'] = round(month['projected_revenue'] * probability)

        adjusted_project = round(project_total * probability)
        adjusted_ongoing = round(ongoing_total * probability)
        return {
            'raw_projections': {
                'annual_project_revenue': project_total,
                'annual_ongoing_revenue': ongoing_total,
                'annual_total': project_total + ongoing_total,
            },
            'probability_adjusted': {
                'annual_project_revenue': adjusted_project,
                'annual_ongoing_revenue': adjusted_ongoing,
                'annual_total': adjusted_project + adjusted_ongoing,
            },
            'service_breakdown': services,
            'monthly_projections': projections,
            'projection_factors': {
                'hourly_rate': provider.hourly_rate if provider else None,
                'experience_years': years,
                'business_size': size,
                'complexity_multiplier': round(complexity, 4),
                'partnership_probability': probability,
                'monthly_growth_rate': round(growth, 4),
            },
        }

    def market_adjustments(self, base: dict, client: Optional[ClientData], provider: Optional[ProviderData]) -> dict:
        province = (client.province if client and client.province else None) \
            or (provider.province if provider and provider.province else None) \
            or DEFAULT_PROVINCE
        season = season_for(self.clock())
        provincial = PROVINCIAL_MULTIPLIERS.get(province, 1.0)
        seasonal = SEASONAL_MULTIPLIERS[season]
        trend = 1.0
        for factor in MARKET_TRENDS.values():
            trend *= factor
        multiplier = provincial * seasonal * trend

        adjusted = base['probability_adjusted']
        return {
            'market_multiplier': round(multiplier, 4),
            'adjustment_factors': {
                'provincial_factor': provincial,
                'seasonal_factor': seasonal,
                'trend_factor': round(trend, 4),
                'province': province,
                'season': season,
            },
            'adjusted_projections': {
                'annual_total': round(adjusted['annual_total'] * multiplier),
                'annual_project_revenue': round(adjusted['annual_project_revenue'] * multiplier),
                'annual_ongoing_revenue': round(adjusted['annual_ongoing_revenue'] * multiplier),
                'monthly_projections': [
                    {**m, 'market_adjusted_revenue': round(m['adjusted_revenue'] * multiplier)}
                    for m in base['monthly_projections']
                ],
            },
        }

    @staticmethod
    def data_quality(provider: Optional[ProviderData], prediction, avg_quality: Optional[float]) -> float:
        score = 0.0
        if provider is not None and provider.hourly_rate:
            score += 0.2
        if provider is not None and provider.years_experience is not None:
            score += 0.2
        if provider is not None and provider.specializations:
            score += 0.2
        if prediction is not None:
            score += 0.2
        if avg_quality is not None:
            score += 0.2
        return min(1.0, score)
