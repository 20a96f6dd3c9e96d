"""
Weight learner: closes the feedback loop between match outcomes and the
factor weights used by the scorer.

A cycle runs these stages in order and aborts if any of them raises:

    AnalyzePerformance -> ComputeCorrelations -> ComputeWeightDeltas ->
    ApplySafetyBounds -> ApplyDomainAdjustments -> Persist ->
    ValidateImprovement

Weight writes happen in one atomic store call, so a failed cycle never
leaves half the factors updated.

Usage:
    learner = WeightLearner(store)
    report = await learner.run_cycle()
    report.status           # 'completed', 'insufficient_data', 'skipped' or 'failed'
"""

import logging
import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from django.utils import timezone

from .conf import get_engine_config
from .exceptions import ComputationError, InsufficientDataError, StoreError
from .schemas import ClientData, ProviderData
from .scoring import FACTOR_NAMES, FACTORS
from .store import OutcomeStore, WeightUpdate

logger = logging.getLogger(__name__)


# Market priors a small sample must not erode: factor -> {'min': x, 'max': y}
DOMAIN_WEIGHT_BOUNDS: Dict[str, Dict[str, float]] = {
    'geographic_proximity': {'min': 0.8},
    'industry_expertise': {'min': 0.9},
    'experience_level': {'max': 1.3},
    'communication_style': {'min': 0.7},
}

# (grade, minimum success rate percent, minimum mean satisfaction)
PERFORMANCE_GRADES = [
    ('A+', 85, 8.5),
    ('A', 80, 8.0),
    ('B+', 75, 7.5),
    ('B', 70, 7.0),
    ('C+', 65, 6.5),
    ('C', 60, 6.0),
]

TREND_WEEKS = 12


@dataclass
class PerformanceSummary:
    sample_size: int
    successful: int
    success_rate: float
    avg_client_satisfaction: Optional[float]
    avg_provider_satisfaction: Optional[float]
    avg_revenue: Optional[float]
    grade: str
    weekly_trend: List[dict] = field(default_factory=list)
    trend_direction: str = 'stable'


@dataclass
class FactorCorrelation:
    factor_name: str
    correlation: float
    sample_size: int
    successful: int
    failed: int
    confidence: float
    error: Optional[str] = None


@dataclass
class WeightChange:
    factor_name: str
    old_weight: float
    baseline_weight: float
    new_weight: float
    delta: float
    applied: bool = False


@dataclass
class LearningReport:
    """Outcome of one learning cycle."""
    status: str
    forced: bool = False
    sample_size: int = 0
    required_sample: int = 0
    performance: Optional[dict] = None
    correlations: Dict[str, dict] = field(default_factory=dict)
    correlation_confidence: Optional[dict] = None
    updates: List[dict] = field(default_factory=list)
    validation: Optional[dict] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def updates_applied(self) -> int:
        return sum(1 for u in self.updates if u.get('applied'))

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ('started_at', 'finished_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        data['updates_applied'] = self.updates_applied
        return data


# =============================================================================
# PURE HELPERS
# =============================================================================

def pearson(xs: List[float], ys: List[float]) -> float:
    """Pearson correlation of two equal-length series."""
    n = len(xs)
    if n < 2 or n != len(ys):
        raise ComputationError(f"need two equal-length series of at least 2 points, got {n}/{len(ys)}")
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    cov = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    var_x = sum((x - mean_x) ** 2 for x in xs)
    var_y = sum((y - mean_y) ** 2 for y in ys)
    if var_x == 0 or var_y == 0:
        raise ComputationError("zero variance")
    r = cov / math.sqrt(var_x * var_y)
    if math.isnan(r):
        raise ComputationError("correlation is NaN")
    return max(-1.0, min(1.0, r))


def compute_delta(correlation: float, sample_adequate: bool, learning_rate: float, stability: float) -> float:
    """Weight delta for one factor from its success correlation."""
    if not sample_adequate or abs(correlation) < 0.3:
        return 0.0
    if correlation > 0.6:
        return learning_rate * correlation * stability
    if correlation < -0.3:
        return -learning_rate * abs(correlation) * stability
    return learning_rate * correlation * 0.5 * stability


def clamp_weight(weight: float, baseline: float, min_weight: float = 0.1,
                 max_weight: float = 2.0, max_change: float = 0.3) -> float:
    """Clamp to baseline +/- max_change, then to the global [min, max] bound."""
    weight = max(baseline * (1 - max_change), min(baseline * (1 + max_change), weight))
    return max(min_weight, min(max_weight, weight))


def apply_domain_bounds(factor_name: str, weight: float, table: Optional[Dict[str, Dict[str, float]]] = None) -> float:
    bounds = (DOMAIN_WEIGHT_BOUNDS if table is None else table).get(factor_name, {})
    if 'min' in bounds:
        weight = max(weight, bounds['min'])
    if 'max' in bounds:
        weight = min(weight, bounds['max'])
    return weight


def performance_grade(success_rate_percent: float, satisfaction: float) -> str:
    for grade, min_rate, min_satisfaction in PERFORMANCE_GRADES:
        if success_rate_percent >= min_rate and satisfaction >= min_satisfaction:
            return grade
    return 'D'


def _mean(values):
    values = [v for v in values if v is not None]
    return sum(values) / len(values) if values else None


# =============================================================================
# LEARNER
# =============================================================================

class WeightLearner:
    """
    Bounded heuristic weight adjustment driven by observed outcomes.

    Only one cycle runs at a time; a call that arrives while a cycle is in
    flight returns a ``skipped`` report without touching the store.
    """

    def __init__(
        self,
        store: OutcomeStore,
        config: Optional[dict] = None,
        clock: Callable[[], datetime] = timezone.now,
        domain_bounds: Optional[Dict[str, Dict[str, float]]] = None,
    ):
        self.store = store
        self.config = config or get_engine_config()
        self.clock = clock
        self.domain_bounds = DOMAIN_WEIGHT_BOUNDS if domain_bounds is None else domain_bounds
        self._in_flight = False

    @property
    def is_running(self) -> bool:
        return self._in_flight

    async def run_cycle(self, force: bool = False) -> LearningReport:
        """
        Run one learning cycle.

        Args:
            force: Run even when fewer than ``min_sample_size`` determined
                outcomes exist. Correlation-driven deltas still require an
                adequate sample.

        Returns:
            LearningReport. Insufficient data is reported, never raised.
            StoreError propagates after the failed run is logged.
        """
        required = self.config['min_sample_size']
        if self._in_flight:
            logger.warning("Learning cycle already in flight; skipping")
            return LearningReport(status='skipped', forced=force, required_sample=required)

        self._in_flight = True
        report = LearningReport(status='completed', forced=force, required_sample=required, started_at=self.clock())
        try:
            await self._run_stages(report, force)
        except InsufficientDataError as exc:
            report.status = 'insufficient_data'
            report.sample_size = exc.sample_size
            report.error = exc.message
            logger.info(f"Learning cycle skipped: {exc.message}")
        except StoreError as exc:
            report.status = 'failed'
            report.error = exc.message
            logger.error(f"Learning cycle aborted by store failure: {exc.message}")
            raise
        except Exception as exc:
            report.status = 'failed'
            report.error = str(exc)
            logger.exception("Learning cycle failed")
        finally:
            report.finished_at = self.clock()
            self._in_flight = False
            await self._record_run(report)

        logger.info(
            f"Learning cycle {report.status}: sample={report.sample_size}, "
            f"updates={report.updates_applied}"
        )
        return report

    async def _record_run(self, report: LearningReport) -> None:
        perf = report.performance or {}
        try:
            await self.store.record_learning_run({
                'status': report.status,
                'forced': report.forced,
                'sample_size': report.sample_size,
                'success_rate': perf.get('success_rate'),
                'updates_applied': report.updates_applied,
                'report': report.to_dict(),
                'started_at': report.started_at,
                'finished_at': report.finished_at,
            })
        except StoreError:
            logger.exception("Could not record learning cycle run")

    async def _run_stages(self, report: LearningReport, force: bool) -> None:
        since = self.clock() - timedelta(days=self.config['learning_window_days'])
        outcomes = await self.store.get_outcomes(since=since, determined_only=True)
        # Undetermined outcomes never enter the sample, whatever the store returns.
        outcomes = [o for o in outcomes if o.partnership_formed is not None]
        report.sample_size = len(outcomes)

        summary = self.analyze_performance(outcomes, force)
        report.performance = asdict(summary)

        sample_adequate = len(outcomes) >= self.config['min_sample_size']
        samples = await self._collect_factor_samples(outcomes)
        correlations = self.compute_correlations(samples)
        report.correlations = {name: asdict(c) for name, c in correlations.items()}
        report.correlation_confidence = {
            'sample_confidence': min(len(outcomes) / 100, 1.0),
            'adequate_sample': sample_adequate,
            'recommended_samples': max(self.config['min_sample_size'], math.ceil(len(outcomes) * 1.5)),
        }

        weights = await self.store.get_weights()
        changes = self.compute_weight_changes(weights, correlations, sample_adequate, summary.success_rate)

        significant = [c for c in changes if abs(c.delta) > self.config['min_weight_delta']]
        if significant:
            await self.store.apply_weight_updates([
                WeightUpdate(
                    factor_name=c.factor_name,
                    new_weight=c.new_weight,
                    delta=c.delta,
                    correlation=correlations[c.factor_name].correlation,
                    confidence=correlations[c.factor_name].confidence,
                    sample_size=correlations[c.factor_name].sample_size,
                    successful_matches=correlations[c.factor_name].successful,
                    failed_matches=correlations[c.factor_name].failed,
                )
                for c in significant
            ])
            for change in significant:
                change.applied = True
        report.updates = [asdict(c) for c in changes]

        report.validation = self.validate_improvement(samples, changes)

    # -- AnalyzePerformance ------------------------------------------------

    def analyze_performance(self, outcomes, force: bool = False) -> PerformanceSummary:
        n = len(outcomes)
        required = self.config['min_sample_size']
        if n < required and not force:
            raise InsufficientDataError(
                f"{n} determined outcomes, {required} required",
                sample_size=n,
                required=required,
            )

        successes = [o for o in outcomes if o.partnership_formed]
        success_rate = len(successes) / n if n else 0.0
        client_sat = _mean(o.client_satisfaction for o in successes)
        provider_sat = _mean(o.provider_satisfaction for o in successes)
        sat_values = [v for v in (client_sat, provider_sat) if v is not None]
        satisfaction = sum(sat_values) / len(sat_values) if sat_values else 0.0

        weekly = self._weekly_trend(outcomes)
        return PerformanceSummary(
            sample_size=n,
            successful=len(successes),
            success_rate=round(success_rate, 4),
            avg_client_satisfaction=client_sat,
            avg_provider_satisfaction=provider_sat,
            avg_revenue=_mean(o.revenue_generated for o in successes),
            grade=performance_grade(success_rate * 100, satisfaction),
            weekly_trend=weekly,
            trend_direction=self._trend_direction(weekly),
        )

    def _weekly_trend(self, outcomes) -> List[dict]:
        cutoff = self.clock() - timedelta(weeks=TREND_WEEKS)
        weeks: Dict[str, List[bool]] = defaultdict(list)
        for outcome in outcomes:
            created = outcome.created_at
            if created is None or created < cutoff:
                continue
            week_start = (created - timedelta(days=created.weekday())).date()
            weeks[week_start.isoformat()].append(bool(outcome.partnership_formed))
        return [
            {
                'week': week,
                'matches': len(results),
                'success_rate': round(sum(results) / len(results), 4),
            }
            for week, results in sorted(weeks.items())
        ]

    @staticmethod
    def _trend_direction(weekly: List[dict]) -> str:
        if len(weekly) < 2:
            return 'stable'
        half = len(weekly) // 2
        early = sum(w['success_rate'] for w in weekly[:half]) / half
        late = sum(w['success_rate'] for w in weekly[half:]) / (len(weekly) - half)
        if late - early > 0.05:
            return 'improving'
        if early - late > 0.05:
            return 'declining'
        return 'stable'

    # -- ComputeCorrelations -----------------------------------------------

    async def _collect_factor_samples(self, outcomes) -> List[Tuple[bool, Dict[str, float]]]:
        """Pair every determined outcome with its factor values."""
        providers: Dict[str, Optional[ProviderData]] = {}
        clients: Dict[str, Optional[ClientData]] = {}
        samples = []
        for outcome in outcomes:
            values = dict(outcome.factor_values or {})
            missing = [name for name in FACTOR_NAMES if name not in values]
            if missing:
                provider, client = await self._profiles_for(outcome, providers, clients)
                if provider is not None and client is not None:
                    for name in missing:
                        values[name] = FACTORS[name](client, provider)[0]
            samples.append((bool(outcome.partnership_formed), values))
        return samples

    async def _profiles_for(self, outcome, providers, clients):
        if outcome.provider_id not in providers:
            row = await self.store.get_provider_profile(outcome.provider_id)
            providers[outcome.provider_id] = ProviderData.from_model(row) if row else None
        if outcome.client_id not in clients:
            row = await self.store.get_client_profile(outcome.client_id)
            clients[outcome.client_id] = ClientData.from_model(row) if row else None
        return providers[outcome.provider_id], clients[outcome.client_id]

    def compute_correlations(self, samples) -> Dict[str, FactorCorrelation]:
        correlations = {}
        for name in FACTOR_NAMES:
            pairs = [(values[name], 1.0 if success else 0.0) for success, values in samples if name in values]
            successful = sum(1 for _, y in pairs if y)
            error = None
            try:
                r = pearson([x for x, _ in pairs], [y for _, y in pairs])
            except ComputationError as exc:
                logger.warning(f"Correlation for {name} unavailable ({exc.message}); treating as 0")
                r, error = 0.0, exc.message
            correlations[name] = FactorCorrelation(
                factor_name=name,
                correlation=round(r, 4),
                sample_size=len(pairs),
                successful=successful,
                failed=len(pairs) - successful,
                confidence=round(min(len(pairs) / 100, 1.0), 4),
                error=error,
            )
        return correlations

    # -- ComputeWeightDeltas / ApplySafetyBounds / ApplyDomainAdjustments ---

    def propose_weight(self, factor_name: str, current: float, baseline: float,
                       correlation: float, sample_adequate: bool, success_rate: float) -> float:
        cfg = self.config
        bounds = dict(min_weight=cfg['min_weight'], max_weight=cfg['max_weight'],
                      max_change=cfg['max_weight_change'])

        delta = compute_delta(correlation, sample_adequate, cfg['learning_rate'], cfg['stability_factor'])
        proposed = clamp_weight(current + delta, baseline, **bounds)
        proposed = apply_domain_bounds(factor_name, proposed, self.domain_bounds)

        if success_rate < cfg['conservative_success_rate']:
            proposed = current + (proposed - current) * cfg['conservative_factor']

        # Global and baseline bounds always have the last word.
        return round(clamp_weight(proposed, baseline, **bounds), 4)

    def compute_weight_changes(self, weights, correlations, sample_adequate, success_rate) -> List[WeightChange]:
        changes = []
        for name in FACTOR_NAMES:
            row = weights.get(name)
            current = float(row.current_weight) if row is not None else 1.0
            baseline = float(row.baseline_weight) if row is not None else 1.0
            new_weight = self.propose_weight(
                name, current, baseline, correlations[name].correlation, sample_adequate, success_rate
            )
            changes.append(WeightChange(
                factor_name=name,
                old_weight=current,
                baseline_weight=baseline,
                new_weight=new_weight,
                delta=round(new_weight - current, 4),
            ))
        return changes

    # -- ValidateImprovement -----------------------------------------------

    def validate_improvement(self, samples, changes: List[WeightChange]) -> dict:
        """
        Compare how well old and new weights separate successes from failures.

        Separation is the mean weighted score of successful matches minus
        that of failed ones, over samples with every factor value known.
        """
        old = {c.factor_name: c.old_weight for c in changes}
        new = {c.factor_name: c.new_weight for c in changes}
        complete = [(s, v) for s, v in samples if all(name in v for name in FACTOR_NAMES)]
        if not any(s for s, _ in complete) or all(s for s, _ in complete):
            return {'validation_passed': None, 'reason': 'need both successful and failed samples'}

        def separation(weights):
            total_w = sum(max(0.1, weights[n]) for n in FACTOR_NAMES)

            def score(values):
                return 100 * sum(values[n] * max(0.1, weights[n]) for n in FACTOR_NAMES) / total_w

            wins = [score(v) for s, v in complete if s]
            losses = [score(v) for s, v in complete if not s]
            return sum(wins) / len(wins) - sum(losses) / len(losses)

        old_sep = separation(old)
        new_sep = separation(new)
        return {
            'validation_passed': new_sep >= old_sep - 1e-9,
            'old_separation': round(old_sep, 4),
            'new_separation': round(new_sep, 4),
            'improvement': round(new_sep - old_sep, 4),
            'samples': len(complete),
        }
