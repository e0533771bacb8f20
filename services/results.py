from sqlalchemy.orm import Session
import numpy as np
from models.results import ExperimentResults, Variant, VariantResult
from services.cache import CacheClient
from services.significance import calculate_p_value, CONFIDENCE_Z, SIGNIFICANCE_THRESHOLD
from services import variants as variant_service
import logging

logger = logging.getLogger(__name__)


def _conversion_rate(variant: Variant) -> np.float64:
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.float64(variant.conversions) / np.float64(variant.visitors) * 100


def _confidence_interval(rate: np.float64, visitors: int) -> tuple[float, float]:
    """95% normal-approximation interval around a rate expressed in percent."""
    p = rate / 100
    with np.errstate(divide="ignore", invalid="ignore"):
        margin = CONFIDENCE_Z * np.sqrt(p * (1 - p) / np.float64(visitors)) * 100
    return float(rate - margin), float(rate + margin)


def calculate_experiment_results(variants: list[Variant]) -> ExperimentResults | None:
    """
    Compares every variant against the control.

    Returns None when no variant is flagged as control. Zero-visitor variants
    are not rejected: their rates, uplifts, p-values and intervals come out as NaN.
    """

    # 1. Locate the control
    control = next((v for v in variants if v.is_control), None)
    if control is None:
        logger.debug("no control variant among %d variants, skipping analysis", len(variants))
        return None

    control_rate = _conversion_rate(control)

    # 2. Per-variant metrics, kept in input order
    variant_results: list[VariantResult] = []
    for variant in variants:
        rate = _conversion_rate(variant)

        if variant is control:
            uplift = 0.0
            p_value = 1.0
        else:
            with np.errstate(divide="ignore", invalid="ignore"):
                uplift = float((rate - control_rate) / control_rate * 100)
            p_value = calculate_p_value(control, variant)

        variant_results.append(VariantResult(
            variant_id=variant.id,
            conversion_rate=float(rate),
            uplift=uplift,
            p_value=p_value,
            confidence_interval=_confidence_interval(rate, variant.visitors),
        ))

    # 3. Winner: highest uplift among significant non-control variants.
    # Strict comparison keeps the first one in input order on ties.
    winner: VariantResult | None = None
    for variant, result in zip(variants, variant_results):
        if variant is control or not result.p_value < SIGNIFICANCE_THRESHOLD:
            continue
        if not result.uplift > 0:
            continue
        if winner is None or result.uplift > winner.uplift:
            winner = result

    # 4. Totals include the control
    total_visitors = sum(v.visitors for v in variants)
    total_conversions = sum(v.conversions for v in variants)

    if winner is None:
        logger.debug("no significant winner among %d variants", len(variants))
        return ExperimentResults(
            variant_results=variant_results,
            total_visitors=total_visitors,
            total_conversions=total_conversions,
        )

    logger.debug("winner %s with uplift %.2f%% (p=%.4f)", winner.variant_id, winner.uplift, winner.p_value)
    return ExperimentResults(
        variant_results=variant_results,
        total_visitors=total_visitors,
        total_conversions=total_conversions,
        winner=winner.variant_id,
        statistical_significance=True,
        confidence=(1 - winner.p_value) * 100,
        improvement_percentage=winner.uplift,
    )


def get_experiment_results(db: Session, cache: CacheClient, experiment_id: int) -> ExperimentResults | None:
    """Results for a stored experiment, served from cache when possible."""

    # Raises 404 for unknown experiments
    variant_service.get_experiment(db, experiment_id)

    # Read before the variants so an event landing mid-computation outdates what we write
    generation = cache.results_generation(experiment_id)
    cached = cache.get_results(experiment_id, generation)
    if cached is not None:
        logger.debug("get_experiment_results %d cache hit", experiment_id)
        return cached

    logger.debug("get_experiment_results %d cache miss", experiment_id)
    records = variant_service.load_variant_records(db, experiment_id)
    results = calculate_experiment_results(records)

    # The no-control outcome is cheap to recompute and not cached
    if results is not None:
        cache.set_results(experiment_id, results, generation)

    return results
