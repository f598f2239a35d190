"""
Ratio conflict diagnostics.

Salts bring ions in fixed proportions, so meeting one ion's range can force
another ion out of its range (e.g. the only nitrate source also carries
potassium). For each supplyable ion this pass solves two auxiliary LPs over
the same salts, holding every other ion to its min/max as hard
constraints:

    minimize  conc(ion)     -> lowest value the other requirements allow
    maximize  conc(ion)     -> highest value the other requirements allow

If the lowest achievable value is still above the ion's max, or the highest
achievable value is still below its min, the conflict is unavoidable with
the current salt selection and is reported as a diagnostic note.
"""
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence
import logging
import math

import numpy as np
from scipy.optimize import linprog

from nutrient_optimizer.services.chemistry import Ion, IonDemand, Salt
from nutrient_optimizer.services.nutrient_calculator import yield_matrix
from nutrient_optimizer.services.nutrient_rules import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_SOLVER_METHOD,
    DEFAULT_TIME_LIMIT_S,
    RANGE_TOLERANCE,
)

logger = logging.getLogger(__name__)

STATUS_OPTIMAL = 0
STATUS_UNBOUNDED = 3


@dataclass(frozen=True)
class IonExtremes:
    """Reachable concentration range of one ion while the others stay in range."""
    ion: Ion
    feasible: bool
    min_ppm: Optional[float] = None
    max_ppm: Optional[float] = None


def _hard_range_rows(matrix: np.ndarray, demands: Sequence[IonDemand], skip: int, baseline: Sequence[float]):
    rows = []
    limits = []
    for k, demand in enumerate(demands):
        if k == skip:
            continue
        rows.append(-matrix[k])
        limits.append(-(demand.min_ppm - baseline[k]))
        rows.append(matrix[k])
        limits.append(demand.max_ppm - baseline[k])
    if not rows:
        return None, None
    return np.vstack(rows), np.array(limits)


def compute_ion_extremes(
    salts: Sequence[Salt],
    demands: Sequence[IonDemand],
    index: int,
    *,
    method: str = DEFAULT_SOLVER_METHOD,
    options: Optional[dict] = None,
    source_water_ppm: Optional[Mapping[Ion, float]] = None,
) -> IonExtremes:
    """
    Solve the min/max LPs for demands[index] with every other demand held in range.

    Returns IonExtremes(feasible=False) when the other ions cannot all be met
    at once, in which case nothing can be concluded about this ion.
    """
    water = source_water_ppm or {}
    ions = [d.ion for d in demands]
    baseline = [water.get(ion, 0.0) for ion in ions]
    matrix = yield_matrix(salts, ions)
    a_ub, b_ub = _hard_range_rows(matrix, demands, index, baseline)
    bounds = [(0, None)] * len(salts)
    objective = matrix[index]
    ion = ions[index]

    low = linprog(objective, A_ub=a_ub, b_ub=b_ub, bounds=bounds, method=method, options=options)
    if low.status != STATUS_OPTIMAL:
        logger.debug(f"Minimum LP for {ion} ended with status {low.status}: {low.message}")
        return IonExtremes(ion=ion, feasible=False)

    # The region is already known to be non-empty, so a non-optimal maximum
    # means no finite upper limit could be established.
    high = linprog(-objective, A_ub=a_ub, b_ub=b_ub, bounds=bounds, method=method, options=options)
    if high.status == STATUS_OPTIMAL:
        max_ppm = -high.fun + baseline[index]
    else:
        if high.status != STATUS_UNBOUNDED:
            logger.debug(f"Maximum LP for {ion} ended with status {high.status}: {high.message}")
        max_ppm = math.inf

    return IonExtremes(ion=ion, feasible=True, min_ppm=low.fun + baseline[index], max_ppm=max_ppm)


def analyze_conflicts(
    salts: Sequence[Salt],
    demands: Sequence[IonDemand],
    *,
    method: str = DEFAULT_SOLVER_METHOD,
    options: Optional[dict] = None,
    tolerance: float = RANGE_TOLERANCE,
    source_water_ppm: Optional[Mapping[Ion, float]] = None,
) -> List[str]:
    """
    Return diagnostic statements for unavoidable min/max violations.

    Args:
        salts: Salts available to the recipe
        demands: Supplyable ion demands only
        tolerance: ppm margin before a violation is reported
    """
    if not salts or not demands:
        return []
    if options is None:
        options = {"time_limit": DEFAULT_TIME_LIMIT_S, "maxiter": DEFAULT_MAX_ITERATIONS}

    notes = []
    for index, demand in enumerate(demands):
        extremes = compute_ion_extremes(
            salts,
            demands,
            index,
            method=method,
            options=options,
            source_water_ppm=source_water_ppm,
        )
        if not extremes.feasible:
            continue

        if extremes.min_ppm > demand.max_ppm + tolerance:
            notes.append(
                f"{demand.ion} will always exceed {demand.max_ppm:g} ppm "
                f"(unavoidable ≥ {extremes.min_ppm:.2f}) when meeting other requirements."
            )
        elif extremes.max_ppm < demand.min_ppm - tolerance:
            notes.append(
                f"{demand.ion} can never reach {demand.min_ppm:g} ppm "
                f"(achievable ≤ {extremes.max_ppm:.2f}) when meeting other requirements."
            )

    if notes:
        logger.info(f"Detected {len(notes)} ratio conflict(s) across {len(demands)} ion(s)")
    return notes
