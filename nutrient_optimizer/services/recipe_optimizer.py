"""
Nutrient Recipe Optimizer - soft-constraint linear program over salt dosages.

Decision variables are one non-negative dosage (g/L) per available salt.
For every supplyable ion k with yield row Y_k (ppm per g/L) the LP adds

    Y_k . d + pos_k - neg_k            == target_k
    Y_k . d + under_k                  >= min_k
    Y_k . d - over_k                   <= max_k

with all slacks >= 0, and minimizes

    W_target * sum(pos + neg) + W_range * sum(under + over)

Because every bound is softened by a slack the program is always feasible
once at least one salt exists. W_range < W_target makes the solver hit the
preferred value first and leave the range only when unavoidable.

Ions no available salt contributes are left out of the LP, reported in the
result notes, and mark the result as approximate.

The optimizer keeps no state between calls; catalog and profile are passed
to every solve, so concurrent solves on different inputs are independent.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

import numpy as np
from scipy.optimize import linprog

from nutrient_optimizer.services.chemistry import (
    Ion,
    IonDemand,
    IonTarget,
    Recipe,
    Salt,
    SolutionProfile,
    TargetProfile,
    find_input_errors,
)
from nutrient_optimizer.services.conflict_analyzer import analyze_conflicts
from nutrient_optimizer.services.ion_supply import IonSupply, analyze_ion_supply
from nutrient_optimizer.services.nutrient_calculator import calculate_solution, yield_matrix
from nutrient_optimizer.services.nutrient_rules import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_SOLVER_METHOD,
    DEFAULT_TIME_LIMIT_S,
    NOISE_THRESHOLD,
    RANGE_TOLERANCE,
    RANGE_VIOLATION_WEIGHT,
    RECIPE_DECIMALS,
    SUPPORTED_SOLVER_METHODS,
    TARGET_DEVIATION_WEIGHT,
)

logger = logging.getLogger(__name__)

# scipy.optimize.linprog status codes
STATUS_OPTIMAL = 0
STATUS_LIMIT_REACHED = 1
STATUS_INFEASIBLE = 2
STATUS_UNBOUNDED = 3
STATUS_NUMERICAL = 4

SLACKS_PER_ION = 4


class SolveError(str, Enum):
    """Why a solve produced no recipe."""
    INVALID_INPUT = "invalid_input"
    NO_CATALOG = "no_catalog"
    NO_TARGETS = "no_targets"
    SOLVER_UNAVAILABLE = "solver_unavailable"
    SOLVER_TIMEOUT = "solver_timeout"
    SOLVER_FAILED = "solver_failed"


@dataclass
class SolverConfig:
    """
    Tunables for one optimizer instance.

    target_deviation_weight / range_violation_weight set the character of
    the solution: the larger the ratio, the tighter the recipe follows the
    preferred targets; as it approaches 1 the recipe trades target accuracy
    for staying inside the ranges.
    """
    target_deviation_weight: float = TARGET_DEVIATION_WEIGHT
    range_violation_weight: float = RANGE_VIOLATION_WEIGHT
    noise_threshold: float = NOISE_THRESHOLD
    range_tolerance: float = RANGE_TOLERANCE
    method: str = DEFAULT_SOLVER_METHOD
    time_limit_s: Optional[float] = DEFAULT_TIME_LIMIT_S
    max_iterations: Optional[int] = DEFAULT_MAX_ITERATIONS
    run_conflict_analysis: bool = True

    def solver_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        if self.time_limit_s is not None:
            options["time_limit"] = self.time_limit_s
        if self.max_iterations is not None:
            options["maxiter"] = self.max_iterations
        return options


@dataclass(frozen=True)
class IonComparison:
    """Target vs. achieved concentration for one ion."""
    ion: Ion
    target_ppm: float
    actual_ppm: float
    delta_ppm: float
    in_range: bool
    min_ppm: float = 0.0
    max_ppm: float = 0.0
    supplyable: bool = True

    @property
    def delta_percent(self) -> float:
        """Delta as percentage of the target value."""
        if self.target_ppm == 0:
            return 0.0
        return self.delta_ppm / self.target_ppm * 100.0


@dataclass(frozen=True)
class OptimizationResult:
    success: bool
    salt_amounts: Mapping[Salt, float] = field(default_factory=dict)
    unused_salts: Tuple[Salt, ...] = ()
    ion_comparisons: Tuple[IonComparison, ...] = ()
    infeasibility_reasons: Tuple[str, ...] = ()
    is_approximate_solution: bool = False
    reason_for_termination: str = ""
    error: Optional[SolveError] = None
    final_error: float = 0.0
    unsupplyable_ions: Tuple[Ion, ...] = ()
    solution: Optional[SolutionProfile] = None

    def __post_init__(self):
        object.__setattr__(self, "salt_amounts", MappingProxyType(dict(self.salt_amounts)))
        object.__setattr__(self, "unused_salts", tuple(self.unused_salts))
        object.__setattr__(self, "ion_comparisons", tuple(self.ion_comparisons))
        object.__setattr__(self, "infeasibility_reasons", tuple(self.infeasibility_reasons))
        object.__setattr__(self, "unsupplyable_ions", tuple(self.unsupplyable_ions))

    @classmethod
    def failure(
        cls,
        error: SolveError,
        reason: str,
        notes: Sequence[str] = (),
        unused_salts: Sequence[Salt] = (),
    ) -> "OptimizationResult":
        return cls(
            success=False,
            error=error,
            reason_for_termination=reason,
            infeasibility_reasons=tuple(notes) or (reason,),
            unused_salts=tuple(unused_salts),
        )

    @property
    def all_in_range(self) -> bool:
        return all(c.in_range for c in self.ion_comparisons)

    def comparison_for(self, ion: Ion) -> Optional[IonComparison]:
        for comparison in self.ion_comparisons:
            if comparison.ion == ion:
                return comparison
        return None

    def to_recipe(self, decimals: int = RECIPE_DECIMALS, noise_threshold: float = NOISE_THRESHOLD) -> Recipe:
        """Recipe of the dosed salts, noise filtered and rounded."""
        recipe = Recipe()
        for salt, grams_per_liter in self.salt_amounts.items():
            if grams_per_liter > noise_threshold:
                recipe.add_salt(salt, round(grams_per_liter, decimals))
        return recipe


@dataclass
class _LinearProgram:
    c: np.ndarray
    a_eq: np.ndarray
    b_eq: np.ndarray
    a_ub: np.ndarray
    b_ub: np.ndarray
    n_salts: int

    @property
    def bounds(self) -> List[Tuple[float, None]]:
        return [(0, None)] * len(self.c)


def build_linear_program(
    salts: Sequence[Salt],
    demands: Sequence[IonDemand],
    config: SolverConfig,
    source_water_ppm: Optional[Mapping[Ion, float]] = None,
) -> _LinearProgram:
    """
    Assemble the soft-constraint LP in scipy's linprog form.

    Variable layout: [d_0 .. d_{n-1}, pos_0, neg_0, under_0, over_0, pos_1, ...]
    """
    water = source_water_ppm or {}
    n_salts = len(salts)
    n_ions = len(demands)
    n_vars = n_salts + SLACKS_PER_ION * n_ions
    yields = yield_matrix(salts, [d.ion for d in demands])

    c = np.zeros(n_vars)
    a_eq = np.zeros((n_ions, n_vars))
    b_eq = np.zeros(n_ions)
    a_ub = np.zeros((2 * n_ions, n_vars))
    b_ub = np.zeros(2 * n_ions)

    for k, demand in enumerate(demands):
        pos, neg, under, over = (n_salts + SLACKS_PER_ION * k + offset for offset in range(SLACKS_PER_ION))
        baseline = water.get(demand.ion, 0.0)

        c[pos] = c[neg] = config.target_deviation_weight
        c[under] = c[over] = config.range_violation_weight

        a_eq[k, :n_salts] = yields[k]
        a_eq[k, pos] = 1.0
        a_eq[k, neg] = -1.0
        b_eq[k] = demand.target_ppm - baseline

        # -(Y.d) - under <= -min
        a_ub[2 * k, :n_salts] = -yields[k]
        a_ub[2 * k, under] = -1.0
        b_ub[2 * k] = -(demand.min_ppm - baseline)

        # Y.d - over <= max
        a_ub[2 * k + 1, :n_salts] = yields[k]
        a_ub[2 * k + 1, over] = -1.0
        b_ub[2 * k + 1] = demand.max_ppm - baseline

    return _LinearProgram(c=c, a_eq=a_eq, b_eq=b_eq, a_ub=a_ub, b_ub=b_ub, n_salts=n_salts)


class NutrientRecipeOptimizer:
    """
    Picks salt dosages that best match a target ion profile.

    The instance only holds configuration; every call to solve() is
    self-contained.
    """

    def __init__(self, config: Optional[SolverConfig] = None):
        self.config = config or SolverConfig()

    def solve(
        self,
        available_salts: Sequence[Salt],
        target_profile: Union[TargetProfile, Sequence[IonTarget]],
        source_water_ppm: Optional[Mapping[Ion, float]] = None,
    ) -> OptimizationResult:
        salts = list(available_salts or [])
        if isinstance(target_profile, TargetProfile):
            targets = list(target_profile.ion_targets)
        else:
            targets = list(target_profile or [])

        # Step 1: fail fast on empty or malformed inputs
        if not salts:
            logger.info("Solve requested with no available salts")
            return OptimizationResult.failure(SolveError.NO_CATALOG, "No available salts")
        if not targets:
            logger.info("Solve requested with no ion targets")
            return OptimizationResult.failure(SolveError.NO_TARGETS, "No targets defined", unused_salts=salts)

        input_errors = find_input_errors(salts, targets)
        if input_errors:
            logger.warning(f"Rejected solve input: {len(input_errors)} problem(s)")
            return OptimizationResult.failure(
                SolveError.INVALID_INPUT, "Invalid input", notes=input_errors, unused_salts=salts
            )

        # Step 2: partition by supply
        demands = [IonDemand.from_target(t) for t in targets]
        supply = analyze_ion_supply(demands, salts)
        notes = [
            f"{d.ion}: target {d.target_ppm:g} ppm (no source available)"
            for d in supply.unsupplyable
        ]
        if supply.unsupplyable:
            logger.warning(
                f"Unsupplyable ions: {', '.join(str(ion) for ion in supply.unsupplyable_ions)}"
            )

        if not supply.supplyable:
            notes.append("None of the targeted ions can be supplied by the available salts")
            return self._build_result(
                salts, demands, supply, {}, notes,
                approximate=True,
                reason="No supplyable ions",
                final_error=0.0,
                source_water_ppm=source_water_ppm,
            )

        # Step 3: solve the soft-constraint LP
        if self.config.method not in SUPPORTED_SOLVER_METHODS:
            logger.error(f"LP backend {self.config.method!r} is not available")
            return OptimizationResult.failure(
                SolveError.SOLVER_UNAVAILABLE,
                f"Solver backend '{self.config.method}' is not available",
                unused_salts=salts,
            )

        program = build_linear_program(salts, supply.supplyable, self.config, source_water_ppm)
        logger.debug(
            f"Solving LP: {len(program.c)} variables, {len(program.b_eq)} equalities, "
            f"{len(program.b_ub)} inequalities"
        )
        res = linprog(
            program.c,
            A_ub=program.a_ub,
            b_ub=program.b_ub,
            A_eq=program.a_eq,
            b_eq=program.b_eq,
            bounds=program.bounds,
            method=self.config.method,
            options=self.config.solver_options(),
        )
        logger.debug(f"LP finished with status {res.status}: {res.message}")

        if res.status == STATUS_LIMIT_REACHED:
            logger.warning(f"LP stopped on its iteration/time budget: {res.message}")
            return OptimizationResult.failure(
                SolveError.SOLVER_TIMEOUT,
                "Solver exceeded its iteration or time budget",
                notes=notes + [f"Solver stopped early: {res.message}"],
                unused_salts=salts,
            )
        if res.status != STATUS_OPTIMAL and (res.status != STATUS_NUMERICAL or res.x is None):
            logger.error(f"LP failed with status {res.status}: {res.message}")
            return OptimizationResult.failure(
                SolveError.SOLVER_FAILED,
                f"Solver failed: {res.message}",
                notes=notes + [f"Solver status {res.status}: {res.message}"],
                unused_salts=salts,
            )

        approximate = bool(supply.unsupplyable)
        if res.status != STATUS_OPTIMAL:
            notes.append(f"Solver did not reach a strictly optimal solution: {res.message}")
            approximate = True

        amounts: Dict[Salt, float] = {}
        for salt, value in zip(salts, res.x[:program.n_salts]):
            if value > self.config.noise_threshold:
                amounts[salt] = float(value)

        return self._build_result(
            salts, demands, supply, amounts, notes,
            approximate=approximate,
            reason="Optimal" if res.status == STATUS_OPTIMAL else res.message,
            final_error=float(res.fun),
            source_water_ppm=source_water_ppm,
        )

    def _build_result(
        self,
        salts: List[Salt],
        demands: List[IonDemand],
        supply: IonSupply,
        amounts: Dict[Salt, float],
        notes: List[str],
        *,
        approximate: bool,
        reason: str,
        final_error: float,
        source_water_ppm: Optional[Mapping[Ion, float]],
    ) -> OptimizationResult:
        """Verify dosages through the calculator and assemble the result."""
        solution = calculate_solution(Recipe(amounts.items()), source_water_ppm)
        tolerance = self.config.range_tolerance
        unsupplyable = set(supply.unsupplyable_ions)

        comparisons = []
        for demand in demands:
            actual = solution.ppm(demand.ion)
            in_range = demand.min_ppm - tolerance <= actual <= demand.max_ppm + tolerance
            comparisons.append(IonComparison(
                ion=demand.ion,
                target_ppm=demand.target_ppm,
                actual_ppm=actual,
                delta_ppm=actual - demand.target_ppm,
                in_range=in_range,
                min_ppm=demand.min_ppm,
                max_ppm=demand.max_ppm,
                supplyable=demand.ion not in unsupplyable,
            ))

        for comparison in comparisons:
            if comparison.in_range or not comparison.supplyable:
                continue
            approximate = True
            bound = "below min" if comparison.actual_ppm < comparison.min_ppm else "above max"
            limit = comparison.min_ppm if bound == "below min" else comparison.max_ppm
            notes.append(f"{comparison.ion}: {comparison.actual_ppm:.2f} ppm is {bound} {limit:g} ppm")

        if approximate and self.config.run_conflict_analysis:
            notes.extend(analyze_conflicts(
                salts,
                supply.supplyable,
                method=self.config.method,
                options=self.config.solver_options(),
                tolerance=tolerance,
                source_water_ppm=source_water_ppm,
            ))

        unused = [salt for salt in salts if salt not in amounts]
        if approximate:
            logger.warning(f"Approximate solution: {len(notes)} note(s)")
        logger.info(f"Solved recipe with {len(amounts)} of {len(salts)} salts")

        return OptimizationResult(
            success=True,
            salt_amounts=amounts,
            unused_salts=unused,
            ion_comparisons=comparisons,
            infeasibility_reasons=notes,
            is_approximate_solution=approximate,
            reason_for_termination=reason,
            final_error=final_error,
            unsupplyable_ions=supply.unsupplyable_ions,
            solution=solution,
        )


def solve(
    available_salts: Sequence[Salt],
    target_profile: Union[TargetProfile, Sequence[IonTarget]],
    config: Optional[SolverConfig] = None,
    source_water_ppm: Optional[Mapping[Ion, float]] = None,
) -> OptimizationResult:
    """Solve with a throwaway optimizer; convenience for one-off calls."""
    return NutrientRecipeOptimizer(config).solve(available_salts, target_profile, source_water_ppm)
