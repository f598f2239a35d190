"""
Nutrient Solver Service.

Ties the catalog provider, the optimizer and the recommendation engine
together for one user selection: resolve the selected salt names, solve,
and when the recipe cannot meet the profile suggest catalog salts to add.
Also renders an OptimizationResult as a plain-text report.
"""
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence
import logging

from nutrient_optimizer.services.catalog_provider import SaltCatalogProvider
from nutrient_optimizer.services.chemistry import Ion, Salt, TargetProfile
from nutrient_optimizer.services.exceptions import InvalidInputError
from nutrient_optimizer.services.recipe_optimizer import (
    NutrientRecipeOptimizer,
    OptimizationResult,
    SolveError,
)
from nutrient_optimizer.services.salt_recommendation import SaltRecommendation, recommend_salts

logger = logging.getLogger(__name__)


@dataclass
class SolveOutcome:
    """Optimization result plus the suggestions made for it."""
    result: OptimizationResult
    selected_salts: List[Salt] = field(default_factory=list)
    recommendations: List[SaltRecommendation] = field(default_factory=list)

    @property
    def needs_more_salts(self) -> bool:
        return any(r.is_critical for r in self.recommendations)


def _needs_recommendations(result: OptimizationResult) -> bool:
    if not result.success:
        return result.error == SolveError.NO_CATALOG
    return result.is_approximate_solution or not result.all_in_range


class NutrientSolverService:
    """
    Solve a named salt selection against a target profile.

    Args:
        catalog_provider: Source of the full salt catalog
        optimizer: Configured optimizer; a default one is built if omitted
    """

    def __init__(
        self,
        catalog_provider: SaltCatalogProvider,
        optimizer: Optional[NutrientRecipeOptimizer] = None,
    ):
        self.catalog_provider = catalog_provider
        self.optimizer = optimizer or NutrientRecipeOptimizer()

    def resolve_selection(self, selected_names: Sequence[str]) -> List[Salt]:
        try:
            return self.catalog_provider.resolve(selected_names)
        except KeyError as e:
            raise InvalidInputError(e.args[0]) from e

    def recommend(
        self,
        selected_names: Sequence[str],
        profile: TargetProfile,
    ) -> List[SaltRecommendation]:
        selected = self.resolve_selection(selected_names)
        return recommend_salts(self.catalog_provider.get_salts(), selected, profile.demands())

    def solve_selection(
        self,
        selected_names: Sequence[str],
        profile: TargetProfile,
        source_water_ppm: Optional[Mapping[Ion, float]] = None,
    ) -> SolveOutcome:
        """
        Solve the profile using only the selected catalog salts.

        Raises:
            InvalidInputError: if a selected name is not in the catalog.
        """
        selected = self.resolve_selection(selected_names)
        logger.info(f"Solving '{profile.name}' with {len(selected)} selected salt(s)")
        result = self.optimizer.solve(selected, profile, source_water_ppm)

        outcome = SolveOutcome(result=result, selected_salts=selected)
        if _needs_recommendations(result):
            outcome.recommendations = recommend_salts(
                self.catalog_provider.get_salts(), selected, profile.demands()
            )
            logger.info(f"Attached {len(outcome.recommendations)} salt recommendation(s)")
        return outcome


def format_optimization_result(result: OptimizationResult) -> str:
    """Render a result as a fixed-width text report."""
    lines = []
    if not result.success:
        lines.append(f"=== OPTIMIZATION FAILED: {result.reason_for_termination} ===")
        for note in result.infeasibility_reasons:
            if note != result.reason_for_termination:
                lines.append(f"  - {note}")
        return "\n".join(lines)

    if result.is_approximate_solution:
        lines.append("=== APPROXIMATE SOLUTION (BEST EFFORT) ===")
    else:
        lines.append("=== OPTIMIZATION SUCCESS ===")

    lines.append("")
    lines.append("Recipe (g/L):")
    recipe = result.to_recipe()
    if len(recipe) == 0:
        lines.append("  (no salts dosed)")
    for item in recipe:
        lines.append(f"  {item.salt.name:<36} {item.grams_per_liter:>10.5f}")

    if result.unused_salts:
        lines.append("")
        lines.append("Unused: " + ", ".join(salt.name for salt in result.unused_salts))

    lines.append("")
    lines.append(f"  {'Ion':<12} {'Target':>9} {'Actual':>9} {'Delta':>9} {'Delta %':>8}")
    for c in result.ion_comparisons:
        marker = "ok" if c.in_range else "OUT"
        if not c.supplyable:
            marker = "n/a"
        lines.append(
            f"  {c.ion.code:<12} {c.target_ppm:>9.2f} {c.actual_ppm:>9.2f} "
            f"{c.delta_ppm:>+9.2f} {c.delta_percent:>+7.1f}% {marker}"
        )

    if result.infeasibility_reasons:
        lines.append("")
        lines.append("Notes:")
        lines.extend(f"  - {note}" for note in result.infeasibility_reasons)

    return "\n".join(lines)
