"""
Salt Recommendation Engine.

Suggests catalog salts to add to the current selection when a solve fails
or is only approximate:

1. Missing sources (priority 1, critical): for each demanded ion that no
   selected salt supplies, the top 3 catalog salts containing it.
2. Diversifying salts (priority 2, helpful): only when nothing is missing
   and fewer than 4 salts are selected, the top 2 salts sharing an ion with
   the selection, giving the optimizer more freedom to balance ratios.

Score = 10 x grams of the primary ion per mole of salt
      + 2 x number of ions the salt contributes
      + 3 x number of those ions that are macronutrients
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import logging

from nutrient_optimizer.services.chemistry import Ion, IonDemand, Salt, ion_from_code
from nutrient_optimizer.services.ion_supply import supplied_ions
from nutrient_optimizer.services.nutrient_rules import (
    DIVERSIFY_BELOW_SELECTED_COUNT,
    MACRONUTRIENT_CODES,
    MAX_DIVERSIFYING_OPTIONS,
    MAX_MISSING_SOURCE_OPTIONS,
    PRIORITY_CRITICAL,
    PRIORITY_HELPFUL,
    RECOMMENDATION_ION_COUNT_WEIGHT,
    RECOMMENDATION_MACRO_WEIGHT,
    RECOMMENDATION_PRIMARY_WEIGHT,
)

logger = logging.getLogger(__name__)

MACRONUTRIENTS = frozenset(ion_from_code(code) for code in MACRONUTRIENT_CODES)


@dataclass(frozen=True)
class SaltOption:
    """A candidate salt with its score."""
    salt: Salt
    ion_content: float
    secondary_benefits: int
    score: float

    def describe(self) -> str:
        top = sorted(self.salt.ion_contributions.items(), key=lambda kv: kv[1], reverse=True)[:3]
        ions = ", ".join(f"{ion}: {self.salt.mass_fraction(ion) * 100:.1f}%" for ion, _ in top)
        return f"{self.salt.name} ({ions})"


@dataclass
class SaltRecommendation:
    reason: str
    priority: int
    recommended_salts: List[SaltOption] = field(default_factory=list)
    ion: Optional[Ion] = None

    @property
    def is_critical(self) -> bool:
        return self.priority == PRIORITY_CRITICAL

    def describe(self) -> str:
        if not self.recommended_salts:
            return self.reason
        options = " or ".join(f"{o.salt.name} ({o.salt.formula})" for o in self.recommended_salts)
        return f"{self.reason}\n  -> {options}"


def score_salt(salt: Salt, target_ion: Optional[Ion] = None) -> float:
    """Relevance score of a salt, optionally for one primary ion."""
    score = 0.0
    if target_ion is not None and salt.provides(target_ion):
        score += salt.ion_contributions[target_ion] * RECOMMENDATION_PRIMARY_WEIGHT
    score += len(salt.ion_contributions) * RECOMMENDATION_ION_COUNT_WEIGHT
    macro_count = sum(1 for ion in salt.ion_contributions if ion in MACRONUTRIENTS)
    score += macro_count * RECOMMENDATION_MACRO_WEIGHT
    return score


class SaltRecommendationEngine:
    """Ranks unselected catalog salts for the demanded ions."""

    def __init__(
        self,
        catalog: Sequence[Salt],
        selected_salts: Sequence[Salt],
        ion_demands: Sequence[IonDemand],
    ):
        self.catalog = list(catalog)
        self.selected_salts = list(selected_salts)
        self.ion_demands = list(ion_demands)
        self._selected_names = {salt.name for salt in self.selected_salts}

    def _candidates(self) -> List[Salt]:
        return [salt for salt in self.catalog if salt.name not in self._selected_names]

    def get_recommendations(self) -> List[SaltRecommendation]:
        recommendations: List[SaltRecommendation] = []
        supplied = supplied_ions(self.selected_salts)

        # 1. Sources for ions nothing selected can supply
        for demand in self.ion_demands:
            if demand.ion in supplied:
                continue
            options = self.find_best_salts_for(demand.ion)
            if not options:
                logger.info(f"No catalog salt supplies {demand.ion}")
                continue
            recommendations.append(SaltRecommendation(
                reason=f"Provides {demand.ion} (required {demand.target_ppm:.0f} ppm)",
                priority=PRIORITY_CRITICAL,
                recommended_salts=options,
                ion=demand.ion,
            ))

        # 2. Everything is supplied: look for ratio flexibility
        if not recommendations and len(self.selected_salts) < DIVERSIFY_BELOW_SELECTED_COUNT:
            options = self.find_diversifying_salts()
            if options:
                recommendations.append(SaltRecommendation(
                    reason="Adds flexibility for ratio balancing",
                    priority=PRIORITY_HELPFUL,
                    recommended_salts=options,
                ))

        return sorted(recommendations, key=lambda r: r.priority)

    def find_best_salts_for(self, ion: Ion) -> List[SaltOption]:
        scored = [
            SaltOption(
                salt=salt,
                ion_content=salt.ion_contributions[ion],
                secondary_benefits=len(salt.ion_contributions) - 1,
                score=score_salt(salt, ion),
            )
            for salt in self._candidates()
            if salt.provides(ion)
        ]
        scored.sort(key=lambda option: option.score, reverse=True)
        return scored[:MAX_MISSING_SOURCE_OPTIONS]

    def find_diversifying_salts(self) -> List[SaltOption]:
        supplied = supplied_ions(self.selected_salts)
        scored = [
            SaltOption(
                salt=salt,
                ion_content=max(salt.ion_contributions.values()),
                secondary_benefits=len(salt.ion_contributions),
                score=score_salt(salt),
            )
            for salt in self._candidates()
            if any(ion in supplied for ion in salt.ion_contributions)
        ]
        scored.sort(key=lambda option: option.score, reverse=True)
        return scored[:MAX_DIVERSIFYING_OPTIONS]


def recommend_salts(
    catalog: Sequence[Salt],
    selected_salts: Sequence[Salt],
    ion_demands: Sequence[IonDemand],
) -> List[SaltRecommendation]:
    return SaltRecommendationEngine(catalog, selected_salts, ion_demands).get_recommendations()
