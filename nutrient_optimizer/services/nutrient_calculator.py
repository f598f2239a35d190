"""
Nutrient Calculator Service.

Computes the ion concentrations produced by a recipe through plain
stoichiometry and checks a resulting solution against a target profile.

For each salt dosed at d g/L with molecular weight M and an ion yield of
Y g/mol, the ion concentration is (d / M) x Y x 1000 ppm (mg/L).
Contributions of several salts to the same ion add up.
"""
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from nutrient_optimizer.services.chemistry import Ion, Recipe, Salt, SolutionProfile, TargetProfile
from nutrient_optimizer.services.exceptions import InvalidInputError
from nutrient_optimizer.services.nutrient_rules import PPM_PER_GRAM_PER_LITER


def _check_molecular_weight(salt: Salt) -> None:
    if not salt.molecular_weight > 0:
        raise InvalidInputError(
            f"{salt.name}: molecular weight must be > 0 (got {salt.molecular_weight})"
        )


def ion_yield_coefficient(salt: Salt, ion: Ion) -> float:
    """
    ppm of an ion produced per 1 g/L of salt.

    Returns 0.0 when the salt does not contain the ion.

    Raises:
        InvalidInputError: if the salt's molecular weight is not positive.
    """
    _check_molecular_weight(salt)
    grams_per_mole = salt.ion_contributions.get(ion, 0.0)
    return grams_per_mole * PPM_PER_GRAM_PER_LITER / salt.molecular_weight


def yield_matrix(salts: Sequence[Salt], ions: Sequence[Ion]) -> np.ndarray:
    """
    Matrix of ppm-per-(g/L) coefficients, one row per ion and one column per salt.

    Row k times the dosage vector gives the concentration of ions[k].
    """
    matrix = np.zeros((len(ions), len(salts)))
    for col, salt in enumerate(salts):
        for row, ion in enumerate(ions):
            matrix[row, col] = ion_yield_coefficient(salt, ion)
    return matrix


def calculate_solution(
    recipe: Recipe,
    source_water_ppm: Optional[Mapping[Ion, float]] = None,
) -> SolutionProfile:
    """
    Calculate the resulting ion concentrations (ppm) of a recipe.

    Args:
        recipe: Salt dosages in g/L
        source_water_ppm: Optional ion concentrations already present in the
                          water; they are added to the salt contributions.

    Raises:
        InvalidInputError: if any salt in the recipe has a non-positive
                           molecular weight.
    """
    concentrations: Dict[Ion, float] = {}
    if source_water_ppm:
        for ion, ppm in source_water_ppm.items():
            if ppm:
                concentrations[ion] = concentrations.get(ion, 0.0) + ppm

    for item in recipe:
        salt = item.salt
        _check_molecular_weight(salt)
        moles_per_liter = item.grams_per_liter / salt.molecular_weight

        for ion, grams_per_mole in salt.ion_contributions.items():
            ppm = moles_per_liter * grams_per_mole * PPM_PER_GRAM_PER_LITER
            concentrations[ion] = concentrations.get(ion, 0.0) + ppm

    return SolutionProfile(concentrations)


def is_within_targets(solution: SolutionProfile, profile: TargetProfile) -> bool:
    """True when every targeted ion lies inside its [min, max] range."""
    for target in profile.ion_targets:
        actual = solution.ppm(target.ion)
        if actual < target.min_ppm or actual > target.max_ppm:
            return False
    return True


def get_violations(solution: SolutionProfile, profile: TargetProfile) -> List[str]:
    """Human-readable list of ions outside their target range."""
    violations = []
    for target in profile.ion_targets:
        actual = solution.ppm(target.ion)
        if actual < target.min_ppm:
            violations.append(f"{target.ion}: {actual:.1f} ppm (too low, min {target.min_ppm:g})")
        elif actual > target.max_ppm:
            violations.append(f"{target.ion}: {actual:.1f} ppm (too high, max {target.max_ppm:g})")
    return violations
