"""
Tests for the Concentration Calculator.

ppm = (dosage g/L / molecular weight) x ion yield g/mol x 1000
"""
import numpy as np
import pytest

from nutrient_optimizer.services.chemistry import Ion, IonTarget, Recipe, Salt, TargetProfile
from nutrient_optimizer.services.exceptions import InvalidInputError
from nutrient_optimizer.services.nutrient_calculator import (
    calculate_solution,
    get_violations,
    ion_yield_coefficient,
    is_within_targets,
    yield_matrix,
)


CALCIUM_NITRATE = Salt("Calcium Nitrate Tetrahydrate", "Ca(NO3)2·4H2O", 236.15,
                       {Ion.CALCIUM: 40.078, Ion.NITRATE: 124.01})
POTASSIUM_NITRATE = Salt("Potassium Nitrate", "KNO3", 101.1032,
                         {Ion.POTASSIUM: 39.0983, Ion.NITRATE: 62.005})
MAGNESIUM_SULFATE = Salt("Magnesium Sulfate Heptahydrate", "MgSO4·7H2O", 246.4746,
                         {Ion.MAGNESIUM: 24.305, Ion.SULFATE: 96.0626})


def expected_ppm(salt: Salt, ion: Ion, grams_per_liter: float) -> float:
    return grams_per_liter / salt.molecular_weight * salt.ion_contributions.get(ion, 0.0) * 1000


class TestYieldCoefficient:
    """Tests for ion_yield_coefficient() / yield_matrix()."""

    def test_coefficient_is_ppm_per_gram_per_liter(self):
        assert ion_yield_coefficient(CALCIUM_NITRATE, Ion.CALCIUM) == pytest.approx(40.078 * 1000 / 236.15)

    def test_absent_ion_yields_zero(self):
        assert ion_yield_coefficient(CALCIUM_NITRATE, Ion.POTASSIUM) == 0.0

    def test_non_positive_molecular_weight_raises(self):
        broken = Salt("Broken", "X", 0.0, {Ion.CALCIUM: 40.0})
        with pytest.raises(InvalidInputError):
            ion_yield_coefficient(broken, Ion.CALCIUM)

    def test_matrix_layout(self):
        ions = [Ion.CALCIUM, Ion.NITRATE, Ion.POTASSIUM]
        matrix = yield_matrix([CALCIUM_NITRATE, POTASSIUM_NITRATE], ions)
        assert matrix.shape == (3, 2)
        assert matrix[0, 1] == 0.0
        assert matrix[2, 1] == pytest.approx(39.0983 * 1000 / 101.1032)
        dosages = np.array([0.5, 0.25])
        nitrate = matrix[1] @ dosages
        assert nitrate == pytest.approx(
            expected_ppm(CALCIUM_NITRATE, Ion.NITRATE, 0.5)
            + expected_ppm(POTASSIUM_NITRATE, Ion.NITRATE, 0.25)
        )


class TestCalculateSolution:
    """Tests for calculate_solution()."""

    def test_single_salt_stoichiometry(self):
        solution = calculate_solution(Recipe([(CALCIUM_NITRATE, 0.883)]))
        assert solution.ppm(Ion.CALCIUM) == pytest.approx(0.883 / 236.15 * 40.078 * 1000, rel=1e-12)
        assert solution.ppm(Ion.NITRATE) == pytest.approx(0.883 / 236.15 * 124.01 * 1000, rel=1e-12)
        assert solution.ppm(Ion.CALCIUM) == pytest.approx(149.86, abs=0.01)
        assert solution.ppm(Ion.NITRATE) == pytest.approx(463.7, abs=0.1)

    def test_three_salt_recipe(self):
        recipe = Recipe([(CALCIUM_NITRATE, 0.9), (POTASSIUM_NITRATE, 0.5), (MAGNESIUM_SULFATE, 0.4)])
        solution = calculate_solution(recipe)
        assert solution.ppm(Ion.CALCIUM) == pytest.approx(152.7, abs=0.1)
        assert solution.ppm(Ion.POTASSIUM) == pytest.approx(193.4, abs=0.1)
        assert solution.ppm(Ion.MAGNESIUM) == pytest.approx(39.4, abs=0.1)
        assert solution.ppm(Ion.SULFATE) == pytest.approx(155.9, abs=0.1)
        assert solution.ppm(Ion.NITRATE) == pytest.approx(
            expected_ppm(CALCIUM_NITRATE, Ion.NITRATE, 0.9)
            + expected_ppm(POTASSIUM_NITRATE, Ion.NITRATE, 0.5)
        )

    def test_superposition(self):
        dosages = [(CALCIUM_NITRATE, 0.7), (POTASSIUM_NITRATE, 0.3), (MAGNESIUM_SULFATE, 0.45)]
        combined = calculate_solution(Recipe(dosages))
        parts = [calculate_solution(Recipe([d])) for d in dosages]
        for ion in Ion:
            assert combined.ppm(ion) == pytest.approx(sum(p.ppm(ion) for p in parts))

    def test_empty_recipe(self):
        solution = calculate_solution(Recipe())
        assert solution.total_dissolved_solids_ppm == 0.0

    def test_source_water_is_added(self):
        water = {Ion.CALCIUM: 20.0, Ion.SODIUM: 12.0}
        solution = calculate_solution(Recipe([(CALCIUM_NITRATE, 0.5)]), water)
        assert solution.ppm(Ion.CALCIUM) == pytest.approx(expected_ppm(CALCIUM_NITRATE, Ion.CALCIUM, 0.5) + 20.0)
        assert solution.ppm(Ion.SODIUM) == pytest.approx(12.0)

    def test_non_positive_molecular_weight_raises(self):
        broken = Salt("Broken", "X", -5.0, {Ion.CALCIUM: 40.0})
        with pytest.raises(InvalidInputError):
            calculate_solution(Recipe([(broken, 1.0)]))


class TestSolutionValidator:
    """Tests for is_within_targets() / get_violations()."""

    PROFILE = TargetProfile(
        name="Test - Calcium Only",
        ion_targets=[IonTarget(Ion.CALCIUM, 100, 200, 150), IonTarget(Ion.NITRATE, 300, 600, 450)],
    )

    def test_in_range_recipe(self):
        solution = calculate_solution(Recipe([(CALCIUM_NITRATE, 0.87)]))
        assert is_within_targets(solution, self.PROFILE)
        assert get_violations(solution, self.PROFILE) == []

    def test_underdosed_recipe(self):
        solution = calculate_solution(Recipe([(CALCIUM_NITRATE, 0.1)]))
        assert not is_within_targets(solution, self.PROFILE)
        violations = get_violations(solution, self.PROFILE)
        assert len(violations) == 2
        assert all("too low" in v for v in violations)

    def test_overdosed_recipe(self):
        solution = calculate_solution(Recipe([(CALCIUM_NITRATE, 2.0)]))
        violations = get_violations(solution, self.PROFILE)
        assert any(v.startswith("Calcium") and "too high" in v for v in violations)
