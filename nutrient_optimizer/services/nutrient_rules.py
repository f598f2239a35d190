"""
Deterministic thresholds and tunables for nutrient recipe optimization.

Shared by the optimizer, the conflict analyzer and the recommendation
engine. Per-solve overrides go through SolverConfig.
"""

NOISE_THRESHOLD = 1e-6
RANGE_TOLERANCE = 1e-3
RECIPE_DECIMALS = 5

# Penalty weights of the soft-constraint LP. A lower range weight keeps the
# solution tight to the preferred targets; raising it towards the target
# weight trades target accuracy for staying inside the min/max ranges.
TARGET_DEVIATION_WEIGHT = 1.0
RANGE_VIOLATION_WEIGHT = 0.1

DEFAULT_SOLVER_METHOD = "highs"
SUPPORTED_SOLVER_METHODS = ("highs", "highs-ds", "highs-ipm")
DEFAULT_TIME_LIMIT_S = 30.0
DEFAULT_MAX_ITERATIONS = 100_000

# g/L -> mg/L
PPM_PER_GRAM_PER_LITER = 1000.0

CATALOG_TTL_SECONDS = 10 * 60

RECOMMENDATION_PRIMARY_WEIGHT = 10.0
RECOMMENDATION_ION_COUNT_WEIGHT = 2.0
RECOMMENDATION_MACRO_WEIGHT = 3.0
MAX_MISSING_SOURCE_OPTIONS = 3
MAX_DIVERSIFYING_OPTIONS = 2
DIVERSIFY_BELOW_SELECTED_COUNT = 4

PRIORITY_CRITICAL = 1
PRIORITY_HELPFUL = 2

MACRONUTRIENT_CODES = (
    "Nitrate",
    "Ammonium",
    "Potassium",
    "Calcium",
    "Magnesium",
    "Phosphate",
    "Sulfate",
)
