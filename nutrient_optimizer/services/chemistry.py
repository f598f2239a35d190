"""
Chemical data model for nutrient recipe optimization.

Defines the closed set of tracked ions, the salts that supply them, per-ion
target ranges grouped into profiles, and the recipe/solution carriers that
flow between the calculator and the optimizer.

Ions are persisted as canonical code strings (e.g. "Nitrate"). The mapping
is an explicit table checked at import time, and parsing an unknown code
fails immediately with UnknownIonError.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple
import math

from nutrient_optimizer.services.exceptions import InvalidInputError, UnknownIonError


class Ion(str, Enum):
    """Ionic species tracked in a nutrient solution."""
    NITRATE = "nitrate"
    AMMONIUM = "ammonium"
    POTASSIUM = "potassium"
    CALCIUM = "calcium"
    MAGNESIUM = "magnesium"
    PHOSPHATE = "phosphate"
    SULFATE = "sulfate"
    IRON = "iron"
    MANGANESE = "manganese"
    ZINC = "zinc"
    COPPER = "copper"
    BORON = "boron"
    MOLYBDENUM = "molybdenum"
    SODIUM = "sodium"
    SILICON = "silicon"
    CHLORINE = "chlorine"

    @property
    def code(self) -> str:
        return ION_CODES[self]

    @property
    def symbol(self) -> str:
        return ION_SYMBOLS[self]

    def __str__(self) -> str:
        return ION_CODES[self]


ION_CODES: Dict[Ion, str] = {
    Ion.NITRATE: "Nitrate",
    Ion.AMMONIUM: "Ammonium",
    Ion.POTASSIUM: "Potassium",
    Ion.CALCIUM: "Calcium",
    Ion.MAGNESIUM: "Magnesium",
    Ion.PHOSPHATE: "Phosphate",
    Ion.SULFATE: "Sulfate",
    Ion.IRON: "Iron",
    Ion.MANGANESE: "Manganese",
    Ion.ZINC: "Zinc",
    Ion.COPPER: "Copper",
    Ion.BORON: "Boron",
    Ion.MOLYBDENUM: "Molybdenum",
    Ion.SODIUM: "Sodium",
    Ion.SILICON: "Silicon",
    Ion.CHLORINE: "Chlorine",
}

ION_SYMBOLS: Dict[Ion, str] = {
    Ion.NITRATE: "NO3-",
    Ion.AMMONIUM: "NH4+",
    Ion.POTASSIUM: "K+",
    Ion.CALCIUM: "Ca2+",
    Ion.MAGNESIUM: "Mg2+",
    Ion.PHOSPHATE: "P",
    Ion.SULFATE: "SO4 2-",
    Ion.IRON: "Fe",
    Ion.MANGANESE: "Mn",
    Ion.ZINC: "Zn",
    Ion.COPPER: "Cu",
    Ion.BORON: "B",
    Ion.MOLYBDENUM: "Mo",
    Ion.SODIUM: "Na+",
    Ion.SILICON: "Si",
    Ion.CHLORINE: "Cl-",
}


def _build_code_lookup() -> Dict[str, Ion]:
    missing = [ion for ion in Ion if ion not in ION_CODES]
    if missing:
        raise RuntimeError(f"Ion code table is missing entries for: {missing}")
    lookup: Dict[str, Ion] = {}
    for ion, code in ION_CODES.items():
        key = code.lower()
        if key in lookup:
            raise RuntimeError(f"Ion code {code!r} is mapped to both {lookup[key]} and {ion}")
        lookup[key] = ion
    return lookup


_ION_BY_CODE = _build_code_lookup()


def ion_from_code(code: str) -> Ion:
    """
    Parse a canonical ion code (case-insensitive) into an Ion.

    Accepts both the stored code ("Nitrate") and the enum value ("nitrate").

    Raises:
        UnknownIonError: if the string is not a known ion code.
    """
    if isinstance(code, Ion):
        return code
    if not isinstance(code, str):
        raise UnknownIonError(str(code))
    ion = _ION_BY_CODE.get(code.strip().lower())
    if ion is None:
        raise UnknownIonError(code)
    return ion


def ion_to_code(ion: Ion) -> str:
    """Return the canonical storage string for an ion."""
    return ION_CODES[ion]


@dataclass(frozen=True)
class Salt:
    """
    A dissolvable compound and its ion yield.

    ion_contributions maps each ion to grams of that ion per mole of salt.
    Zero entries are dropped so that a present key always means the salt
    supplies the ion.
    """
    name: str
    formula: str
    molecular_weight: float
    ion_contributions: Mapping[Ion, float] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        contributions = {
            Ion(ion): float(grams)
            for ion, grams in dict(self.ion_contributions).items()
            if grams != 0
        }
        object.__setattr__(self, "ion_contributions", MappingProxyType(contributions))

    def provides(self, ion: Ion) -> bool:
        return ion in self.ion_contributions

    def mass_fraction(self, ion: Ion) -> float:
        """Grams of the ion per gram of salt."""
        if self.molecular_weight <= 0:
            return 0.0
        return self.ion_contributions.get(ion, 0.0) / self.molecular_weight

    def __str__(self) -> str:
        return f"{self.name} ({self.formula})"


@dataclass(frozen=True)
class IonTarget:
    """Acceptable ppm range for one ion, with an optional preferred value."""
    ion: Ion
    min_ppm: float
    max_ppm: float
    target_ppm: Optional[float] = None

    @property
    def effective_target_ppm(self) -> float:
        if self.target_ppm is not None:
            return self.target_ppm
        return (self.min_ppm + self.max_ppm) / 2.0

    def __str__(self) -> str:
        if self.target_ppm is not None:
            return f"{self.ion}: {self.min_ppm:g} - {self.max_ppm:g} ppm (target {self.target_ppm:g} ppm)"
        return f"{self.ion}: {self.min_ppm:g} - {self.max_ppm:g} ppm"


@dataclass(frozen=True)
class IonDemand:
    """An ion target resolved to the point value used by the optimizer."""
    ion: Ion
    target_ppm: float
    min_ppm: float
    max_ppm: float

    @classmethod
    def from_target(cls, target: IonTarget) -> "IonDemand":
        return cls(
            ion=target.ion,
            target_ppm=target.effective_target_ppm,
            min_ppm=target.min_ppm,
            max_ppm=target.max_ppm,
        )


@dataclass(frozen=True)
class TargetProfile:
    """
    Per-ion requirements for one purpose, e.g. a crop at a growth stage.

    EC bounds are carried for callers but are not enforced by the optimizer.
    """
    name: str
    ion_targets: Tuple[IonTarget, ...] = ()
    description: str = ""
    min_ec: Optional[float] = None
    max_ec: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "ion_targets", tuple(self.ion_targets))

    def get_target(self, ion: Ion) -> Optional[IonTarget]:
        for target in self.ion_targets:
            if target.ion == ion:
                return target
        return None

    def demands(self) -> List[IonDemand]:
        return [IonDemand.from_target(t) for t in self.ion_targets]

    def __str__(self) -> str:
        lines = [f"{self.name} - {self.description}" if self.description else self.name]
        lines.extend(f"  {target}" for target in self.ion_targets)
        if self.min_ec is not None or self.max_ec is not None:
            lines.append(f"  EC: {self.min_ec} - {self.max_ec} mS/cm")
        return "\n".join(lines)


@dataclass(frozen=True)
class RecipeItem:
    salt: Salt
    grams_per_liter: float


class Recipe:
    """
    Ordered salt dosages in grams per liter.

    Adding a salt that is already present merges the dosages, so a recipe
    never lists the same salt twice.
    """

    def __init__(self, items: Iterable[Tuple[Salt, float]] = ()):
        self._items: List[RecipeItem] = []
        for salt, grams_per_liter in items:
            self.add_salt(salt, grams_per_liter)

    def add_salt(self, salt: Salt, grams_per_liter: float) -> None:
        if not math.isfinite(grams_per_liter) or grams_per_liter < 0:
            raise InvalidInputError(
                f"Dosage for {salt.name} must be a non-negative number, got {grams_per_liter}"
            )
        for index, item in enumerate(self._items):
            if item.salt == salt:
                self._items[index] = RecipeItem(salt, item.grams_per_liter + grams_per_liter)
                return
        self._items.append(RecipeItem(salt, grams_per_liter))

    @property
    def items(self) -> Tuple[RecipeItem, ...]:
        return tuple(self._items)

    def dosage_of(self, salt: Salt) -> float:
        for item in self._items:
            if item.salt == salt:
                return item.grams_per_liter
        return 0.0

    def __iter__(self) -> Iterator[RecipeItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        parts = ", ".join(f"{i.salt.name}={i.grams_per_liter:g}" for i in self._items)
        return f"Recipe({parts})"


@dataclass(frozen=True)
class SolutionProfile:
    """Resulting ppm per ion for a recipe."""
    ion_concentrations_ppm: Mapping[Ion, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(
            self, "ion_concentrations_ppm", MappingProxyType(dict(self.ion_concentrations_ppm))
        )

    @property
    def total_dissolved_solids_ppm(self) -> float:
        return sum(self.ion_concentrations_ppm.values())

    def ppm(self, ion: Ion) -> float:
        return self.ion_concentrations_ppm.get(ion, 0.0)

    def __str__(self) -> str:
        ordered = sorted(self.ion_concentrations_ppm.items(), key=lambda kv: kv[0].code)
        return "\n".join(f"{ion}: {ppm:.2f} ppm" for ion, ppm in ordered)


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def find_salt_errors(salts: Sequence[Salt]) -> List[str]:
    """Return one message per malformed catalog entry."""
    errors: List[str] = []
    seen = set()
    for salt in salts:
        if not _finite(salt.molecular_weight) or salt.molecular_weight <= 0:
            errors.append(f"{salt.name}: molecular weight must be > 0 (got {salt.molecular_weight})")
        for ion, grams in salt.ion_contributions.items():
            if not _finite(grams) or grams < 0:
                errors.append(f"{salt.name}: contribution of {ion} must be >= 0 (got {grams})")
        if salt.name in seen:
            errors.append(f"{salt.name}: listed more than once")
        seen.add(salt.name)
    return errors


def find_target_errors(targets: Sequence[IonTarget]) -> List[str]:
    """Return one message per malformed or repeated ion target."""
    errors: List[str] = []
    seen = set()
    for target in targets:
        values = [target.min_ppm, target.max_ppm]
        if target.target_ppm is not None:
            values.append(target.target_ppm)
        if not all(_finite(v) for v in values):
            errors.append(f"{target.ion}: ppm values must be finite numbers")
        elif target.min_ppm > target.max_ppm:
            errors.append(f"{target.ion}: min {target.min_ppm} ppm exceeds max {target.max_ppm} ppm")
        elif target.min_ppm < 0:
            errors.append(f"{target.ion}: min {target.min_ppm} ppm is negative")
        if target.ion in seen:
            errors.append(f"{target.ion}: listed more than once in the profile")
        seen.add(target.ion)
    return errors


def find_input_errors(salts: Sequence[Salt], targets: Sequence[IonTarget]) -> List[str]:
    return find_salt_errors(salts) + find_target_errors(targets)
