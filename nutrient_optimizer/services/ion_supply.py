"""
Ion supply analysis.

Splits the demanded ions into those at least one available salt can
supply and those no salt contributes at all. Only supplyable ions enter
the LP; the others are reported as unreachable.
"""
from dataclasses import dataclass, field
from typing import List, Sequence, Set

from nutrient_optimizer.services.chemistry import Ion, IonDemand, Salt


@dataclass
class IonSupply:
    supplyable: List[IonDemand] = field(default_factory=list)
    unsupplyable: List[IonDemand] = field(default_factory=list)

    @property
    def supplyable_ions(self) -> List[Ion]:
        return [d.ion for d in self.supplyable]

    @property
    def unsupplyable_ions(self) -> List[Ion]:
        return [d.ion for d in self.unsupplyable]


def supplied_ions(salts: Sequence[Salt]) -> Set[Ion]:
    """Set of ions contributed by at least one of the salts."""
    ions: Set[Ion] = set()
    for salt in salts:
        ions.update(ion for ion, grams in salt.ion_contributions.items() if grams > 0)
    return ions


def analyze_ion_supply(demands: Sequence[IonDemand], salts: Sequence[Salt]) -> IonSupply:
    """Partition demands by whether any salt contributes the ion, keeping profile order."""
    available = supplied_ions(salts)
    supply = IonSupply()
    for demand in demands:
        if demand.ion in available:
            supply.supplyable.append(demand)
        else:
            supply.unsupplyable.append(demand)
    return supply
