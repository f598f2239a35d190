"""
Salt catalog and plant profile library access.

The catalog provider is an explicitly constructed object that callers pass
to whatever needs the catalog; there is no module-level cache. It keeps
the last loaded salt list and reloads it through its loader once the cache
is older than ttl_seconds (default 10 minutes), or after invalidate().

Loaders are plain callables returning a list of Salt: the JSON loader below
for the built-in library, or SaltRepository.list_salts for the database.
"""
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
import json
import logging
import threading
import time

from nutrient_optimizer.services.chemistry import (
    IonTarget,
    Salt,
    TargetProfile,
    ion_from_code,
    ion_to_code,
)
from nutrient_optimizer.services.exceptions import CatalogLoadError, UnknownIonError
from nutrient_optimizer.services.nutrient_rules import CATALOG_TTL_SECONDS

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent.parent / "data"
DEFAULT_SALTS_PATH = DATA_DIR / "salts.json"
DEFAULT_PROFILES_PATH = DATA_DIR / "plant_profiles.json"

SaltLoader = Callable[[], List[Salt]]


def salt_from_dict(data: Dict[str, Any]) -> Salt:
    """
    Build a Salt from its JSON form.

    Ion keys must be canonical ion codes; an unknown code raises
    UnknownIonError instead of being skipped.
    """
    contributions = {
        ion_from_code(code): float(grams)
        for code, grams in (data.get("ion_contributions") or {}).items()
    }
    return Salt(
        name=data["name"],
        formula=data.get("formula", ""),
        molecular_weight=float(data["molecular_weight"]),
        ion_contributions=contributions,
    )


def salt_to_dict(salt: Salt) -> Dict[str, Any]:
    return {
        "name": salt.name,
        "formula": salt.formula,
        "molecular_weight": salt.molecular_weight,
        "ion_contributions": {ion_to_code(ion): grams for ion, grams in salt.ion_contributions.items()},
    }


def profile_from_dict(data: Dict[str, Any]) -> TargetProfile:
    targets = [
        IonTarget(
            ion=ion_from_code(row["ion"]),
            min_ppm=float(row["min_ppm"]),
            max_ppm=float(row["max_ppm"]),
            target_ppm=float(row["target_ppm"]) if row.get("target_ppm") is not None else None,
        )
        for row in data.get("ion_targets", [])
    ]
    return TargetProfile(
        name=data["name"],
        description=data.get("description", ""),
        ion_targets=tuple(targets),
        min_ec=data.get("min_ec"),
        max_ec=data.get("max_ec"),
    )


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error loading {path}: {e}")
        raise CatalogLoadError(f"Could not read {path}: {e}", source=str(path)) from e
    if not isinstance(data, dict):
        raise CatalogLoadError(f"{path}: expected a JSON object at top level", source=str(path))
    return data


def load_salts_from_json(path: Union[str, Path] = DEFAULT_SALTS_PATH) -> List[Salt]:
    """Load the salt list from a JSON file with a top-level "salts" array."""
    path = Path(path)
    data = _read_json(path)
    salts = []
    for index, entry in enumerate(data.get("salts", [])):
        try:
            salts.append(salt_from_dict(entry))
        except UnknownIonError as e:
            raise CatalogLoadError(
                f"{path}: salt #{index} ({entry.get('name', '?')}): {e}", source=str(path)
            ) from e
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogLoadError(
                f"{path}: salt #{index} is malformed: {e!r}", source=str(path)
            ) from e
    logger.info(f"Loaded {len(salts)} salts from {path.name}")
    return salts


def load_profiles_from_json(path: Union[str, Path] = DEFAULT_PROFILES_PATH) -> List[TargetProfile]:
    """Load target profiles from a JSON file with a top-level "profiles" array."""
    path = Path(path)
    data = _read_json(path)
    profiles = []
    for index, entry in enumerate(data.get("profiles", [])):
        try:
            profiles.append(profile_from_dict(entry))
        except UnknownIonError as e:
            raise CatalogLoadError(
                f"{path}: profile #{index} ({entry.get('name', '?')}): {e}", source=str(path)
            ) from e
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogLoadError(
                f"{path}: profile #{index} is malformed: {e!r}", source=str(path)
            ) from e
    return profiles


class JsonSaltLoader:
    """Loader callable reading a salts JSON file on every call."""

    def __init__(self, path: Union[str, Path] = DEFAULT_SALTS_PATH):
        self.path = Path(path)

    def __call__(self) -> List[Salt]:
        return load_salts_from_json(self.path)


class SaltCatalogProvider:
    """
    Cached salt catalog with time-based invalidation.

    Args:
        loader: Callable returning the full salt list
        ttl_seconds: Reload when the cached list is older than this;
                     None keeps the first load until invalidate()
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        loader: SaltLoader,
        ttl_seconds: Optional[float] = CATALOG_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._salts: Optional[List[Salt]] = None
        self._loaded_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def is_stale(self) -> bool:
        if self._salts is None or self._loaded_at is None:
            return True
        if self.ttl_seconds is None:
            return False
        return self._clock() - self._loaded_at > self.ttl_seconds

    def invalidate(self) -> None:
        with self._lock:
            self._salts = None
            self._loaded_at = None

    def get_salts(self) -> List[Salt]:
        with self._lock:
            if self.is_stale:
                salts = list(self._loader())
                logger.info(f"Salt catalog (re)loaded: {len(salts)} salts")
                self._salts = salts
                self._loaded_at = self._clock()
            return list(self._salts)

    def find(self, name: str) -> Optional[Salt]:
        for salt in self.get_salts():
            if salt.name == name:
                return salt
        return None

    def resolve(self, names: Sequence[str]) -> List[Salt]:
        """
        Look up salts by name, keeping the requested order.

        Raises:
            KeyError: listing every name not in the catalog.
        """
        by_name = {salt.name: salt for salt in self.get_salts()}
        missing = [name for name in names if name not in by_name]
        if missing:
            raise KeyError(f"Unknown salt(s): {', '.join(missing)}")
        resolved: List[Salt] = []
        for name in names:
            if by_name[name] not in resolved:
                resolved.append(by_name[name])
        return resolved


class PlantProfileLibrary:
    """Named target profiles loaded lazily from JSON."""

    def __init__(self, path: Union[str, Path] = DEFAULT_PROFILES_PATH):
        self.path = Path(path)
        self._profiles: Optional[List[TargetProfile]] = None

    @property
    def profiles(self) -> List[TargetProfile]:
        if self._profiles is None:
            self._profiles = load_profiles_from_json(self.path)
        return list(self._profiles)

    def find(self, name: str) -> Optional[TargetProfile]:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None

    def names(self) -> List[str]:
        return [profile.name for profile in self.profiles]
