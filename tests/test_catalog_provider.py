"""
Tests for catalog loading and the TTL-cached catalog provider.
"""
import json

import pytest

from nutrient_optimizer.services.catalog_provider import (
    JsonSaltLoader,
    PlantProfileLibrary,
    SaltCatalogProvider,
    load_profiles_from_json,
    load_salts_from_json,
    salt_from_dict,
    salt_to_dict,
)
from nutrient_optimizer.services.chemistry import Ion, Salt
from nutrient_optimizer.services.exceptions import CatalogLoadError, UnknownIonError


CALCIUM_NITRATE = Salt("Calcium Nitrate Tetrahydrate", "Ca(NO3)2·4H2O", 236.15,
                       {Ion.CALCIUM: 40.078, Ion.NITRATE: 124.01})
POTASSIUM_NITRATE = Salt("Potassium Nitrate", "KNO3", 101.1032,
                         {Ion.POTASSIUM: 39.0983, Ion.NITRATE: 62.005})


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingLoader:
    def __init__(self, salts):
        self.salts = list(salts)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return list(self.salts)


def write_json(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestJsonLoading:
    """Tests for load_salts_from_json() / load_profiles_from_json()."""

    def test_builtin_salt_library(self):
        salts = load_salts_from_json()
        assert len(salts) == 17
        calcium_nitrate = salts[0]
        assert calcium_nitrate.name == "Calcium Nitrate Tetrahydrate"
        assert calcium_nitrate.molecular_weight == 236.15
        assert calcium_nitrate.ion_contributions[Ion.NITRATE] == 124.01

    def test_builtin_names_are_unique(self):
        names = [salt.name for salt in load_salts_from_json()]
        assert len(names) == len(set(names))

    def test_builtin_profile_library(self):
        profiles = load_profiles_from_json()
        names = [p.name for p in profiles]
        assert "Lettuce - Vegetative" in names
        assert "Test - Calcium Only" in names
        for profile in profiles:
            for target in profile.ion_targets:
                assert target.min_ppm <= target.max_ppm

    def test_unknown_ion_code_fails_load(self, tmp_path):
        path = write_json(tmp_path, "salts.json", {"salts": [
            {"name": "Mystery", "formula": "?", "molecular_weight": 10.0,
             "ion_contributions": {"Unobtainium": 1.0}},
        ]})
        with pytest.raises(CatalogLoadError) as exc_info:
            load_salts_from_json(path)
        assert "Unobtainium" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, UnknownIonError)

    def test_missing_field_fails_load(self, tmp_path):
        path = write_json(tmp_path, "salts.json", {"salts": [{"name": "No weight"}]})
        with pytest.raises(CatalogLoadError):
            load_salts_from_json(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(CatalogLoadError) as exc_info:
            load_salts_from_json(tmp_path / "absent.json")
        assert exc_info.value.source.endswith("absent.json")

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(CatalogLoadError):
            load_profiles_from_json(path)

    def test_dict_round_trip(self):
        data = salt_to_dict(CALCIUM_NITRATE)
        assert data["ion_contributions"] == {"Calcium": 40.078, "Nitrate": 124.01}
        salt = salt_from_dict(data)
        assert salt == CALCIUM_NITRATE
        assert dict(salt.ion_contributions) == dict(CALCIUM_NITRATE.ion_contributions)


class TestSaltCatalogProvider:
    """Tests for the TTL cache."""

    def test_loads_once_within_ttl(self):
        loader = CountingLoader([CALCIUM_NITRATE])
        clock = FakeClock()
        provider = SaltCatalogProvider(loader, ttl_seconds=600, clock=clock)

        provider.get_salts()
        clock.now += 599
        provider.get_salts()
        assert loader.calls == 1

    def test_reloads_after_ttl(self):
        loader = CountingLoader([CALCIUM_NITRATE])
        clock = FakeClock()
        provider = SaltCatalogProvider(loader, ttl_seconds=600, clock=clock)

        provider.get_salts()
        clock.now += 601
        assert provider.is_stale
        provider.get_salts()
        assert loader.calls == 2

    def test_reload_picks_up_changes(self):
        loader = CountingLoader([CALCIUM_NITRATE])
        clock = FakeClock()
        provider = SaltCatalogProvider(loader, ttl_seconds=60, clock=clock)

        assert len(provider.get_salts()) == 1
        loader.salts.append(POTASSIUM_NITRATE)
        assert len(provider.get_salts()) == 1
        clock.now += 61
        assert len(provider.get_salts()) == 2

    def test_invalidate_forces_reload(self):
        loader = CountingLoader([CALCIUM_NITRATE])
        provider = SaltCatalogProvider(loader, ttl_seconds=None)

        provider.get_salts()
        provider.get_salts()
        provider.invalidate()
        provider.get_salts()
        assert loader.calls == 2

    def test_returned_list_is_a_copy(self):
        provider = SaltCatalogProvider(CountingLoader([CALCIUM_NITRATE]))
        provider.get_salts().clear()
        assert len(provider.get_salts()) == 1

    def test_find(self):
        provider = SaltCatalogProvider(CountingLoader([CALCIUM_NITRATE, POTASSIUM_NITRATE]))
        assert provider.find("Potassium Nitrate") == POTASSIUM_NITRATE
        assert provider.find("Unknown") is None

    def test_resolve_keeps_order_and_merges_repeats(self):
        provider = SaltCatalogProvider(CountingLoader([CALCIUM_NITRATE, POTASSIUM_NITRATE]))
        resolved = provider.resolve(["Potassium Nitrate", "Calcium Nitrate Tetrahydrate", "Potassium Nitrate"])
        assert resolved == [POTASSIUM_NITRATE, CALCIUM_NITRATE]

    def test_resolve_unknown_name(self):
        provider = SaltCatalogProvider(CountingLoader([CALCIUM_NITRATE]))
        with pytest.raises(KeyError):
            provider.resolve(["Calcium Nitrate Tetrahydrate", "Unobtainium Salt"])

    def test_json_loader(self):
        provider = SaltCatalogProvider(JsonSaltLoader())
        assert provider.find("Boric Acid").provides(Ion.BORON)

    def test_load_error_propagates(self, tmp_path):
        provider = SaltCatalogProvider(JsonSaltLoader(tmp_path / "missing.json"))
        with pytest.raises(CatalogLoadError):
            provider.get_salts()


class TestPlantProfileLibrary:

    def test_find_profile(self):
        library = PlantProfileLibrary()
        profile = library.find("Test - Calcium Only")
        assert profile is not None
        assert profile.get_target(Ion.CALCIUM).target_ppm == 150
        assert profile.min_ec is None

    def test_crop_profiles_carry_ec(self):
        profile = PlantProfileLibrary().find("Lettuce - Vegetative")
        assert profile.min_ec == 1.2
        assert profile.max_ec == 2.0

    def test_unknown_profile(self):
        assert PlantProfileLibrary().find("Cactus") is None
