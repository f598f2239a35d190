"""
Tests for the Nutrient Solver API endpoints.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from nutrient_optimizer.database import get_db, init_db, make_engine
from nutrient_optimizer.main import create_app
from nutrient_optimizer.services.catalog_provider import JsonSaltLoader, SaltCatalogProvider
from nutrient_optimizer.services.salt_repository import repository_loader


@pytest.fixture(scope="module")
def client():
    return TestClient(create_app())


CALCIUM_ONLY_INLINE = {
    "name": "Inline Calcium",
    "ion_targets": [
        {"ion": "Calcium", "min_ppm": 100, "max_ppm": 200, "target_ppm": 150},
        {"ion": "nitrate", "min_ppm": 300, "max_ppm": 600},
    ],
}


class TestCatalogEndpoints:
    """GET /salts and /profiles."""

    def test_list_salts(self, client):
        response = client.get("/api/nutrient-solver/salts")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 17
        first = data["salts"][0]
        assert first["name"] == "Calcium Nitrate Tetrahydrate"
        assert first["ion_contributions"]["Calcium"] == 40.078

    def test_list_profiles(self, client):
        response = client.get("/api/nutrient-solver/profiles")
        assert response.status_code == 200
        names = [p["name"] for p in response.json()["profiles"]]
        assert "Tomato - Fruiting" in names
        assert "Test - C,N,P" in names

    def test_broken_catalog_is_503(self, tmp_path):
        provider = SaltCatalogProvider(JsonSaltLoader(tmp_path / "missing.json"))
        broken = TestClient(create_app(catalog_provider=provider))
        response = broken.get("/api/nutrient-solver/salts")
        assert response.status_code == 503


class TestSolveEndpoint:
    """POST /solve."""

    def test_library_profile(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile_name": "Test - Calcium Only",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["is_approximate"] is False
        assert data["error"] is None
        assert len(data["recipe"]) == 1
        assert 0.85 < data["recipe"][0]["grams_per_liter"] < 0.89
        assert all(c["in_range"] for c in data["ion_comparisons"])
        assert data["report"].startswith("=== OPTIMIZATION SUCCESS ===")

    def test_inline_profile_uses_midpoint(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile": CALCIUM_ONLY_INLINE,
        })
        assert response.status_code == 200
        nitrate = next(c for c in response.json()["ion_comparisons"] if c["ion"] == "Nitrate")
        assert nitrate["target_ppm"] == 450
        assert nitrate["symbol"] == "NO3-"

    def test_approximate_with_recommendations(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile_name": "Test - C,N,P",
        })
        data = response.json()
        assert data["success"] is True
        assert data["is_approximate"] is True
        assert set(data["unsupplyable_ions"]) == {"Boron", "Potassium"}
        boron = next(r for r in data["recommendations"] if r["ion"] == "Boron")
        assert boron["priority"] == 1
        assert boron["options"][0]["name"] == "Boric Acid"

    def test_empty_selection_is_reported_not_rejected(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": [],
            "profile_name": "Test - Calcium Only",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "no_catalog"

    def test_source_water(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile_name": "Test - Calcium Only",
            "source_water_ppm": {"Calcium": 20},
        })
        assert response.status_code == 200
        calcium = next(c for c in response.json()["ion_comparisons"] if c["ion"] == "Calcium")
        assert calcium["in_range"] is True
        assert calcium["actual_ppm"] > 160

    def test_unknown_salt_is_400(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Unobtainium Salt"],
            "profile_name": "Test - Calcium Only",
        })
        assert response.status_code == 400
        assert "Unobtainium Salt" in response.json()["detail"]

    def test_unknown_profile_is_404(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile_name": "Cactus",
        })
        assert response.status_code == 404

    def test_needs_exactly_one_profile(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
        })
        assert response.status_code == 422

        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile": CALCIUM_ONLY_INLINE,
            "profile_name": "Test - Calcium Only",
        })
        assert response.status_code == 422

    def test_min_above_max_is_422(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile": {"ion_targets": [{"ion": "Calcium", "min_ppm": 300, "max_ppm": 200}]},
        })
        assert response.status_code == 422

    def test_unknown_ion_is_422(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile": {"ion_targets": [{"ion": "Unobtainium", "min_ppm": 1, "max_ppm": 2}]},
        })
        assert response.status_code == 422

    def test_repeated_ion_is_422(self, client):
        response = client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile": {"ion_targets": [
                {"ion": "Calcium", "min_ppm": 100, "max_ppm": 200},
                {"ion": "calcium", "min_ppm": 110, "max_ppm": 190},
            ]},
        })
        assert response.status_code == 422


class TestRecommendationsEndpoint:
    """POST /recommendations."""

    def test_missing_sources(self, client):
        response = client.post("/api/nutrient-solver/recommendations", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile_name": "Test - C,N,P",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["profile_name"] == "Test - C,N,P"
        assert {r["ion"] for r in data["recommendations"]} == {"Boron", "Potassium"}

    def test_diversifying_options(self, client):
        response = client.post("/api/nutrient-solver/recommendations", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile_name": "Test - Calcium Only",
        })
        data = response.json()
        assert len(data["recommendations"]) == 1
        assert data["recommendations"][0]["priority"] == 2
        assert len(data["recommendations"][0]["options"]) == 2


CALCIUM_NITRATE_SALT = {
    "name": "Calcium Nitrate Tetrahydrate",
    "formula": "Ca(NO3)2·4H2O",
    "molecular_weight": 236.15,
    "ion_contributions": {"Calcium": 40.078, "nitrate": 124.01},
}


@pytest.fixture
def db_client():
    engine = make_engine("sqlite://")
    init_db(engine)
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    provider = SaltCatalogProvider(repository_loader(session_factory))
    app = create_app(catalog_provider=provider, catalog_source="database")
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    engine.dispose()


class TestUpsertSaltsEndpoint:
    """PUT /salts against the database catalog."""

    def test_insert_then_list(self, db_client):
        assert db_client.get("/api/nutrient-solver/salts").json()["total"] == 0

        response = db_client.put("/api/nutrient-solver/salts", json=[CALCIUM_NITRATE_SALT])
        assert response.status_code == 200
        assert response.json() == {"written": 1, "total": 1}

        salts = db_client.get("/api/nutrient-solver/salts").json()["salts"]
        assert [s["name"] for s in salts] == ["Calcium Nitrate Tetrahydrate"]
        assert salts[0]["ion_contributions"] == {"Calcium": 40.078, "Nitrate": 124.01}

    def test_update_is_visible_immediately(self, db_client):
        db_client.put("/api/nutrient-solver/salts", json=[CALCIUM_NITRATE_SALT])
        db_client.get("/api/nutrient-solver/salts")

        updated = dict(CALCIUM_NITRATE_SALT, molecular_weight=164.088)
        response = db_client.put("/api/nutrient-solver/salts", json=[updated])
        assert response.json() == {"written": 1, "total": 1}

        salts = db_client.get("/api/nutrient-solver/salts").json()["salts"]
        assert salts[0]["molecular_weight"] == 164.088

    def test_solve_with_database_catalog(self, db_client):
        db_client.put("/api/nutrient-solver/salts", json=[CALCIUM_NITRATE_SALT])
        response = db_client.post("/api/nutrient-solver/solve", json={
            "selected_salts": ["Calcium Nitrate Tetrahydrate"],
            "profile_name": "Test - Calcium Only",
        })
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_unknown_ion_is_422(self, db_client):
        bad = dict(CALCIUM_NITRATE_SALT, ion_contributions={"Unobtainium": 1.0})
        response = db_client.put("/api/nutrient-solver/salts", json=[bad])
        assert response.status_code == 422

    def test_json_catalog_is_read_only(self, client):
        response = client.put("/api/nutrient-solver/salts", json=[CALCIUM_NITRATE_SALT])
        assert response.status_code == 409

    def test_unknown_catalog_source(self):
        with pytest.raises(ValueError):
            create_app(catalog_source="spreadsheet")
