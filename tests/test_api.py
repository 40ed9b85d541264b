"""
API tests for the farmer data service.
The aggregator runs over in-memory fakes; the recommendation generator is mocked.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Closed square, [lon, lat] order
SQUARE_GEOMETRY = {"type": "Polygon", "coordinates": [[[0, 0], [0, 2], [2, 2], [2, 0], [0, 0]]]}


@pytest.fixture
def generator():
    from src.farmdata.models import Insight

    mock_generator = MagicMock()
    mock_generator.generate = AsyncMock(return_value=Insight(
        answer="Irrigate lightly this week; rain is expected on Friday.",
        recommendations=["Delay urea top-dressing until after the rain"],
        urgent_alerts=[],
        confidence=0.8,
        sources=["weather", "ndvi"],
    ))
    return mock_generator


@pytest.fixture
def client(build_aggregator, make_user, generator):
    """Test client wired to an aggregator holding one onboarded farmer and one without a location."""
    from fastapi.testclient import TestClient
    from src.api.app import create_app

    aggregator, _ = build_aggregator(
        make_user(location="560001 (12.9716,77.5946)"),
        make_user(user_id="user-nowhere", location="Bengaluru", geometry=None),
    )
    return TestClient(create_app(aggregator=aggregator, generator=generator))


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["aggregator_ready"] is True
        assert data["generator_configured"] is True

    def test_degraded_without_services(self):
        from fastapi.testclient import TestClient
        from src.api.app import create_app

        client = TestClient(create_app())

        data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert client.get("/farmer-data/user-1").status_code == 503


class TestFarmerData:
    def test_full_context(self, client):
        resp = client.get("/farmer-data/user-1")

        assert resp.status_code == 200
        data = resp.json()
        assert data["crop_name"] == "rice"
        assert data["sowing_date"] == "2025-06-15"
        assert data["current_weather"]["temp"] == 28
        assert len(data["forecast"]) == 7
        assert data["ndvi_data"][0]["satellite"] == "Landsat-8"
        assert data["soil_data"][0]["moisture_status"] == "Good"
        assert data["uv_index"] == pytest.approx(6.3)
        assert data["uv_risk_level"] == "High"
        assert all(data["data_completeness"].values())

    def test_selected_field_and_options(self, client, providers):
        resp = client.get(
            "/farmer-data/user-1",
            params={"selected_field_id": "poly-picked", "include_historical_data": "false"},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["ndvi_data"] is None
        assert data["data_completeness"]["ndvi"] is False
        providers[1].get_current_uvi.assert_awaited_once_with("poly-picked")

    def test_onboarding_incomplete(self, client):
        resp = client.get("/farmer-data/ghost")
        assert resp.status_code == 403
        assert "onboarding not completed" in resp.json()["detail"]

    def test_location_required(self, client):
        resp = client.get("/farmer-data/user-nowhere", params={"require_all_data": "true"})
        assert resp.status_code == 422
        assert "Location coordinates are required" in resp.json()["detail"]

    def test_missing_location_is_partial(self, client):
        resp = client.get("/farmer-data/user-nowhere")
        assert resp.status_code == 200
        assert resp.json()["data_completeness"]["weather"] is False

    @pytest.mark.parametrize("days", [0, 91])
    def test_history_days_validated(self, client, days):
        resp = client.get("/farmer-data/user-1", params={"max_history_days": days})
        assert resp.status_code == 422

    def test_history_limit_from_configuration(self, build_aggregator, make_user, generator, providers):
        from fastapi.testclient import TestClient
        from src.api.app import create_app

        aggregator, _ = build_aggregator(make_user(), default_history_days=10, max_history_days=14)
        client = TestClient(create_app(aggregator=aggregator, generator=generator))

        resp = client.get("/farmer-data/user-1", params={"max_history_days": 30})
        assert resp.status_code == 422
        assert "between 1 and 14" in resp.json()["detail"]

        assert client.get("/farmer-data/user-1").status_code == 200
        _, start, end = providers[1].get_ndvi_history.await_args.args
        assert end - start == 10 * 86400

    def test_unexpected_error(self, generator):
        from fastapi.testclient import TestClient
        from src.api.app import create_app

        aggregator = MagicMock()
        aggregator.get_farmer_data = AsyncMock(side_effect=RuntimeError("database is locked"))
        client = TestClient(create_app(aggregator=aggregator, generator=generator))

        resp = client.get("/farmer-data/user-1")
        assert resp.status_code == 502
        assert "database is locked" in resp.json()["detail"]

    def test_completeness(self, client, providers):
        providers[1].get_current_soil.side_effect = RuntimeError("soil plan required")

        resp = client.get("/farmer-data/user-1/completeness")

        assert resp.status_code == 200
        data = resp.json()
        assert data["percentage"] == 83
        assert data["missing_data"] == ["soil"]

    def test_completeness_requires_onboarding(self, client):
        assert client.get("/farmer-data/ghost/completeness").status_code == 403


class TestFarmerProfile:
    FORM = {
        "user_id": "user-new",
        "name": "Lakshmi",
        "location": "571401 (12.5218,76.8951)",
        "crop_name": "sugarcane",
        "soil_type": "red loam",
        "sowing_date": "2025-02-01",
        "has_storage_capacity": False,
        "storage_capacity": 5,
        "irrigation_method": "furrow",
    }

    def test_create_profile(self, client):
        resp = client.post("/farmer-profile", json=self.FORM)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["profile"]["crop_name"] == "sugarcane"
        assert data["profile"]["is_onboarding_complete"] is True
        assert data["profile"]["storage_capacity"] is None

    def test_created_profile_is_aggregatable(self, client):
        client.post("/farmer-profile", json=self.FORM)

        profile = client.get("/farmer-profile/user-new").json()
        assert profile["user"]["name"] == "Lakshmi"
        assert profile["farmer_profile"]["irrigation_method"] == "furrow"

        resp = client.get("/farmer-data/user-new")
        assert resp.status_code == 200
        assert resp.json()["data_completeness"]["weather"] is True

    def test_missing_required_field(self, client):
        form = {k: v for k, v in self.FORM.items() if k != "crop_name"}
        assert client.post("/farmer-profile", json=form).status_code == 422

    def test_store_failure(self, build_aggregator, generator):
        from fastapi.testclient import TestClient
        from src.api.app import create_app

        aggregator, store = build_aggregator()
        store.upsert_farmer_profile = AsyncMock(side_effect=RuntimeError("disk full"))
        client = TestClient(create_app(aggregator=aggregator, generator=generator))

        resp = client.post("/farmer-profile", json=self.FORM)
        assert resp.status_code == 500
        assert "disk full" in resp.json()["detail"]

    def test_unknown_irrigation_method_writes_nothing(self, client):
        form = {**self.FORM, "user_id": "user-bucket", "irrigation_method": "bucket"}

        resp = client.post("/farmer-profile", json=form)

        assert resp.status_code == 422
        assert "irrigation_method" in resp.text
        assert client.get("/farmer-profile/user-bucket").status_code == 404

    def test_irrigation_label_normalized(self, client):
        resp = client.post("/farmer-profile", json={**self.FORM, "irrigation_method": "Rain-Fed"})

        assert resp.status_code == 200
        assert resp.json()["profile"]["irrigation_method"] == "rainfed"

    def test_unknown_user(self, client):
        assert client.get("/farmer-profile/ghost").status_code == 404


class TestProfileUpdate:
    def test_partial_update_keeps_other_fields(self, client):
        resp = client.put("/farmer-profile", json={"user_id": "user-1", "crop_name": "maize"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Profile updated successfully"
        assert data["profile"]["crop_name"] == "maize"
        assert data["profile"]["soil_type"] == "clay loam"
        assert data["profile"]["irrigation_method"] == "drip"

        assert client.get("/farmer-data/user-1").json()["crop_name"] == "maize"

    def test_user_fields_only(self, client):
        resp = client.put("/farmer-profile", json={"user_id": "user-1", "phone": "+91 98450 00000"})

        assert resp.status_code == 200
        assert resp.json()["profile"] is None
        lookup = client.get("/farmer-profile/user-1").json()
        assert lookup["user"]["phone"] == "+91 98450 00000"
        assert lookup["user"]["name"] == "Ravi"

    def test_user_and_profile_fields(self, client):
        resp = client.put("/farmer-profile", json={
            "user_id": "user-1", "location": "Mysuru (12.2958,76.6394)", "irrigation_method": "SPRINKLER",
        })

        assert resp.status_code == 200
        assert resp.json()["profile"]["irrigation_method"] == "sprinkler"
        assert client.get("/farmer-profile/user-1").json()["user"]["location"] == "Mysuru (12.2958,76.6394)"

    def test_profile_must_exist(self, client):
        resp = client.put("/farmer-profile", json={"user_id": "ghost", "crop_name": "maize"})

        assert resp.status_code == 404
        assert client.get("/farmer-profile/ghost").status_code == 404

    def test_unknown_irrigation_method(self, client):
        resp = client.put("/farmer-profile", json={
            "user_id": "user-1", "name": "Someone", "irrigation_method": "bucket",
        })

        assert resp.status_code == 422
        assert client.get("/farmer-profile/user-1").json()["user"]["name"] == "Ravi"

    def test_user_id_required(self, client):
        assert client.put("/farmer-profile", json={"crop_name": "maize"}).status_code == 422


class TestFarmsAndFields:
    FORM = {
        "user_id": "user-fresh",
        "name": "Meena",
        "location": "Hassan",
        "crop_name": "ragi",
        "soil_type": "red sandy",
        "sowing_date": "2025-07-01",
        "irrigation_method": "manual",
    }

    def test_registered_field_drives_aggregation(self, client, providers):
        client.post("/farmer-profile", json=self.FORM)

        farm = client.post("/farms", json={"user_id": "user-fresh", "name": "Hill Farm", "area": 2})
        assert farm.status_code == 201
        field = client.post("/fields", json={
            "farm_id": farm.json()["id"],
            "name": "North Plot",
            "coordinates": SQUARE_GEOMETRY,
            "crop_type": "ragi",
        })
        assert field.status_code == 201
        assert field.json()["name"] == "North Plot"
        assert '"Polygon"' in field.json()["coordinates"]

        resp = client.get("/farmer-data/user-fresh")

        assert resp.status_code == 200
        lat, lon, _ = providers[0].get_current_weather.await_args.args
        assert lat == pytest.approx(0.8)
        assert lon == pytest.approx(0.8)
        providers[1].get_current_uvi.assert_awaited_once_with("poly-north")

    def test_farm_for_unknown_user(self, client):
        resp = client.post("/farms", json={"user_id": "ghost", "name": "Hill Farm"})
        assert resp.status_code == 404

    def test_field_for_unknown_farm(self, client):
        resp = client.post("/fields", json={
            "farm_id": "no-such-farm", "name": "East", "coordinates": SQUARE_GEOMETRY,
        })
        assert resp.status_code == 404

    @pytest.mark.parametrize("coordinates", [
        {"type": "Point", "coordinates": [77.5, 12.9]},
        {"type": "Polygon", "coordinates": []},
    ])
    def test_field_geometry_must_be_polygon(self, client, coordinates):
        resp = client.post("/fields", json={"farm_id": "farm-1", "name": "East", "coordinates": coordinates})
        assert resp.status_code == 422

    def test_farm_name_required(self, client):
        assert client.post("/farms", json={"user_id": "user-1"}).status_code == 422


class TestAiChat:
    def test_answer_with_farmer_data(self, client, generator):
        resp = client.post("/ai-chat", json={"message": "Should I irrigate?", "user_id": "user-1"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["answer"].startswith("Irrigate lightly")
        assert data["data_completeness"]["weather"] is True

        context, question = generator.generate.await_args.args
        assert question == "Should I irrigate?"
        assert context.crop_name == "rice"

    def test_uses_one_week_history(self, client, providers):
        client.post("/ai-chat", json={"message": "How is my crop?", "user_id": "user-1"})

        _, start, end = providers[1].get_ndvi_history.await_args.args
        assert end - start == 7 * 86400

    def test_selected_field_forwarded(self, client, providers):
        client.post("/ai-chat", json={
            "message": "How is this field?",
            "user_id": "user-1",
            "context": {"selected_field": {"id": "poly-picked", "name": "East"}},
        })

        providers[1].list_polygons.assert_not_awaited()
        providers[1].get_current_uvi.assert_awaited_once_with("poly-picked")

    def test_answers_without_farmer_data(self, client, generator):
        resp = client.post("/ai-chat", json={"message": "When to sow ragi?", "user_id": "ghost"})

        assert resp.status_code == 200
        assert resp.json()["data_completeness"] is None
        context, _ = generator.generate.await_args.args
        assert context is None

    def test_empty_message(self, client):
        assert client.post("/ai-chat", json={"message": "   "}).status_code == 400

    def test_generator_not_configured(self, build_aggregator):
        from fastapi.testclient import TestClient
        from src.api.app import create_app

        aggregator, _ = build_aggregator()
        client = TestClient(create_app(aggregator=aggregator))

        assert client.post("/ai-chat", json={"message": "Hello"}).status_code == 503

    def test_generator_failure(self, client, generator):
        generator.generate.side_effect = RuntimeError("model overloaded")

        resp = client.post("/ai-chat", json={"message": "Hello"})
        assert resp.status_code == 502


class TestMetrics:
    def test_metrics_exposed(self, client):
        client.get("/farmer-data/user-1")

        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "farmer_data_requests_total" in resp.text
