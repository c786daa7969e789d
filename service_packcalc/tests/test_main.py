"""
Unit tests for Pack Calculator main service.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import get_config
from shared.errors import PersistenceError
from service_packcalc.app.cache import NullAdaptiveCache, RedisAdaptiveCache
from service_packcalc.app.main import PackCalcService
from service_packcalc.app.models import DEFAULT_PACK_SIZES, HistoryEntry
from service_packcalc.app.persistence import PackCalcPersistence


@pytest.fixture
def persistence():
    """Mocked persistence layer."""
    mock = AsyncMock(spec=PackCalcPersistence)
    mock.get_pack_sizes.return_value = list(DEFAULT_PACK_SIZES)
    mock.get_history.return_value = []
    mock.ping.return_value = True
    return mock


@pytest.fixture
def redis_cache(fake_redis):
    return RedisAdaptiveCache(fake_redis, initial_ttl=300, max_ttl=86400)


@pytest.fixture
def service(persistence, redis_cache):
    """PackCalcService over in-memory cache and mocked persistence."""
    return PackCalcService(cache=redis_cache, persistence=persistence)


@pytest.fixture
def client(service):
    """Create test client."""
    return TestClient(service.app)


class TestCalculate:
    """Calculation endpoint."""

    def test_miss_then_hit(self, client, persistence):
        payload = {"items": 12001, "pack_sizes": [250, 500, 1000, 2000, 5000]}

        first = client.post("/api/calculate", json=payload)
        assert first.status_code == 200
        data = first.json()
        assert data["cached"] is False
        assert data["result"] == {"250": 1, "2000": 1, "5000": 2}
        assert data["total_items"] == 12250
        assert data["total_packs"] == 4
        assert data["waste"] == 249
        assert data["cache_ttl_seconds"] is None
        persistence.save_calculation.assert_awaited_once()

        second = client.post("/api/calculate", json=payload)
        assert second.status_code == 200
        data = second.json()
        assert data["cached"] is True
        assert data["result"] == {"250": 1, "2000": 1, "5000": 2}
        assert data["cache_ttl_seconds"] == 600
        assert data["cache_hit_count"] == 1
        # Hits are not recorded as new history
        persistence.save_calculation.assert_awaited_once()

    def test_uses_configured_sizes_when_omitted(self, client, persistence):
        persistence.get_pack_sizes.return_value = [23, 31, 53]

        response = client.post("/api/calculate", json={"items": 500000})

        assert response.status_code == 200
        data = response.json()
        assert data["pack_sizes"] == [23, 31, 53]
        assert data["result"] == {"23": 2, "31": 7, "53": 9429}
        assert data["total_packs"] == 9438
        assert data["waste"] == 0

    def test_falls_back_to_default_sizes(self, client, persistence):
        persistence.get_pack_sizes.side_effect = PersistenceError("Persistence not started")

        response = client.post("/api/calculate", json={"items": 251})

        assert response.status_code == 200
        data = response.json()
        assert data["pack_sizes"] == DEFAULT_PACK_SIZES
        assert data["result"] == {"500": 1}

    def test_save_failure_does_not_fail_request(self, client, persistence):
        persistence.save_calculation.side_effect = PersistenceError("down")

        response = client.post("/api/calculate", json={"items": 1, "pack_sizes": [250]})

        assert response.status_code == 200
        assert response.json()["result"] == {"250": 1}

    def test_cache_outage_does_not_fail_request(self, client, fake_redis):
        fake_redis.fail = True

        response = client.post("/api/calculate", json={"items": 10, "pack_sizes": [3, 5]})

        assert response.status_code == 200
        assert response.json()["result"] == {"5": 2}
        assert response.json()["cached"] is False

    def test_sizes_are_normalized_in_response(self, client):
        response = client.post("/api/calculate", json={"items": 6, "pack_sizes": [3, 1, 2, 3]})

        assert response.status_code == 200
        assert response.json()["pack_sizes"] == [1, 2, 3]
        assert response.json()["result"] == {"3": 2}

    @pytest.mark.parametrize("items", [0, -5])
    def test_rejects_non_positive_items(self, client, items):
        response = client.post("/api/calculate", json={"items": items, "pack_sizes": [250]})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_rejects_invalid_sizes(self, client):
        response = client.post("/api/calculate", json={"items": 10, "pack_sizes": [5, 0]})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_error_carries_request_id(self, client):
        response = client.post(
            "/api/calculate",
            json={"items": 0, "pack_sizes": [250]},
            headers={"X-Request-ID": "req-123"}
        )

        assert response.json()["request_id"] == "req-123"
        assert response.headers["X-Request-ID"] == "req-123"

    def test_rejects_order_above_limit(self, persistence):
        config = get_config("packcalc", 8080, max_order_quantity=1000)
        client = TestClient(PackCalcService(config=config, cache=NullAdaptiveCache(), persistence=persistence).app)

        response = client.post("/api/calculate", json={"items": 1001, "pack_sizes": [250]})

        assert response.status_code == 400
        assert response.json()["details"]["max_order_quantity"] == 1000
        assert client.post("/api/calculate", json={"items": 1000, "pack_sizes": [250]}).status_code == 200
        persistence.save_calculation.assert_awaited_once()

    @pytest.mark.parametrize("sizes", [[250, 2_000_000_000], [10 ** 30]])
    def test_rejects_pack_size_above_limit(self, client, persistence, sizes):
        response = client.post("/api/calculate", json={"items": 1, "pack_sizes": sizes})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        persistence.save_calculation.assert_not_awaited()

    def test_rejects_oversized_configured_sizes(self, client, persistence):
        persistence.get_pack_sizes.return_value = [250, 2_000_000_000]

        response = client.post("/api/calculate", json={"items": 1})

        assert response.status_code == 400

    def test_without_cache(self, persistence):
        service = PackCalcService(cache=NullAdaptiveCache(), persistence=persistence)
        client = TestClient(service.app)
        payload = {"items": 251, "pack_sizes": [250, 500]}

        client.post("/api/calculate", json=payload)
        response = client.post("/api/calculate", json=payload)

        assert response.json()["cached"] is False
        assert persistence.save_calculation.await_count == 2


class TestPackConfig:
    """Pack size configuration endpoints."""

    def test_get_config(self, client, persistence):
        persistence.get_pack_sizes.return_value = [6, 9, 20]

        response = client.get("/api/packs/config")

        assert response.status_code == 200
        data = response.json()
        assert data["pack_sizes"] == [6, 9, 20]
        assert data["gcd"] == 1
        assert "updated_at" in data

    def test_update_config(self, client, persistence):
        response = client.post("/api/packs/config", json={"pack_sizes": [500, 250, 250]})

        assert response.status_code == 200
        assert response.json()["pack_sizes"] == [250, 500]
        persistence.set_pack_sizes.assert_awaited_once_with([500, 250, 250])

    @pytest.mark.parametrize("sizes", [[], [250, -1]])
    def test_update_rejects_invalid_sizes(self, client, persistence, sizes):
        response = client.post("/api/packs/config", json={"pack_sizes": sizes})

        assert response.status_code == 400
        persistence.set_pack_sizes.assert_not_awaited()

    def test_update_rejects_sizes_above_limit(self, client, persistence, service):
        too_big = service.config.max_pack_size + 1

        response = client.post("/api/packs/config", json={"pack_sizes": [250, too_big]})

        assert response.status_code == 400
        assert response.json()["details"]["max_pack_size"] == service.config.max_pack_size
        persistence.set_pack_sizes.assert_not_awaited()

    def test_store_unavailable(self, client, persistence):
        persistence.get_pack_sizes.side_effect = PersistenceError("Persistence not started")

        response = client.get("/api/packs/config")

        assert response.status_code == 503
        assert response.json()["code"] == "PERSISTENCE_ERROR"


class TestHistory:
    """History endpoints."""

    def test_history(self, client, persistence):
        persistence.get_history.return_value = [
            HistoryEntry(
                id=7,
                items=251,
                pack_sizes=[250, 500],
                result={500: 1},
                total_items=500,
                total_packs=1,
                waste=249,
                timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc)
            )
        ]

        response = client.get("/api/history?limit=5")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["history"][0]["id"] == 7
        assert data["history"][0]["result"] == {"500": 1}
        persistence.get_history.assert_awaited_once_with(5)

    def test_history_default_limit(self, client, persistence, service):
        client.get("/api/history")
        persistence.get_history.assert_awaited_once_with(service.config.history_limit)

    def test_history_rejects_bad_limit(self, client):
        assert client.get("/api/history?limit=0").status_code == 422

    def test_clear_history(self, client, persistence):
        response = client.post("/api/history/clear")

        assert response.status_code == 200
        persistence.clear_history.assert_awaited_once()


class TestCacheEndpoints:
    """Cache stats and clear endpoints."""

    def test_stats_after_miss_and_hit(self, client):
        payload = {"items": 501, "pack_sizes": [250, 500, 1000]}
        client.post("/api/calculate", json=payload)
        client.post("/api/calculate", json=payload)

        response = client.get("/api/cache/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["hits"] == 1
        assert data["misses"] == 1
        assert data["hit_rate"] == pytest.approx(0.5)
        assert data["total_keys"] == 1

    def test_clear(self, client):
        client.post("/api/calculate", json={"items": 501, "pack_sizes": [250, 500]})

        response = client.post("/api/cache/clear")

        assert response.status_code == 200
        assert response.json()["keys_removed"] == 2  # entry + misses counter
        assert client.get("/api/cache/stats").json()["total_keys"] == 0

    def test_stats_when_store_down(self, client, fake_redis):
        fake_redis.fail = True

        response = client.get("/api/cache/stats")

        assert response.status_code == 503
        assert response.json()["code"] == "CACHE_ERROR"

    def test_stats_for_disabled_cache(self, persistence):
        service = PackCalcService(cache=NullAdaptiveCache(), persistence=persistence)
        client = TestClient(service.app)

        data = client.get("/api/cache/stats").json()

        assert data["enabled"] is False
        assert data["hit_rate"] == 0.0


class TestServiceEndpoints:
    """Root, presets, health and metrics."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "packcalc"

    def test_presets(self, client):
        response = client.get("/api/presets")

        assert response.status_code == 200
        presets = {p["name"]: p["pack_sizes"] for p in response.json()["presets"]}
        assert presets["Edge Case"] == [23, 31, 53]
        assert presets["Standard"] == DEFAULT_PACK_SIZES

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"postgres": "ok", "redis": "ok"}

    def test_health_reports_unavailable_stores(self, client, persistence, fake_redis):
        persistence.ping.return_value = False
        fake_redis.fail = True

        data = client.get("/health").json()

        assert data["dependencies"] == {"postgres": "unavailable", "redis": "unavailable"}

    def test_health_with_cache_disabled(self, persistence):
        service = PackCalcService(cache=NullAdaptiveCache(), persistence=persistence)

        data = TestClient(service.app).get("/health").json()

        assert data["dependencies"]["redis"] == "disabled"

    def test_metrics(self, client):
        client.post("/api/calculate", json={"items": 10, "pack_sizes": [3, 5]})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "calculations_total" in response.text


class TestLifecycle:
    """Startup and shutdown."""

    @pytest.mark.asyncio
    async def test_start_survives_persistence_failure(self, service, persistence):
        persistence.start.side_effect = PersistenceError("Failed to start persistence")

        await service.start()

        persistence.start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_builds_cache_when_not_injected(self, persistence):
        service = PackCalcService(persistence=persistence)

        await service.start()

        # Redis is disabled by default
        assert isinstance(service.cache, NullAdaptiveCache)

    @pytest.mark.asyncio
    async def test_stop_closes_stores(self, service, persistence, fake_redis):
        await service.stop()

        persistence.stop.assert_awaited_once()
        assert fake_redis.closed is True
