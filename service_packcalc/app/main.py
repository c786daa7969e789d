"""
Pack Calculator service.
"""

import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import Query
from starlette.concurrency import run_in_threadpool

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import CacheError, PersistenceError, ValidationError

from .algorithm import decompose, pack_sizes_gcd, validate
from .cache import AdaptiveCache, NullAdaptiveCache, build_adaptive_cache
from .models import (
    CalculateRequest, CalculateResponse, CacheStatsResponse,
    ConfigUpdateRequest, ConfigUpdateResponse, DEFAULT_PACK_SIZES, HistoryResponse,
    PackConfig, PresetsResponse, get_presets
)
from .persistence import PackCalcPersistence


class PackCalcService(BaseService):
    """Pack calculator service implementation."""

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 cache: Optional[AdaptiveCache] = None,
                 persistence: Optional[PackCalcPersistence] = None):
        super().__init__("packcalc", 8080, config)

        self.cache: AdaptiveCache = cache or NullAdaptiveCache()
        self.persistence = persistence or PackCalcPersistence(self.config.postgres_dsn)
        self._build_cache_on_start = cache is None

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_packcalc_routes()

    def _setup_packcalc_routes(self):
        """Set up pack calculator routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "packcalc",
                "message": "Pack Calculator - order fulfillment optimizer",
                "version": "1.0.0",
                "capabilities": ["decomposition", "adaptive_cache", "history"]
            }

        @self.app.post("/api/calculate", response_model=CalculateResponse)
        async def calculate(request: CalculateRequest):
            """Calculate the optimal pack decomposition for an order."""
            return await self.calculate(request.items, request.pack_sizes)

        @self.app.get("/api/presets", response_model=PresetsResponse)
        async def presets():
            """Predefined pack size configurations."""
            return PresetsResponse(presets=get_presets())

        @self.app.get("/api/history", response_model=HistoryResponse)
        async def history(limit: Optional[int] = Query(None, ge=1, le=1000)):
            """Recent calculations, newest first."""
            entries = await self.persistence.get_history(limit or self.config.history_limit)
            return HistoryResponse(history=entries, count=len(entries))

        @self.app.post("/api/history/clear")
        async def clear_history():
            """Delete the calculation history."""
            await self.persistence.clear_history()
            return {"message": "History cleared"}

        @self.app.get("/api/packs/config", response_model=PackConfig)
        async def get_pack_config():
            """Active pack size configuration."""
            sizes = await self.persistence.get_pack_sizes()
            return PackConfig(
                pack_sizes=sizes,
                gcd=pack_sizes_gcd(sizes),
                updated_at=datetime.now(timezone.utc)
            )

        @self.app.post("/api/packs/config", response_model=ConfigUpdateResponse)
        async def update_pack_config(request: ConfigUpdateRequest):
            """Replace the active pack sizes."""
            if not validate(request.pack_sizes):
                raise ValidationError("Invalid pack sizes", details={"pack_sizes": request.pack_sizes})
            self._check_pack_size_limit(request.pack_sizes)

            await self.persistence.set_pack_sizes(request.pack_sizes)
            return ConfigUpdateResponse(
                pack_sizes=sorted(set(request.pack_sizes)),
                updated_at=datetime.now(timezone.utc),
                message="Pack sizes updated successfully"
            )

        @self.app.get("/api/cache/stats", response_model=CacheStatsResponse)
        async def cache_stats():
            """Adaptive cache counters."""
            stats = await self.cache.stats()
            return CacheStatsResponse(**stats.to_dict())

        @self.app.post("/api/cache/clear")
        async def cache_clear():
            """Drop every cached decomposition and reset counters."""
            removed = await self.cache.clear()
            return {"message": "Cache cleared successfully", "keys_removed": removed}

    async def calculate(self, items: int, pack_sizes: Optional[List[int]] = None) -> CalculateResponse:
        """Serve one calculation: cache first, otherwise compute and record."""
        if items <= 0:
            raise ValidationError("Items must be greater than 0", details={"items": items})
        if items > self.config.max_order_quantity:
            raise ValidationError(
                "Items exceed the maximum order quantity",
                details={"items": items, "max_order_quantity": self.config.max_order_quantity}
            )

        sizes = pack_sizes or await self._configured_pack_sizes()
        if not validate(sizes):
            raise ValidationError("Invalid pack sizes", details={"pack_sizes": sizes})
        self._check_pack_size_limit(sizes)

        cached = await self.cache.get(items, sizes)
        if cached is not None:
            self.logger.info(
                "Cache HIT",
                items=items,
                pack_sizes=cached.pack_sizes,
                hit_count=cached.hit_count,
                ttl=cached.current_ttl
            )
            self.metrics.increment_counter("cache_hits_total", cache_type="redis")
            self.metrics.increment_counter("calculations_total", source="cache")

            result = cached.decomposition
            return CalculateResponse(
                items=items,
                pack_sizes=cached.pack_sizes,
                result=result.pack_counts,
                total_items=result.total_items,
                total_packs=result.total_packs,
                waste=result.waste,
                calculation_time_ms=cached.calculation_time_ms,
                cached=True,
                cache_ttl_seconds=cached.current_ttl,
                cache_hit_count=cached.hit_count
            )

        if self.cache.enabled:
            self.metrics.increment_counter("cache_misses_total", cache_type="redis")
        self.logger.info("Cache MISS", items=items, pack_sizes=sizes)

        start = time.perf_counter()
        with self.metrics.time_operation("calculation_duration_seconds"):
            result = await run_in_threadpool(decompose, items, sizes)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 3)
        self.metrics.increment_counter("calculations_total", source="computed")

        try:
            await self.cache.put(items, sizes, result, calculation_time_ms=elapsed_ms)
        except CacheError as e:
            self.logger.warning("Failed to cache result", error=e.message, details=e.details)

        try:
            await self.persistence.save_calculation(items, sorted(set(sizes)), result)
        except PersistenceError as e:
            self.logger.warning("Failed to save calculation", error=e.message, details=e.details)

        return CalculateResponse(
            items=items,
            pack_sizes=sorted(set(sizes)),
            result=result.pack_counts,
            total_items=result.total_items,
            total_packs=result.total_packs,
            waste=result.waste,
            calculation_time_ms=elapsed_ms,
            cached=False
        )

    def _check_pack_size_limit(self, sizes: List[int]):
        if max(sizes) > self.config.max_pack_size:
            raise ValidationError(
                "Pack size exceeds the maximum",
                details={"pack_sizes": sizes, "max_pack_size": self.config.max_pack_size}
            )

    async def _configured_pack_sizes(self) -> List[int]:
        try:
            return await self.persistence.get_pack_sizes()
        except PersistenceError as e:
            self.logger.warning("Falling back to default pack sizes", error=e.message)
            return list(DEFAULT_PACK_SIZES)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report store reachability."""
        return {
            "postgres": "ok" if await self.persistence.ping() else "unavailable",
            "redis": "ok" if await self.cache.ping() else ("unavailable" if self.cache.enabled else "disabled"),
        }

    async def start(self):
        """Start service components."""
        if self._build_cache_on_start:
            self.cache = await build_adaptive_cache(self.config)

        try:
            await self.persistence.start()
        except PersistenceError as e:
            # Calculations still work with explicit or default sizes
            self.logger.error("Persistence unavailable at startup", error=e.message, details=e.details)

        self.logger.info("Pack calculator service started", cache_enabled=self.cache.enabled)

    async def stop(self):
        """Stop service components."""
        await self.persistence.stop()
        await self.cache.close()
        self.logger.info("Pack calculator service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create pack calculator service application."""
    service = PackCalcService(config)
    return service.app


if __name__ == "__main__":
    service = PackCalcService()
    service.run()
