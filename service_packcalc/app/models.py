"""
Request/response models for Pack Calculator Service.
"""

from typing import Dict, Optional, List
from datetime import datetime

from pydantic import BaseModel, Field

DEFAULT_PACK_SIZES: List[int] = [250, 500, 1000, 2000, 5000]


class CalculateRequest(BaseModel):
    """Request model for a pack calculation."""
    items: int = Field(..., description="Order quantity")
    pack_sizes: Optional[List[int]] = Field(None, description="Pack sizes; configured sizes when omitted")


class CalculateResponse(BaseModel):
    """Response model for a pack calculation."""
    items: int = Field(..., description="Original order quantity")
    pack_sizes: List[int] = Field(..., description="Pack sizes used")
    result: Dict[int, int] = Field(default_factory=dict, description="Pack size -> count")
    total_items: int = Field(..., description="Total items delivered")
    total_packs: int = Field(..., description="Total number of packs")
    waste: int = Field(..., description="Items shipped beyond the order")
    calculation_time_ms: float = Field(..., description="Time taken to compute the decomposition")
    cached: bool = Field(False, description="Whether the result came from the cache")
    cache_ttl_seconds: Optional[int] = Field(None, description="Current cache TTL, when cached")
    cache_hit_count: Optional[int] = Field(None, description="Times the cached result was reused")


class Preset(BaseModel):
    """A predefined pack size configuration."""
    name: str
    pack_sizes: List[int]


class PresetsResponse(BaseModel):
    presets: List[Preset]


class PackConfig(BaseModel):
    """Current pack size configuration."""
    pack_sizes: List[int]
    gcd: int = Field(..., description="GCD of the pack sizes; orders not divisible by it always overfill")
    updated_at: datetime


class ConfigUpdateRequest(BaseModel):
    pack_sizes: List[int] = Field(..., description="New pack sizes")


class ConfigUpdateResponse(BaseModel):
    pack_sizes: List[int]
    updated_at: datetime
    message: str


class HistoryEntry(BaseModel):
    """A stored calculation."""
    id: int
    items: int
    pack_sizes: List[int]
    result: Dict[int, int]
    total_items: int
    total_packs: int
    waste: int
    timestamp: datetime


class HistoryResponse(BaseModel):
    history: List[HistoryEntry]
    count: int


class CacheStatsResponse(BaseModel):
    enabled: bool
    hits: int
    misses: int
    hit_rate: float
    total_keys: int
    memory_used: Optional[str] = None
    uptime_seconds: Optional[int] = None


def get_presets() -> List[Preset]:
    """Predefined pack size configurations."""
    return [
        Preset(name="Standard", pack_sizes=list(DEFAULT_PACK_SIZES)),
        Preset(name="Edge Case", pack_sizes=[23, 31, 53]),
        Preset(name="Small Packs", pack_sizes=[10, 25, 50, 100]),
    ]
