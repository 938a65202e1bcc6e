"""Application settings and configuration schema."""

import json
import logging
import math
from pathlib import Path
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from agent_memory.errors import ConfigurationError

logger = logging.getLogger(__name__)


class IndexConfig(BaseModel):
    """
    Construction parameters for the small-world index.

    Defaults follow the usual HNSW settings: M=16, efConstruction=200,
    ef=50 and a level multiplier of 1/ln(M).
    """

    dimensionality: int = Field(384, description="Fixed vector length D")
    metric: str = Field("cosine", description="cosine, euclidean, l2 or a registered custom name")
    m: int = Field(16, description="Max neighbors per layer (2M at layer 0)")
    ef_construction: int = Field(200, description="Candidate list size during insertion")
    ef_search: int = Field(50, description="Candidate list size during search")
    ml: Optional[float] = Field(None, description="Level multiplier, defaults to 1/ln(M)")
    keep_pruned_connections: bool = Field(True, description="Back-fill pruned candidates up to the cap")
    seed: Optional[int] = Field(None, description="Seed for level sampling")

    @model_validator(mode="after")
    def _check(self) -> "IndexConfig":
        if self.dimensionality <= 0:
            raise ConfigurationError("dimensionality", self.dimensionality, "dimensionality must be positive")
        if self.m <= 1 or self.m > 100:
            raise ConfigurationError("m", self.m, "m must be between 2 and 100")
        if self.ef_construction <= 0:
            raise ConfigurationError("ef_construction", self.ef_construction, "ef_construction must be positive")
        if self.ef_search <= 0:
            raise ConfigurationError("ef_search", self.ef_search, "ef_search must be positive")
        if self.ml is not None and self.ml <= 0:
            raise ConfigurationError("ml", self.ml, "ml must be positive")
        return self

    @property
    def level_multiplier(self) -> float:
        """Effective mL."""
        if self.ml is not None:
            return self.ml
        return 1.0 / math.log(self.m)

    def performance_warnings(self) -> List[str]:
        """Return (and log) non-fatal configuration smells."""
        warnings = []
        if self.ef_search > self.ef_construction:
            warnings.append(
                f"ef_search ({self.ef_search}) > ef_construction ({self.ef_construction}) "
                "may cause suboptimal performance"
            )
        if self.m > 16 and self.ef_construction < self.m * 10:
            warnings.append(
                f"High m ({self.m}) with low ef_construction ({self.ef_construction}) "
                "may cause poor connectivity"
            )
        for message in warnings:
            logger.warning(message)
        return warnings

    def estimate_memory_mb(self, vector_count: int) -> float:
        """Rough memory estimate: float32 vector + neighbor ids + overhead."""
        bytes_per_vector = self.dimensionality * 4 + (self.m * 3) * 8 + 100
        return vector_count * bytes_per_vector / (1024 * 1024)

    @classmethod
    def balanced(cls, dimensionality: int = 384) -> "IndexConfig":
        return cls(dimensionality=dimensionality)

    @classmethod
    def high_performance(cls, dimensionality: int = 384) -> "IndexConfig":
        return cls(dimensionality=dimensionality, m=32, ef_construction=400, ef_search=100)

    @classmethod
    def low_memory(cls, dimensionality: int = 384) -> "IndexConfig":
        return cls(dimensionality=dimensionality, m=8, ef_construction=100, ef_search=32)


class RecallConfig(BaseModel):
    """Recall orchestration parameters."""
    over_fetch_factor: int = Field(3, ge=1, description="Candidates fetched per requested result")
    default_k: int = Field(5, ge=1)


class StorageConfig(BaseModel):
    """Record store backend selection."""
    backend: Literal["memory", "sqlite"] = "memory"
    db_path: str = "data/memory/memory.db"


class RetryCfg(BaseModel):
    """Retry policy for persistence calls."""
    max_attempts: int = Field(3, ge=1)
    multiplier: float = 0.5
    wait_min: float = 0.1
    wait_max: float = 2.0


class Settings(BaseModel):
    """Main application settings."""
    index: IndexConfig = IndexConfig()
    recall: RecallConfig = RecallConfig()
    storage: StorageConfig = StorageConfig()
    retry: RetryCfg = RetryCfg()


def load_settings(path: Optional[Union[str, Path]] = None, **overrides: Any) -> Settings:
    """
    Load settings from a JSON file.

    Args:
        path: JSON file path; defaults are used when None or missing
        **overrides: Top-level sections replacing the loaded ones

    Returns:
        Settings instance
    """
    data = {}
    if path is not None and Path(path).exists():
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    data.update(overrides)
    return Settings.model_validate(data)
