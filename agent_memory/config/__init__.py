"""Configuration for the memory engine."""

from .settings import IndexConfig, RecallConfig, RetryCfg, Settings, StorageConfig, load_settings

__all__ = [
    "IndexConfig",
    "RecallConfig",
    "RetryCfg",
    "Settings",
    "StorageConfig",
    "load_settings",
]
