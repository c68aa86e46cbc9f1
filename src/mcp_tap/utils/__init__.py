"""Configuration helpers."""

from .config import ApiConfig, HubConfig, ObservabilityConfig, StoreConfig, TapConfig

__all__ = [
    "ObservabilityConfig",
    "StoreConfig",
    "TapConfig",
    "HubConfig",
    "ApiConfig",
]
