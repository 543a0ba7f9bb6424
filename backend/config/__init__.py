from .thresholds import (
    ThresholdConfig,
    get_thresholds,
    THRESHOLDS,
)
from .settings import Settings, get_settings, settings

__all__ = [
    "ThresholdConfig",
    "get_thresholds",
    "THRESHOLDS",
    "Settings", "get_settings", "settings"
]
