"""Resource detection and tuning calculation."""

from pgtune.services.resources import (
    ResourceDetector,
    Resources,
    SystemInfo,
    detect_system_info,
    detect_system_info_async,
)
from pgtune.services.tuning import (
    PARAMETERS,
    TunedParameters,
    TuningConfig,
    calculate,
    tune,
)

__all__ = [
    "ResourceDetector",
    "Resources",
    "SystemInfo",
    "detect_system_info",
    "detect_system_info_async",
    "PARAMETERS",
    "TunedParameters",
    "TuningConfig",
    "calculate",
    "tune",
]
