"""
Device resource governance for training decisions.
"""

from .resource_manager import (
    DeviceProbe,
    PsutilDeviceProbe,
    ResourceMonitor,
    ResourceSnapshot,
    ResourceThresholds,
    StaticDeviceProbe,
)

__all__ = [
    'DeviceProbe',
    'PsutilDeviceProbe',
    'ResourceMonitor',
    'ResourceSnapshot',
    'ResourceThresholds',
    'StaticDeviceProbe',
]
