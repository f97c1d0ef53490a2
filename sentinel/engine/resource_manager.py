"""
Device resource governance for on-device training.

This module samples battery, thermal, memory, network and user-activity
state through a device probe (psutil by default) and derives:
1. A read-only ResourceSnapshot refreshed on a fixed cadence.
2. Named boolean gates (battery, charge-or-battery, thermal, memory, idle).
3. The training intensity mode the device can currently afford.

Every threshold the training subsystem uses for resource decisions lives in
ResourceThresholds; callers ask the monitor instead of comparing numbers.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

import psutil

from sentinel.runtime import EventBus, get_bus
from sentinel.types import TrainingMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceSnapshot:
    """Point-in-time device reading. Owned by ResourceMonitor."""
    battery_percent: float = 100.0
    is_charging: bool = False
    temperature: float = 25.0
    available_memory_mb: float = 1000.0
    user_active: bool = False
    wifi_connected: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ResourceThresholds:
    """Gate and mode thresholds."""
    min_battery_percent: float = 30.0
    unplugged_battery_percent: float = 50.0
    max_temperature: float = 38.0
    min_memory_mb: float = 500.0
    balanced_battery_percent: float = 50.0
    balanced_memory_mb: float = 500.0
    intensive_battery_percent: float = 80.0
    intensive_memory_mb: float = 1000.0
    user_idle_seconds: float = 60.0


class DeviceProbe:
    """Reads raw device state. Subclasses override read()."""

    def __init__(self):
        self._last_interaction: Optional[float] = None

    def record_user_interaction(self, at: Optional[float] = None) -> None:
        self._last_interaction = time.time() if at is None else at

    def seconds_since_interaction(self) -> Optional[float]:
        if self._last_interaction is None:
            return None
        return time.time() - self._last_interaction

    def has_battery(self) -> bool:
        return True

    def read(self, idle_after: float) -> ResourceSnapshot:
        raise NotImplementedError

    def _user_active(self, idle_after: float) -> bool:
        elapsed = self.seconds_since_interaction()
        return elapsed is not None and elapsed < idle_after


class PsutilDeviceProbe(DeviceProbe):
    """
    Polls the host through psutil.

    Missing sensors degrade to neutral values: no battery reads as a plugged
    device at 100 %, no thermal sensor reads as 25 degrees.
    """

    def has_battery(self) -> bool:
        return self._battery() is not None

    def read(self, idle_after: float) -> ResourceSnapshot:
        battery = self._battery()
        if battery is None:
            battery_percent, charging = 100.0, True
        else:
            battery_percent = float(battery.percent)
            charging = bool(battery.power_plugged)

        return ResourceSnapshot(
            battery_percent=battery_percent,
            is_charging=charging,
            temperature=self._temperature(),
            available_memory_mb=psutil.virtual_memory().available / (1024 * 1024),
            user_active=self._user_active(idle_after),
            wifi_connected=self._wifi_connected(),
        )

    @staticmethod
    def _battery():
        sensors_battery = getattr(psutil, "sensors_battery", None)
        if sensors_battery is None:
            return None
        try:
            return sensors_battery()
        except (OSError, RuntimeError) as e:
            logger.debug(f"Battery polling failed: {e}")
            return None

    @staticmethod
    def _temperature() -> float:
        sensors_temperatures = getattr(psutil, "sensors_temperatures", None)
        if sensors_temperatures is None:
            return 25.0
        try:
            readings = sensors_temperatures()
        except (OSError, RuntimeError) as e:
            logger.debug(f"Thermal polling failed: {e}")
            return 25.0
        currents = [entry.current for entries in readings.values() for entry in entries if entry.current]
        return float(max(currents)) if currents else 25.0

    @staticmethod
    def _wifi_connected() -> bool:
        try:
            stats = psutil.net_if_stats()
        except OSError:
            return False
        return any(
            name.startswith(("wl", "wlan", "wifi", "Wi-Fi")) and st.isup
            for name, st in stats.items()
        )


class StaticDeviceProbe(DeviceProbe):
    """Probe returning fixed, mutable values. Used for tests and simulations."""

    def __init__(
        self,
        battery_percent: float = 100.0,
        is_charging: bool = True,
        temperature: float = 25.0,
        available_memory_mb: float = 2000.0,
        user_active: bool = False,
        wifi_connected: bool = True,
        battery_present: bool = True,
    ):
        super().__init__()
        self.battery_percent = battery_percent
        self.is_charging = is_charging
        self.temperature = temperature
        self.available_memory_mb = available_memory_mb
        self.user_active = user_active
        self.wifi_connected = wifi_connected
        self.battery_present = battery_present

    def has_battery(self) -> bool:
        return self.battery_present

    def read(self, idle_after: float) -> ResourceSnapshot:
        return ResourceSnapshot(
            battery_percent=self.battery_percent,
            is_charging=self.is_charging,
            temperature=self.temperature,
            available_memory_mb=self.available_memory_mb,
            user_active=self.user_active or self._user_active(idle_after),
            wifi_connected=self.wifi_connected,
        )


class ResourceMonitor:
    """
    Maintains the live ResourceSnapshot and answers gate and mode questions.

    The snapshot is replaced wholesale on each refresh, so readers always see
    a consistent reading.
    """

    def __init__(
        self,
        probe: Optional[DeviceProbe] = None,
        thresholds: Optional[ResourceThresholds] = None,
        bus: Optional[EventBus] = None,
        refresh_interval: float = 30.0,
    ):
        self.probe = probe or PsutilDeviceProbe()
        self.thresholds = thresholds or ResourceThresholds()
        self.bus = bus if bus else get_bus()
        self.refresh_interval = refresh_interval
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._snapshot = self.probe.read(self.thresholds.user_idle_seconds)

    @property
    def snapshot(self) -> ResourceSnapshot:
        return self._snapshot

    def refresh(self) -> ResourceSnapshot:
        """Poll the probe and replace the snapshot."""
        self._snapshot = self.probe.read(self.thresholds.user_idle_seconds)
        return self._snapshot

    def record_user_interaction(self) -> None:
        self.probe.record_user_interaction()

    async def start(self) -> None:
        """Begin the periodic refresh loop."""
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(f"Resource monitor started (interval={self.refresh_interval}s)")

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Resource monitor stopped")

    async def _refresh_loop(self) -> None:
        while self.running:
            try:
                snapshot = await asyncio.to_thread(self.refresh)
                await self.bus.publish("sentinel.resource_snapshot", snapshot.to_dict())
            except Exception as e:
                logger.warning(f"Resource refresh failed: {e}")
            await asyncio.sleep(self.refresh_interval)

    # -- gates ---------------------------------------------------------------

    def battery_sufficient(self) -> bool:
        return self._snapshot.battery_percent > self.thresholds.min_battery_percent

    def charging_or_high_battery(self) -> bool:
        snap = self._snapshot
        return snap.is_charging or snap.battery_percent > self.thresholds.unplugged_battery_percent

    def thermal_safe(self) -> bool:
        return self._snapshot.temperature < self.thresholds.max_temperature

    def memory_sufficient(self) -> bool:
        return self._snapshot.available_memory_mb > self.thresholds.min_memory_mb

    def user_idle(self) -> bool:
        return not self._snapshot.user_active

    def gate_checks(self) -> List[Tuple[bool, str]]:
        """The resource gates in evaluation order, paired with their failure reasons."""
        return [
            (self.battery_sufficient(), "Battery too low"),
            (self.charging_or_high_battery(), "Not charging and battery not sufficient"),
            (self.thermal_safe(), "Device too hot"),
            (self.memory_sufficient(), "Insufficient memory"),
            (self.user_idle(), "User is active"),
        ]

    def get_optimal_training_mode(self) -> Optional[TrainingMode]:
        """
        Pick the most intensive mode the device can afford.

        Returns None when a minimum gate (battery, thermal, memory) fails.
        """
        if not (self.battery_sufficient() and self.thermal_safe() and self.memory_sufficient()):
            return None
        snap = self._snapshot
        th = self.thresholds
        if (
            snap.is_charging
            and snap.battery_percent > th.intensive_battery_percent
            and snap.available_memory_mb > th.intensive_memory_mb
        ):
            return TrainingMode.INTENSIVE
        if snap.battery_percent > th.balanced_battery_percent and snap.available_memory_mb > th.balanced_memory_mb:
            return TrainingMode.BALANCED
        return TrainingMode.LIGHT

    def battery_drain_since(self, baseline: ResourceSnapshot) -> float:
        """Fraction of full charge consumed since ``baseline`` (0 while charging)."""
        current = self._snapshot
        if current.is_charging:
            return 0.0
        return max(0.0, (baseline.battery_percent - current.battery_percent) / 100.0)

    def device_class(self) -> str:
        return "mobile" if self.probe.has_battery() else "desktop"
