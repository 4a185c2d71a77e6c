"""Bounded per-channel telemetry history.

Keeps the most recent samples of each sensor channel plus the nozzle
position log, evicting the oldest entry once a channel is full.
"""

import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Union

from printwatch.utils import get_logger

logger = get_logger("monitoring.telemetry")

DEFAULT_CAPACITY = 100


class Channel(str, Enum):
    """Telemetry channels accepted by the buffer."""
    TEMPERATURE = "temperature"      # degrees C
    VIBRATION = "vibration"          # unitless, 0-100+
    MATERIAL_FLOW = "material_flow"  # raw sensor counts
    HUMIDITY = "humidity"            # percent

    @classmethod
    def parse(cls, name: Union[str, "Channel"]) -> "Channel":
        """Resolve a channel name, rejecting anything unknown."""
        if isinstance(name, Channel):
            return name
        key = str(name).strip()
        aliases = {"materialFlow": "material_flow", "filamentFlow": "material_flow"}
        key = aliases.get(key, key).lower()
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown telemetry channel: {name!r}") from None


@dataclass(frozen=True)
class SensorSample:
    """One observation on one channel."""
    channel: Channel
    value: float
    timestamp: float


@dataclass(frozen=True)
class PositionSample:
    """One nozzle position report."""
    x: float
    y: float
    z: float
    timestamp: float

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "z": self.z, "timestamp": self.timestamp}


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def variation(values: Sequence[float]) -> float:
    """Population standard deviation, 0.0 for an empty sequence."""
    if not values:
        return 0.0
    avg = mean(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))


class ChannelHistory:
    """Strict FIFO history of one channel."""

    def __init__(self, channel: Channel, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.channel = channel
        self.capacity = capacity
        self._samples: Deque[SensorSample] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, sample: SensorSample) -> None:
        self._samples.append(sample)

    def samples(self) -> List[SensorSample]:
        return list(self._samples)

    def values(self, last: Optional[int] = None) -> List[float]:
        """Values oldest first, optionally limited to the most recent ``last``."""
        values = [s.value for s in self._samples]
        if last is not None:
            return values[-last:] if last > 0 else []
        return values

    def clear(self) -> None:
        self._samples.clear()


class TelemetryBuffer:
    """
    Bounded telemetry store for one monitoring session.

    Every sensor channel and the position log share the same capacity.
    Empty channels read as neutral zeros instead of failing.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        """
        Initialize buffer.

        Args:
            capacity: Maximum samples retained per channel
        """
        self.capacity = capacity
        self._channels: Dict[Channel, ChannelHistory] = {
            channel: ChannelHistory(channel, capacity) for channel in Channel
        }
        self._positions: Deque[PositionSample] = deque(maxlen=capacity)

    def record(self, channel: Union[str, Channel], value: float, timestamp: float) -> SensorSample:
        """Append a sample, evicting the oldest one when the channel is full."""
        sample = SensorSample(channel=Channel.parse(channel), value=float(value), timestamp=timestamp)
        self._channels[sample.channel].append(sample)
        return sample

    def record_position(self, sample: PositionSample) -> None:
        """Append a position sample to the position log."""
        self._positions.append(sample)

    def history(self, channel: Union[str, Channel]) -> ChannelHistory:
        return self._channels[Channel.parse(channel)]

    def values(self, channel: Union[str, Channel], last: Optional[int] = None) -> List[float]:
        return self.history(channel).values(last)

    def positions(self) -> List[PositionSample]:
        return list(self._positions)

    def z_values(self) -> List[float]:
        return [p.z for p in self._positions]

    def latest(self, channel: Union[str, Channel]) -> float:
        """Most recent value on a channel, or 0.0 if nothing was recorded."""
        values = self.values(channel, last=1)
        return values[0] if values else 0.0

    def average(self, channel: Union[str, Channel]) -> float:
        return mean(self.values(channel))

    def variation(self, channel: Union[str, Channel]) -> float:
        return variation(self.values(channel))

    def has_data(self, channel: Union[str, Channel]) -> bool:
        return len(self.history(channel)) > 0

    def counts(self) -> Dict[str, int]:
        """Number of samples held per channel, position log included."""
        counts = {channel.value: len(history) for channel, history in self._channels.items()}
        counts["position"] = len(self._positions)
        return counts

    def windows(self, sizes: Dict[Channel, int]) -> Dict[Channel, List[float]]:
        """Most recent values of several channels at once."""
        return {channel: self.values(channel, last=size) for channel, size in sizes.items()}

    def clear(self) -> None:
        """Drop every buffered sample."""
        for history in self._channels.values():
            history.clear()
        self._positions.clear()
        logger.debug("Telemetry buffer cleared")
