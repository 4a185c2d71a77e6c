"""External signal providers consumed by the risk detector.

Structural risk metadata comes from a slicing/geometry collaborator and the
visual-anomaly confidence from a visual-inspection collaborator. The detector
only depends on the shapes defined here; push-fed stores back the live
monitor and static providers give tests deterministic input.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from printwatch.utils import get_logger

logger = get_logger("monitoring.signals")


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class StructuralRiskSnapshot:
    """Per-layer structural risk metadata."""
    overhang_count: int = 0
    bridge_count: int = 0
    small_feature_count: int = 0
    solid_infill_fraction: float = 0.0  # 0-1
    has_support_material: bool = False

    def __post_init__(self):
        """Floor counts at zero and clamp the infill fraction."""
        object.__setattr__(self, "overhang_count", max(0, int(self.overhang_count)))
        object.__setattr__(self, "bridge_count", max(0, int(self.bridge_count)))
        object.__setattr__(self, "small_feature_count", max(0, int(self.small_feature_count)))
        object.__setattr__(self, "solid_infill_fraction", _clamp01(self.solid_infill_fraction))

    @classmethod
    def from_dict(cls, data: dict) -> "StructuralRiskSnapshot":
        """Build from a collaborator payload (snake_case or camelCase keys)."""
        def pick(*keys, default=0):
            for key in keys:
                if key in data:
                    return data[key]
            return default

        return cls(
            overhang_count=pick("overhang_count", "overhangCount", "overhangs"),
            bridge_count=pick("bridge_count", "bridgeCount", "bridges"),
            small_feature_count=pick("small_feature_count", "smallFeatureCount", "smallFeatures"),
            solid_infill_fraction=pick("solid_infill_fraction", "solidInfillFraction", "solidInfill"),
            has_support_material=bool(pick(
                "has_support_material", "hasSupportMaterial", "supportMaterial", default=False
            )),
        )

    def to_dict(self) -> dict:
        return {
            "overhang_count": self.overhang_count,
            "bridge_count": self.bridge_count,
            "small_feature_count": self.small_feature_count,
            "solid_infill_fraction": self.solid_infill_fraction,
            "has_support_material": self.has_support_material,
        }


@dataclass(frozen=True)
class VisualPattern:
    """One pattern reported by visual inspection."""
    pattern_type: str
    confidence: float
    description: str = ""
    location: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class VisualSignal:
    """Opaque visual-anomaly signal."""
    confidence: float = 0.0
    patterns: Tuple[VisualPattern, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "confidence", _clamp01(self.confidence))
        object.__setattr__(self, "patterns", tuple(self.patterns))


class StructuralSnapshotProvider(ABC):
    """Source of per-layer structural risk metadata."""

    @abstractmethod
    def snapshot_for(self, layer: int) -> StructuralRiskSnapshot:
        """Snapshot for ``layer``; an empty snapshot when nothing is known."""


class VisualSignalProvider(ABC):
    """Source of the current visual-anomaly signal."""

    @abstractmethod
    def current_signal(self) -> VisualSignal:
        """Latest visual signal; zero confidence when nothing is known."""


class LayerSnapshotStore(StructuralSnapshotProvider):
    """Snapshots pushed by the geometry collaborator, keyed by layer."""

    def __init__(self):
        self._snapshots: Dict[int, StructuralRiskSnapshot] = {}

    def push(self, layer: int, snapshot: StructuralRiskSnapshot) -> None:
        if layer < 0:
            raise ValueError(f"Layer index must be non-negative, got {layer}")
        self._snapshots[layer] = snapshot

    def snapshot_for(self, layer: int) -> StructuralRiskSnapshot:
        return self._snapshots.get(layer, StructuralRiskSnapshot())

    def __len__(self) -> int:
        return len(self._snapshots)

    def clear(self) -> None:
        self._snapshots.clear()


class StaticSnapshotProvider(StructuralSnapshotProvider):
    """Returns the same snapshot for every layer."""

    def __init__(self, snapshot: Optional[StructuralRiskSnapshot] = None):
        self.snapshot = snapshot or StructuralRiskSnapshot()

    def snapshot_for(self, layer: int) -> StructuralRiskSnapshot:
        return self.snapshot


class LatestVisualSignal(VisualSignalProvider):
    """Keeps the most recent signal pushed by the visual collaborator."""

    def __init__(self):
        self._signal = VisualSignal()

    def push(self, confidence: float, patterns: Optional[List[VisualPattern]] = None) -> VisualSignal:
        self._signal = VisualSignal(confidence=confidence, patterns=tuple(patterns or ()))
        if self._signal.patterns:
            logger.debug(
                f"Visual signal {self._signal.confidence:.2f} with "
                f"{len(self._signal.patterns)} pattern(s)"
            )
        return self._signal

    def current_signal(self) -> VisualSignal:
        return self._signal

    def clear(self) -> None:
        self._signal = VisualSignal()


class StaticVisualSignal(VisualSignalProvider):
    """Always reports the same signal."""

    def __init__(self, confidence: float = 0.0, patterns: Optional[List[VisualPattern]] = None):
        self._signal = VisualSignal(confidence=confidence, patterns=tuple(patterns or ()))

    def current_signal(self) -> VisualSignal:
        return self._signal
