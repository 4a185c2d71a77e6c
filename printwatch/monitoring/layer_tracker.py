"""Layer tracking and risk-evaluation cadence."""

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from printwatch.monitoring.telemetry import PositionSample
from printwatch.utils import get_logger

logger = get_logger("monitoring.layer_tracker")

DEFAULT_LAYER_HEIGHT = 0.2  # mm


class EvaluationTrigger(str, Enum):
    """Why a risk evaluation was scheduled."""
    EARLY_LAYER = "early_layer"
    LAYER_INTERVAL = "layer_interval"
    UPDATE_INTERVAL = "update_interval"


@dataclass
class EvaluationCadence:
    """
    When to run a risk evaluation.

    Two independent triggers: layer-based (every early layer, then every
    ``layer_interval``-th layer) and update-count based (every
    ``update_interval`` printer updates). Both can fire for the same update;
    callers evaluate once per update regardless.
    """

    layer_enabled: bool = True
    early_layer_limit: int = 5
    layer_interval: int = 20
    update_interval: int = 10  # 0 disables

    def layer_triggers(self, layer: int) -> List[EvaluationTrigger]:
        """Triggers fired by advancing onto ``layer``."""
        if not self.layer_enabled:
            return []
        triggers = []
        if layer <= self.early_layer_limit:
            triggers.append(EvaluationTrigger.EARLY_LAYER)
        if self.layer_interval > 0 and layer % self.layer_interval == 0:
            triggers.append(EvaluationTrigger.LAYER_INTERVAL)
        return triggers

    def update_triggers(self, update_count: int) -> List[EvaluationTrigger]:
        """Triggers fired by the ``update_count``-th accepted printer update."""
        if self.update_interval <= 0 or update_count <= 0:
            return []
        if update_count % self.update_interval == 0:
            return [EvaluationTrigger.UPDATE_INTERVAL]
        return []


class LayerTracker:
    """Derives a monotonic layer index from the Z position stream."""

    def __init__(
        self,
        layer_height: float = DEFAULT_LAYER_HEIGHT,
        cadence: Optional[EvaluationCadence] = None,
    ):
        """
        Initialize tracker.

        Args:
            layer_height: Layer height in mm
            cadence: Evaluation cadence; only its layer trigger is used here
        """
        if layer_height <= 0:
            raise ValueError("layer_height must be positive")
        self.layer_height = layer_height
        self.cadence = cadence or EvaluationCadence()
        self.current_layer = 0
        self.last_triggers: List[EvaluationTrigger] = []

    def layer_for(self, z: float) -> int:
        # Small epsilon so 0.6 / 0.2 lands on layer 3, not 2.
        return int(math.floor(z / self.layer_height + 1e-9))

    def observe_position(self, sample: PositionSample) -> bool:
        """
        Feed a position sample.

        Returns:
            True if the layer advanced and a layer-based evaluation is due
        """
        new_layer = self.layer_for(sample.z)
        self.last_triggers = []

        # Z dips from retraction never move the layer backwards.
        if new_layer <= self.current_layer:
            return False

        logger.debug(f"Layer {new_layer} detected (Z: {sample.z:.2f}mm)")
        self.current_layer = new_layer
        self.last_triggers = self.cadence.layer_triggers(new_layer)
        return bool(self.last_triggers)

    def reset(self) -> None:
        self.current_layer = 0
        self.last_triggers = []
