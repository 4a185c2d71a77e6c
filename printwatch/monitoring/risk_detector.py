"""Print failure risk detection.

Fuses per-layer structural risk metadata, sensor anomaly patterns and an
external visual-anomaly signal into a single confidence value. Operator
feedback on past detections scales future confidence through an
accuracy multiplier.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence

from printwatch.monitoring.signals import StructuralRiskSnapshot, VisualSignal
from printwatch.monitoring.telemetry import Channel, mean, variation
from printwatch.utils import get_logger, isoformat

logger = get_logger("monitoring.risk_detector")

DEFAULT_ACCURACY = 0.8
DEFAULT_HISTORY_SIZE = 50


class RiskLevel(str, Enum):
    """Risk level of an explanatory risk factor."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertSeverity(str, Enum):
    """Severity levels for alerts."""
    WARNING = "warning"  # Real-time threshold, monitor closely
    ERROR = "error"      # Real-time threshold, likely failing
    MEDIUM = "medium"    # Sensor pattern, contributes 0.1 confidence
    HIGH = "high"        # Sensor pattern or risk alert, contributes 0.3


class AlertType(str, Enum):
    """Types of alerts raised during monitoring."""
    HIGH_TEMPERATURE = "high_temperature"
    TEMPERATURE_DROP = "temperature_drop"
    EXCESSIVE_VIBRATION = "excessive_vibration"
    FILAMENT_FLOW = "filament_flow"
    VIBRATION_ANOMALY = "vibration_anomaly"
    TEMPERATURE_INSTABILITY = "temperature_instability"
    LOW_FLOW = "low_flow"
    ERRATIC_FLOW = "erratic_flow"
    FAILURE_RISK = "failure_risk"


class RecommendedAction(str, Enum):
    """Action suggested by a detection."""
    IMMEDIATE_INTERVENTION = "immediate_intervention"
    MONITOR_CLOSELY = "monitor_closely"
    CONTINUE_MONITORING = "continue_monitoring"


@dataclass(frozen=True)
class RiskZone:
    """Weighted structural risk category."""
    name: str
    weight: float
    description: str
    saturation: Optional[int] = None  # count at which the zone is fully at risk


RISK_ZONES: Dict[str, RiskZone] = {
    "overhangs": RiskZone("overhangs", 0.9, "Overhangs >45° without support", saturation=10),
    "bridges": RiskZone("bridges", 0.8, "Long bridges >20mm", saturation=5),
    "small_features": RiskZone("small_features", 0.7, "Features <2mm width", saturation=20),
    "first_layers": RiskZone("first_layers", 0.95, "First 3 layers"),
}

SAFE_ZONES: Dict[str, RiskZone] = {
    "solid_infill": RiskZone("solid_infill", 0.1, "Areas with 100% infill"),
    "supported": RiskZone("supported", 0.1, "Areas with support material"),
}

FIRST_LAYER_LIMIT = 3
SOLID_INFILL_THRESHOLD = 0.8

# Sensor windows (most recent samples per channel)
VIBRATION_WINDOW = 10
TEMPERATURE_WINDOW = 5
FLOW_WINDOW = 5


@dataclass
class Alert:
    """A monitoring alert."""

    alert_type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: float
    value: Optional[float] = None
    confidence: Optional[float] = None
    recommendation: Optional["Recommendation"] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {
            "type": self.alert_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": isoformat(self.timestamp),
        }
        if self.value is not None:
            data["value"] = self.value
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.recommendation is not None:
            data["recommendation"] = self.recommendation.to_dict()
        return data


@dataclass
class RiskFactor:
    """A human-readable reason behind a risk score."""
    name: str
    risk_level: RiskLevel
    description: str
    mitigation: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "risk_level": self.risk_level.value,
            "description": self.description,
            "mitigation": self.mitigation,
        }


@dataclass
class Recommendation:
    """What the operator should do about a detection."""
    action: RecommendedAction
    message: str
    urgency: RiskLevel
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "message": self.message,
            "urgency": self.urgency.value,
            "suggestions": list(self.suggestions),
        }


@dataclass
class Detection:
    """One point-in-time output of the risk detector."""
    timestamp: float
    layer: int
    risk_score: float
    confidence: float
    alerts: List[Alert]
    risk_factors: List[RiskFactor]
    recommendation: Recommendation

    @property
    def high_severity_count(self) -> int:
        return sum(1 for a in self.alerts if a.severity == AlertSeverity.HIGH)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": isoformat(self.timestamp),
            "layer": self.layer,
            "risk_score": self.risk_score,
            "confidence": self.confidence,
            "alerts": [a.to_dict() for a in self.alerts],
            "risk_factors": [rf.to_dict() for rf in self.risk_factors],
            "recommendation": self.recommendation.to_dict(),
        }


@dataclass
class OperationResult:
    """Result of a lifecycle or feedback operation."""
    success: bool
    message: str
    state: Optional[str] = None  # machine-readable reason on failure
    data: Optional[Dict] = None


class FeedbackCounters:
    """
    Operator-confirmed outcomes of past detections.

    Shared across sessions and safe to update from any thread; only an
    explicit ``reset()`` clears it.
    """

    def __init__(self, true_positives: int = 0, false_positives: int = 0):
        if true_positives < 0 or false_positives < 0:
            raise ValueError("Feedback counters cannot be negative")
        self._true_positives = true_positives
        self._false_positives = false_positives
        self._lock = threading.Lock()

    @property
    def true_positives(self) -> int:
        with self._lock:
            return self._true_positives

    @property
    def false_positives(self) -> int:
        with self._lock:
            return self._false_positives

    def record(self, was_failure: bool) -> None:
        with self._lock:
            if was_failure:
                self._true_positives += 1
            else:
                self._false_positives += 1

    def accuracy(self) -> float:
        """True-positive ratio, or the default multiplier before any feedback."""
        with self._lock:
            total = self._true_positives + self._false_positives
            if total == 0:
                return DEFAULT_ACCURACY
            return self._true_positives / total

    def reset(self) -> None:
        with self._lock:
            self._true_positives = 0
            self._false_positives = 0


def calculate_risk_score(snapshot: StructuralRiskSnapshot, layer: int) -> float:
    """Weighted structural risk in [0, 1] for one layer."""
    total_risk = 0.0
    weight_sum = 0.0

    counts = {
        "overhangs": snapshot.overhang_count,
        "bridges": snapshot.bridge_count,
        "small_features": snapshot.small_feature_count,
    }
    for name, count in counts.items():
        if count > 0:
            zone = RISK_ZONES[name]
            total_risk += min(count / zone.saturation, 1.0) * zone.weight
            weight_sum += zone.weight

    if layer <= FIRST_LAYER_LIMIT:
        zone = RISK_ZONES["first_layers"]
        total_risk += zone.weight
        weight_sum += zone.weight

    if snapshot.solid_infill_fraction > SOLID_INFILL_THRESHOLD:
        total_risk *= 1 - SAFE_ZONES["solid_infill"].weight

    if snapshot.has_support_material:
        total_risk *= 1 - SAFE_ZONES["supported"].weight

    if weight_sum == 0:
        return 0.0
    return max(0.0, min(total_risk / weight_sum, 1.0))


def analyze_sensor_patterns(
    windows: Mapping[Channel, Sequence[float]],
    timestamp: float,
) -> List[Alert]:
    """
    Scan recent sensor history for failure patterns.

    A channel is only scanned once it holds a full window of samples.

    Args:
        windows: Recent values per channel, oldest first
        timestamp: Time stamped on generated alerts

    Returns:
        Alerts for every pattern found
    """
    alerts = []

    vibration_values = list(windows.get(Channel.VIBRATION, ()))[-VIBRATION_WINDOW:]
    if len(vibration_values) >= VIBRATION_WINDOW:
        avg_vibration = mean(vibration_values)
        spikes = sum(1 for v in vibration_values if v > avg_vibration * 2)
        if spikes > 3:
            alerts.append(Alert(
                alert_type=AlertType.VIBRATION_ANOMALY,
                severity=AlertSeverity.HIGH,
                message="Unusual vibration pattern detected - possible detached print",
                confidence=0.8,
                value=float(spikes),
                timestamp=timestamp,
            ))

    temperature_values = list(windows.get(Channel.TEMPERATURE, ()))[-TEMPERATURE_WINDOW:]
    if len(temperature_values) >= TEMPERATURE_WINDOW:
        temp_variation = variation(temperature_values)
        if temp_variation > 8:
            alerts.append(Alert(
                alert_type=AlertType.TEMPERATURE_INSTABILITY,
                severity=AlertSeverity.MEDIUM,
                message="Temperature instability may indicate print failure",
                confidence=0.6,
                value=temp_variation,
                timestamp=timestamp,
            ))

    flow_values = list(windows.get(Channel.MATERIAL_FLOW, ()))[-FLOW_WINDOW:]
    if len(flow_values) >= FLOW_WINDOW:
        avg_flow = mean(flow_values)
        if avg_flow < 100:
            alerts.append(Alert(
                alert_type=AlertType.LOW_FLOW,
                severity=AlertSeverity.HIGH,
                message="Low filament flow - possible jam or detachment",
                confidence=0.9,
                value=avg_flow,
                timestamp=timestamp,
            ))

        flow_variation = variation(flow_values)
        if flow_variation > avg_flow * 0.5:
            alerts.append(Alert(
                alert_type=AlertType.ERRATIC_FLOW,
                severity=AlertSeverity.MEDIUM,
                message="Erratic extrusion pattern detected",
                confidence=0.7,
                value=flow_variation,
                timestamp=timestamp,
            ))

    return alerts


def identify_risk_factors(snapshot: StructuralRiskSnapshot, layer: int) -> List[RiskFactor]:
    """Explain the structural situation of a layer; does not affect the score."""
    factors = []

    if layer <= FIRST_LAYER_LIMIT:
        factors.append(RiskFactor(
            name="first_layers",
            risk_level=RiskLevel.HIGH,
            description="Critical early layers - bed adhesion failure risk",
            mitigation="Watch first layer squish and bed adhesion",
        ))

    if snapshot.overhang_count > 0:
        factors.append(RiskFactor(
            name="overhangs_present",
            risk_level=RiskLevel.HIGH if snapshot.overhang_count > 5 else RiskLevel.MEDIUM,
            description=f"{snapshot.overhang_count} overhang features without support",
            mitigation="Add support structures or reorient model",
        ))

    if snapshot.bridge_count > 0:
        factors.append(RiskFactor(
            name="bridges_present",
            risk_level=RiskLevel.HIGH if snapshot.bridge_count > 3 else RiskLevel.MEDIUM,
            description=f"{snapshot.bridge_count} bridge features detected",
            mitigation="Add support under bridges or reduce bridge length",
        ))

    if snapshot.small_feature_count > 10:
        factors.append(RiskFactor(
            name="small_features",
            risk_level=RiskLevel.MEDIUM,
            description="Many small features - possible stringing",
        ))

    # Mitigating factors
    if snapshot.solid_infill_fraction > SOLID_INFILL_THRESHOLD:
        factors.append(RiskFactor(
            name="solid_infill",
            risk_level=RiskLevel.LOW,
            description="Solid infill provides structural stability",
        ))

    if snapshot.has_support_material:
        factors.append(RiskFactor(
            name="support_present",
            risk_level=RiskLevel.LOW,
            description="Support material reduces failure risk",
        ))

    return factors


def generate_recommendation(
    risk_score: float,
    confidence: float,
    alerts: Sequence[Alert],
) -> Recommendation:
    """Choose an operator action from the fused result."""
    if (risk_score > 0.8 or confidence > 0.8
            or any(a.severity == AlertSeverity.HIGH for a in alerts)):
        return Recommendation(
            action=RecommendedAction.IMMEDIATE_INTERVENTION,
            message="High failure risk detected - consider pausing print for inspection",
            urgency=RiskLevel.HIGH,
            suggestions=[
                "Check bed adhesion and first layer quality",
                "Verify hotend temperature stability",
                "Inspect for filament jams or tangles",
                "Consider adding support material for overhangs",
            ],
        )
    if risk_score > 0.5:
        return Recommendation(
            action=RecommendedAction.MONITOR_CLOSELY,
            message="Moderate failure risk - monitor next few layers carefully",
            urgency=RiskLevel.MEDIUM,
            suggestions=[
                "Watch for temperature fluctuations",
                "Check camera feed for anomalies",
                "Prepare to intervene if conditions worsen",
            ],
        )
    return Recommendation(
        action=RecommendedAction.CONTINUE_MONITORING,
        message="Low failure risk - continue normal monitoring",
        urgency=RiskLevel.LOW,
        suggestions=[
            "Maintain current print settings",
            "Continue regular monitoring intervals",
        ],
    )


class RiskDetector:
    """
    Stateful failure-risk scorer.

    Keeps a bounded history of detections that outlives individual
    monitoring sessions, and scales confidence by the accuracy recorded in
    its feedback counters.
    """

    def __init__(
        self,
        feedback: Optional[FeedbackCounters] = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize detector.

        Args:
            feedback: Shared feedback counters (new empty counters if None)
            history_size: Maximum detections retained
            clock: Time source for detection timestamps
        """
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self.feedback = feedback if feedback is not None else FeedbackCounters()
        self.history_size = history_size
        self._clock = clock
        self._history: Deque[Detection] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    @property
    def history(self) -> List[Detection]:
        with self._lock:
            return list(self._history)

    def calculate_confidence(
        self,
        risk_score: float,
        alerts: Sequence[Alert],
        visual: VisualSignal,
    ) -> float:
        """Fuse structural risk, sensor alerts and the visual signal."""
        high = sum(1 for a in alerts if a.severity == AlertSeverity.HIGH)
        medium = sum(1 for a in alerts if a.severity == AlertSeverity.MEDIUM)

        confidence = risk_score * 0.4
        confidence += high * 0.3 + medium * 0.1
        confidence += visual.confidence * 0.2

        # Learned accuracy from operator feedback
        confidence *= self.feedback.accuracy()

        return max(0.0, min(confidence, 1.0))

    def evaluate(
        self,
        snapshot: StructuralRiskSnapshot,
        sensor_windows: Mapping[Channel, Sequence[float]],
        visual: VisualSignal,
        layer: int,
    ) -> Detection:
        """
        Evaluate failure risk for the current layer.

        Args:
            snapshot: Structural risk metadata for ``layer``
            sensor_windows: Recent values per channel, oldest first
            visual: Current visual-anomaly signal
            layer: Current layer index

        Returns:
            Detection, also appended to the history
        """
        now = self._clock()
        risk_score = calculate_risk_score(snapshot, layer)
        alerts = analyze_sensor_patterns(sensor_windows, now)
        confidence = self.calculate_confidence(risk_score, alerts, visual)

        detection = Detection(
            timestamp=now,
            layer=layer,
            risk_score=risk_score,
            confidence=confidence,
            alerts=alerts,
            risk_factors=identify_risk_factors(snapshot, layer),
            recommendation=generate_recommendation(risk_score, confidence, alerts),
        )

        with self._lock:
            self._history.append(detection)

        logger.debug(
            f"Layer {layer}: risk {risk_score:.2f}, confidence {confidence:.2f}, "
            f"{len(alerts)} sensor alert(s)"
        )
        return detection

    def report_feedback(self, was_failure: bool) -> OperationResult:
        """
        Record whether the last flagged risk was a real failure.

        Only affects future evaluations.
        """
        with self._lock:
            has_detections = bool(self._history)
        if not has_detections:
            return OperationResult(
                success=False,
                message="No detections to give feedback on",
                state="no_detections",
            )

        self.feedback.record(was_failure)
        accuracy = self.feedback.accuracy()
        if was_failure:
            logger.info(f"Failure confirmed by operator - accuracy now {accuracy:.1%}")
        else:
            logger.info(f"False positive reported - accuracy now {accuracy:.1%}")

        return OperationResult(
            success=True,
            message="Feedback recorded",
            data={"accuracy": accuracy},
        )

    def get_detection_stats(self, recent: int = 10) -> dict:
        """Summary of detections and feedback."""
        with self._lock:
            history = list(self._history)
        return {
            "total_detections": len(history),
            "accuracy": self.feedback.accuracy(),
            "true_positives": self.feedback.true_positives,
            "false_positives": self.feedback.false_positives,
            "recent_detections": history[-recent:] if recent > 0 else [],
        }

    def clear_history(self) -> int:
        """Drop all stored detections."""
        with self._lock:
            count = len(self._history)
            self._history.clear()
        return count
