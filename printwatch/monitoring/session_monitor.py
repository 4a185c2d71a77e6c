"""Real-time print session monitoring.

Owns the monitoring on/off state, the active print session, its telemetry
buffer and alert list, and decides when the risk detector runs. This is
the entry point used by the sensor gateway, the printer link and the
presentation layer.
"""

import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union
from uuid import uuid4

from printwatch.config import Settings, get_settings
from printwatch.monitoring.layer_tracker import EvaluationCadence, EvaluationTrigger, LayerTracker
from printwatch.monitoring.quality import CommonIssueInputs, QualityReport, generate_quality_report
from printwatch.monitoring.risk_detector import (
    FLOW_WINDOW,
    TEMPERATURE_WINDOW,
    VIBRATION_WINDOW,
    Alert,
    AlertSeverity,
    AlertType,
    Detection,
    FeedbackCounters,
    OperationResult,
    RiskDetector,
)
from printwatch.monitoring.signals import (
    LatestVisualSignal,
    LayerSnapshotStore,
    StructuralRiskSnapshot,
    StructuralSnapshotProvider,
    VisualPattern,
    VisualSignalProvider,
)
from printwatch.monitoring.telemetry import Channel, PositionSample, TelemetryBuffer
from printwatch.utils import get_logger, isoformat

logger = get_logger("monitoring.session_monitor")

# Real-time alert thresholds
MAX_TEMPERATURE = 250.0
MIN_TEMPERATURE = 180.0
MAX_VIBRATION = 80.0
MIN_FLOW = 100.0


class MonitorState(str, Enum):
    """Monitoring state."""
    IDLE = "idle"
    MONITORING = "monitoring"


class SessionStatus(str, Enum):
    """Status of a print session."""
    PRINTING = "printing"
    COMPLETED = "completed"


@dataclass
class PrintSession:
    """The print job currently being monitored."""
    session_id: str
    name: str
    start_time: float
    end_time: Optional[float] = None
    status: SessionStatus = SessionStatus.PRINTING
    progress: int = 0  # 0-100

    def to_dict(self) -> dict:
        return {
            "id": self.session_id,
            "name": self.name,
            "start_time": isoformat(self.start_time),
            "end_time": isoformat(self.end_time),
            "status": self.status.value,
            "progress": self.progress,
        }


@dataclass
class StatusSnapshot:
    """What the presentation layer sees of the monitor."""
    monitoring: bool
    session: Optional[PrintSession] = None
    runtime_ms: int = 0
    current_layer: int = 0
    recent_alerts: List[Alert] = field(default_factory=list)
    data_points: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "monitoring": self.monitoring,
            "session": self.session.to_dict() if self.session else None,
            "runtime_ms": self.runtime_ms,
            "current_layer": self.current_layer,
            "recent_alerts": [a.to_dict() for a in self.recent_alerts],
            "data_points": dict(self.data_points),
        }


@dataclass
class SessionReport:
    """Quality report merged with session metadata."""
    quality: QualityReport
    session: PrintSession
    runtime_ms: int
    alerts: List[Alert]
    total_alerts: int
    data_points: Dict[str, int]
    final: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = self.quality.to_dict()
        data.update({
            "session": self.session.to_dict(),
            "progress": self.session.progress,
            "runtime_ms": self.runtime_ms,
            "alerts": [a.to_dict() for a in self.alerts],
            "total_alerts": self.total_alerts,
            "data_points": dict(self.data_points),
            "final": self.final,
        })
        return data


PositionInput = Union[PositionSample, Mapping[str, float]]


class SessionMonitor:
    """
    Orchestrates telemetry buffering, layer tracking, quality scoring and
    risk detection for one print at a time.

    Every public method is serialized on a single lock, so the sensor and
    printer producers may call in from different threads. Detection
    history and feedback live in the risk detector and survive sessions;
    everything else is reset when a session starts.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        detector: Optional[RiskDetector] = None,
        feedback: Optional[FeedbackCounters] = None,
        snapshots: Optional[StructuralSnapshotProvider] = None,
        visual: Optional[VisualSignalProvider] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize monitor.

        Args:
            settings: Monitor settings (global settings if None)
            detector: Risk detector (built from settings if None)
            feedback: Feedback counters for a newly built detector
            snapshots: Structural risk provider (push-fed store if None)
            visual: Visual signal provider (push-fed latest signal if None)
            clock: Time source in epoch seconds
        """
        self.settings = settings or get_settings()
        self._clock = clock
        self.detector = detector or RiskDetector(
            feedback=feedback,
            history_size=self.settings.detection_history_size,
            clock=clock,
        )
        self.snapshots = snapshots if snapshots is not None else LayerSnapshotStore()
        self.visual = visual if visual is not None else LatestVisualSignal()
        self.cadence = EvaluationCadence(
            layer_enabled=self.settings.layer_cadence_enabled,
            early_layer_limit=self.settings.early_layer_limit,
            layer_interval=self.settings.layer_eval_interval,
            update_interval=self.settings.update_eval_interval,
        )

        self._lock = threading.RLock()
        self._state = MonitorState.IDLE
        self._session: Optional[PrintSession] = None
        self._buffer = TelemetryBuffer(self.settings.buffer_capacity)
        self._tracker = LayerTracker(self.settings.layer_height, self.cadence)
        self._alerts: List[Alert] = []
        self._update_count = 0
        self._bed_temperature: Optional[float] = None
        self._ambient_temperature: Optional[float] = None
        self._final_report: Optional[SessionReport] = None
        self._alert_callbacks: List[Callable[[Alert], None]] = []

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_monitoring(self) -> bool:
        """Check if a session is being monitored."""
        return self._state == MonitorState.MONITORING

    @property
    def session(self) -> Optional[PrintSession]:
        return self._session

    @property
    def current_layer(self) -> int:
        return self._tracker.current_layer

    @property
    def update_count(self) -> int:
        """Printer updates accepted in the current session."""
        return self._update_count

    def register_alert_callback(self, callback: Callable[[Alert], None]) -> None:
        """Register callback for new alerts."""
        self._alert_callbacks.append(callback)

    # Lifecycle

    def start(self, name: str = "Unknown") -> OperationResult:
        """
        Start monitoring a new print.

        Args:
            name: Human-readable job name

        Returns:
            OperationResult with the new session id, or ``already_active``
            when a session is running and the restart policy is ``reject``
        """
        with self._lock:
            if self.is_monitoring:
                if self.settings.session_restart_policy == "reject":
                    logger.warning(f"Monitoring already active for {self._session.session_id}")
                    return OperationResult(
                        success=False,
                        message="Monitoring already active",
                        state="already_active",
                        data={"session_id": self._session.session_id},
                    )
                logger.warning(f"Restarting: finalizing session {self._session.session_id}")
                self._finalize()

            now = self._clock()
            self._session = PrintSession(
                session_id=f"print_{uuid4().hex[:8]}",
                name=name or "Unknown",
                start_time=now,
            )
            self._buffer.clear()
            self._tracker.reset()
            self._alerts = []
            self._update_count = 0
            self._bed_temperature = None
            self._ambient_temperature = None
            self._state = MonitorState.MONITORING

            logger.info(f"Monitoring started: {self._session.name} ({self._session.session_id})")
            return OperationResult(
                success=True,
                message="Monitoring started",
                data={"session_id": self._session.session_id},
            )

    def stop(self) -> Optional[SessionReport]:
        """
        Stop monitoring and finalize the session.

        Returns:
            Final SessionReport, or None if nothing was being monitored
        """
        with self._lock:
            if not self.is_monitoring:
                logger.warning("Stop requested while not monitoring")
                return None
            return self._finalize()

    def _finalize(self) -> SessionReport:
        now = self._clock()
        self._session.end_time = now
        self._session.status = SessionStatus.COMPLETED

        report = self._build_report(now, final=True)
        self._final_report = report
        self._state = MonitorState.IDLE

        # Session-scoped state does not outlive the session.
        self._session = None
        self._alerts = []
        self._buffer.clear()
        self._tracker.reset()
        self._update_count = 0
        if isinstance(self.snapshots, LayerSnapshotStore):
            self.snapshots.clear()
        if isinstance(self.visual, LatestVisualSignal):
            self.visual.clear()

        logger.info(
            f"Monitoring stopped: {report.session.name} "
            f"{report.quality.grade.value} ({report.quality.overall_score}/100)"
        )
        return report

    # Inbound telemetry

    def push_sensor_sample(
        self,
        channel: Union[str, Channel],
        value: float,
        timestamp: Optional[float] = None,
    ) -> List[Alert]:
        """
        Record one hardware sensor reading.

        Args:
            channel: Channel name; unknown names raise ValueError
            value: Reading
            timestamp: Sample time (defaults to now)

        Returns:
            Real-time alerts raised by this reading
        """
        channel = Channel.parse(channel)
        with self._lock:
            if not self.is_monitoring:
                return []
            now = self._clock()
            self._buffer.record(channel, value, timestamp if timestamp is not None else now)
            if channel == Channel.TEMPERATURE:
                self._ambient_temperature = float(value)
            return self._check_realtime_alerts(channel, float(value), now)

    def update_sensor_data(
        self,
        readings: Mapping[str, float],
        timestamp: Optional[float] = None,
    ) -> List[Alert]:
        """
        Record several sensor readings taken together.

        Readings without a value are skipped. Names and values are validated
        before anything is recorded, so a rejected batch leaves no trace.
        """
        parsed = []
        for name, value in readings.items():
            channel = Channel.parse(name)
            if value is not None:
                parsed.append((channel, float(value)))
        with self._lock:
            alerts = []
            for channel, value in parsed:
                alerts.extend(self.push_sensor_sample(channel, value, timestamp))
            return alerts

    def push_printer_telemetry(
        self,
        position: Optional[PositionInput] = None,
        temperature: Optional[Mapping[str, float]] = None,
        timestamp: Optional[float] = None,
    ) -> Optional[Detection]:
        """
        Record one printer status update.

        Args:
            position: Nozzle position (x, y, z in mm)
            temperature: Mapping with ``hotend`` and/or ``bed`` temperatures
            timestamp: Update time (defaults to now)

        Returns:
            Detection if this update triggered a risk evaluation
        """
        with self._lock:
            if not self.is_monitoring:
                return None

            now = self._clock()
            ts = timestamp if timestamp is not None else now
            self._update_count += 1
            triggers: List[EvaluationTrigger] = []

            if position is not None:
                sample = self._position_sample(position, ts)
                self._buffer.record_position(sample)
                self._update_progress(sample.z)
                if self._tracker.observe_position(sample):
                    triggers.extend(self._tracker.last_triggers)

            if temperature:
                if temperature.get("hotend") is not None:
                    self._buffer.record(Channel.TEMPERATURE, temperature["hotend"], ts)
                if temperature.get("bed") is not None:
                    self._bed_temperature = float(temperature["bed"])

            triggers.extend(self.cadence.update_triggers(self._update_count))
            if not triggers:
                return None

            # One evaluation per update even when both cadences fire.
            logger.debug(
                f"Evaluation due on layer {self._tracker.current_layer}: "
                + ", ".join(t.value for t in triggers)
            )
            return self._run_evaluation()

    def push_structural_snapshot(
        self,
        layer: int,
        snapshot: Union[StructuralRiskSnapshot, Mapping],
    ) -> OperationResult:
        """Accept per-layer structural risk metadata for the current job."""
        if not isinstance(snapshot, StructuralRiskSnapshot):
            snapshot = StructuralRiskSnapshot.from_dict(dict(snapshot))
        with self._lock:
            if not isinstance(self.snapshots, LayerSnapshotStore):
                return OperationResult(
                    success=False,
                    message="Structural provider does not accept pushed snapshots",
                    state="unsupported",
                )
            self.snapshots.push(layer, snapshot)
            return OperationResult(success=True, message=f"Snapshot stored for layer {layer}")

    def push_visual_signal(
        self,
        confidence: float,
        patterns: Optional[Sequence[Union[VisualPattern, Mapping]]] = None,
    ) -> OperationResult:
        """Accept the latest visual-anomaly signal."""
        parsed = [
            p if isinstance(p, VisualPattern) else self._visual_pattern(p)
            for p in patterns or ()
        ]
        with self._lock:
            if not isinstance(self.visual, LatestVisualSignal):
                return OperationResult(
                    success=False,
                    message="Visual provider does not accept pushed signals",
                    state="unsupported",
                )
            self.visual.push(confidence, parsed)
            return OperationResult(success=True, message="Visual signal updated")

    # Evaluation

    def evaluate_now(self) -> Optional[Detection]:
        """Run a risk evaluation for the current layer outside the cadence."""
        with self._lock:
            if not self.is_monitoring:
                return None
            return self._run_evaluation()

    def _run_evaluation(self) -> Detection:
        layer = self._tracker.current_layer
        windows = self._buffer.windows({
            Channel.VIBRATION: VIBRATION_WINDOW,
            Channel.TEMPERATURE: TEMPERATURE_WINDOW,
            Channel.MATERIAL_FLOW: FLOW_WINDOW,
        })
        detection = self.detector.evaluate(
            snapshot=self.snapshots.snapshot_for(layer),
            sensor_windows=windows,
            visual=self.visual.current_signal(),
            layer=layer,
        )

        if detection.confidence > self.settings.risk_alert_threshold:
            alert = Alert(
                alert_type=AlertType.FAILURE_RISK,
                severity=AlertSeverity.HIGH,
                message=f"High failure risk detected on layer {layer}",
                confidence=detection.confidence,
                recommendation=detection.recommendation,
                timestamp=self._clock(),
            )
            self._add_alert(alert)
            logger.warning(f"Recommendation: {detection.recommendation.message}")
            for factor in detection.risk_factors:
                logger.warning(f"  - {factor.description} ({factor.risk_level.value} risk)")
        elif detection.confidence > self.settings.moderate_risk_threshold:
            logger.info(f"Moderate failure risk on layer {layer}: {detection.confidence:.1%} confidence")

        return detection

    def _check_realtime_alerts(self, channel: Channel, value: float, now: float) -> List[Alert]:
        """Simple threshold checks applied to every sensor reading."""
        raised = []

        if channel == Channel.TEMPERATURE:
            if value > MAX_TEMPERATURE:
                raised.append((AlertType.HIGH_TEMPERATURE, AlertSeverity.WARNING, "High temperature detected"))
            if value < MIN_TEMPERATURE and self._session.status == SessionStatus.PRINTING:
                raised.append((AlertType.TEMPERATURE_DROP, AlertSeverity.ERROR, "Temperature drop detected"))
        elif channel == Channel.VIBRATION:
            if value > MAX_VIBRATION:
                raised.append((AlertType.EXCESSIVE_VIBRATION, AlertSeverity.WARNING, "Excessive vibration detected"))
        elif channel == Channel.MATERIAL_FLOW:
            if value < MIN_FLOW:
                raised.append((AlertType.FILAMENT_FLOW, AlertSeverity.ERROR, "Possible filament jam or runout"))

        alerts = []
        for alert_type, severity, message in raised:
            alert = Alert(
                alert_type=alert_type,
                severity=severity,
                message=message,
                value=value,
                timestamp=now,
            )
            self._add_alert(alert)
            alerts.append(alert)

        return alerts

    # Alerts

    def _add_alert(self, alert: Alert) -> None:
        self._alerts.append(alert)
        self._prune_alerts(self._clock())

        if alert.value is not None:
            logger.warning(f"{alert.severity.value.upper()}: {alert.message} ({alert.value:g})")
        else:
            logger.warning(f"{alert.severity.value.upper()}: {alert.message} ({alert.confidence:.1%} confidence)")

        for callback in self._alert_callbacks:
            try:
                callback(alert)
            except Exception as e:
                logger.error(f"Alert callback error: {e}")

    def _prune_alerts(self, now: float) -> None:
        cutoff = now - self.settings.alert_retention_seconds
        self._alerts = [a for a in self._alerts if a.timestamp > cutoff]

    def get_recent_alerts(self, count: int = 10) -> List[Alert]:
        """Most recent alerts, newest first."""
        with self._lock:
            self._prune_alerts(self._clock())
            if count <= 0:
                return []
            return list(reversed(self._alerts[-count:]))

    # Outbound views

    def get_status(self) -> StatusSnapshot:
        """Current monitoring status."""
        with self._lock:
            if not self.is_monitoring:
                return StatusSnapshot(monitoring=False)

            now = self._clock()
            self._prune_alerts(now)
            limit = self.settings.status_alert_limit
            return StatusSnapshot(
                monitoring=True,
                session=replace(self._session),
                runtime_ms=self._runtime_ms(now),
                current_layer=self._tracker.current_layer,
                recent_alerts=self._alerts[-limit:] if limit > 0 else [],
                data_points=self._buffer.counts(),
            )

    def get_live_report(self) -> Optional[SessionReport]:
        """Quality report for the running session, None when idle."""
        with self._lock:
            if not self.is_monitoring:
                return None
            return self._build_report(self._clock(), final=False)

    def get_final_report(self) -> Optional[SessionReport]:
        """Report of the last finalized session."""
        with self._lock:
            return self._final_report

    def get_detection_stats(self) -> dict:
        """Detection history and feedback accuracy."""
        return self.detector.get_detection_stats()

    # Feedback

    def report_outcome(self, was_failure: bool) -> OperationResult:
        """Operator feedback on whether the flagged risk was a real failure."""
        with self._lock:
            return self.detector.report_feedback(was_failure)

    def reset_feedback(self) -> None:
        """Forget all operator feedback."""
        with self._lock:
            self.detector.feedback.reset()
            logger.info("Feedback counters reset")

    # Helpers

    def _build_report(self, now: float, final: bool) -> SessionReport:
        self._prune_alerts(now)
        buffer = self._buffer

        if final:
            temperature = buffer.average(Channel.TEMPERATURE)
        else:
            temperature = buffer.latest(Channel.TEMPERATURE)

        common = CommonIssueInputs(
            temperature=temperature if buffer.has_data(Channel.TEMPERATURE) else None,
            material_flow=(buffer.average(Channel.MATERIAL_FLOW)
                           if buffer.has_data(Channel.MATERIAL_FLOW) else None),
            bed_temperature=self._bed_temperature,
            ambient_temperature=self._ambient_temperature,
            humidity=buffer.latest(Channel.HUMIDITY) if buffer.has_data(Channel.HUMIDITY) else None,
        )
        quality = generate_quality_report(
            temperatures=buffer.values(Channel.TEMPERATURE),
            vibration=buffer.values(Channel.VIBRATION),
            material_flow=buffer.values(Channel.MATERIAL_FLOW),
            z_values=buffer.z_values(),
            common=common,
            layer_height=self.settings.layer_height,
            timestamp=now,
        )

        end = self._session.end_time if self._session.end_time is not None else now
        return SessionReport(
            quality=quality,
            session=replace(self._session),
            runtime_ms=self._runtime_ms(end),
            alerts=self._alerts[-10:],
            total_alerts=len(self._alerts),
            data_points=buffer.counts(),
            final=final,
        )

    def _runtime_ms(self, now: float) -> int:
        return int(round((now - self._session.start_time) * 1000))

    def _update_progress(self, z: float) -> None:
        progress = min(100.0, max(0.0, z / self.settings.max_expected_height * 100))
        self._session.progress = int(progress + 0.5)

    @staticmethod
    def _visual_pattern(data: Mapping) -> VisualPattern:
        """Pattern from a collaborator payload; location as ``[x, y]`` or ``{"x", "y"}``."""
        location = data.get("location")
        if isinstance(location, Mapping):
            location = (float(location["x"]), float(location["y"]))
        elif location is not None:
            location = tuple(float(v) for v in location)
        return VisualPattern(
            pattern_type=str(data.get("type", "unknown")),
            confidence=float(data.get("confidence", 0.0)),
            description=str(data.get("description", "")),
            location=location,
        )

    @staticmethod
    def _position_sample(position: PositionInput, timestamp: float) -> PositionSample:
        if isinstance(position, PositionSample):
            return position
        return PositionSample(
            x=float(position.get("x", 0.0)),
            y=float(position.get("y", 0.0)),
            z=float(position["z"]),
            timestamp=timestamp,
        )
