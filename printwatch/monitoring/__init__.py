"""Monitoring module for printwatch."""

from printwatch.monitoring.telemetry import (
    Channel,
    SensorSample,
    PositionSample,
    ChannelHistory,
    TelemetryBuffer,
)
from printwatch.monitoring.layer_tracker import (
    EvaluationCadence,
    EvaluationTrigger,
    LayerTracker,
)
from printwatch.monitoring.quality import (
    QualityGrade,
    QualityReport,
    CommonIssueInputs,
    generate_quality_report,
    get_quality_grade,
)
from printwatch.monitoring.signals import (
    StructuralRiskSnapshot,
    VisualPattern,
    VisualSignal,
    StructuralSnapshotProvider,
    VisualSignalProvider,
    LayerSnapshotStore,
    StaticSnapshotProvider,
    LatestVisualSignal,
    StaticVisualSignal,
)
from printwatch.monitoring.risk_detector import (
    Alert,
    AlertSeverity,
    AlertType,
    Detection,
    FeedbackCounters,
    OperationResult,
    Recommendation,
    RecommendedAction,
    RiskDetector,
    RiskFactor,
    RiskLevel,
)
from printwatch.monitoring.session_monitor import (
    MonitorState,
    PrintSession,
    SessionMonitor,
    SessionReport,
    SessionStatus,
    StatusSnapshot,
)

__all__ = [
    "Channel",
    "SensorSample",
    "PositionSample",
    "ChannelHistory",
    "TelemetryBuffer",
    "EvaluationCadence",
    "EvaluationTrigger",
    "LayerTracker",
    "QualityGrade",
    "QualityReport",
    "CommonIssueInputs",
    "generate_quality_report",
    "get_quality_grade",
    "StructuralRiskSnapshot",
    "VisualPattern",
    "VisualSignal",
    "StructuralSnapshotProvider",
    "VisualSignalProvider",
    "LayerSnapshotStore",
    "StaticSnapshotProvider",
    "LatestVisualSignal",
    "StaticVisualSignal",
    "Alert",
    "AlertSeverity",
    "AlertType",
    "Detection",
    "FeedbackCounters",
    "OperationResult",
    "Recommendation",
    "RecommendedAction",
    "RiskDetector",
    "RiskFactor",
    "RiskLevel",
    "MonitorState",
    "PrintSession",
    "SessionMonitor",
    "SessionReport",
    "SessionStatus",
    "StatusSnapshot",
]
