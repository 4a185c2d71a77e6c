"""Print quality scoring over buffered telemetry.

Each analysis step returns its own issues and recommendations plus a
0-100 sub-score; ``generate_quality_report`` combines them into an
overall score and letter-style grade.
"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from printwatch.monitoring.telemetry import mean, variation
from printwatch.utils import get_logger

logger = get_logger("monitoring.quality")

# Material temperature sanity band (degrees C)
MIN_PRINT_TEMP = 180.0
MAX_PRINT_TEMP = 250.0


class QualityGrade(str, Enum):
    """Overall print quality grade."""
    CRITICAL = "Critical"
    POOR = "Poor"
    FAIR = "Fair"
    GOOD = "Good"
    EXCELLENT = "Excellent"


@dataclass
class AnalysisResult:
    """Outcome of one quality analysis step."""
    score: float = 100.0
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def flag(self, issue: str, recommendation: str) -> None:
        self.issues.append(issue)
        self.recommendations.append(recommendation)


@dataclass
class QualityMetrics:
    """Sub-scores behind a quality report."""
    temperature_stability: float
    vibration_level: float
    layer_quality: float

    def to_dict(self) -> dict:
        return {
            "temperature_stability": self.temperature_stability,
            "vibration_level": self.vibration_level,
            "layer_quality": self.layer_quality,
        }


@dataclass
class QualityReport:
    """Point-in-time quality assessment."""
    timestamp: float
    overall_score: int
    grade: QualityGrade
    issues: List[str]
    recommendations: List[str]
    metrics: QualityMetrics

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "overall_score": self.overall_score,
            "grade": self.grade.value,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "metrics": self.metrics.to_dict(),
        }


@dataclass
class CommonIssueInputs:
    """Current averages fed to the common-issue scan. None means unknown."""
    temperature: Optional[float] = None
    material_flow: Optional[float] = None
    bed_temperature: Optional[float] = None
    ambient_temperature: Optional[float] = None
    humidity: Optional[float] = None


def get_quality_grade(score: float) -> QualityGrade:
    """Map a 0-100 score onto a grade band (lower bound inclusive)."""
    if score >= 90:
        return QualityGrade.EXCELLENT
    if score >= 80:
        return QualityGrade.GOOD
    if score >= 70:
        return QualityGrade.FAIR
    if score >= 60:
        return QualityGrade.POOR
    return QualityGrade.CRITICAL


def analyze_temperature_profile(temperatures: Sequence[float]) -> AnalysisResult:
    """Score hotend temperature stability."""
    temp_variation = variation(temperatures)
    result = AnalysisResult(score=max(0.0, 100 - temp_variation * 10))

    if temp_variation > 5:
        result.flag(
            "Temperature fluctuation detected",
            "Check thermal insulation and PID tuning",
        )

    if temperatures:
        avg_temp = mean(temperatures)
        if avg_temp < MIN_PRINT_TEMP or avg_temp > MAX_PRINT_TEMP:
            result.flag(
                f"Unusual temperature: {avg_temp:.1f}°C",
                "Verify material temperature requirements",
            )

    return result


def detect_periodic_vibration(vibration: Sequence[float], delta: float = 10.0, ratio: float = 0.3) -> bool:
    """True if more than ``ratio`` of the samples jump by over ``delta`` from the previous one."""
    jumps = sum(
        1 for prev, cur in zip(vibration, vibration[1:])
        if abs(cur - prev) > delta
    )
    return jumps > len(vibration) * ratio


def analyze_vibration(vibration: Sequence[float]) -> AnalysisResult:
    """Score printer vibration."""
    avg_vibration = mean(vibration)
    result = AnalysisResult(score=max(0.0, 100 - avg_vibration))

    if avg_vibration > 50:
        result.flag(
            "Excessive printer vibration detected",
            "Check belt tension and frame stability",
        )

    if detect_periodic_vibration(vibration):
        result.flag(
            "Periodic vibration pattern detected",
            "Check for loose pulleys or worn bearings",
        )

    return result


def extract_layer_heights(z_values: Sequence[float], default_height: float = 0.2) -> List[float]:
    """Layer heights from successive increasing Z values, starting at Z=0."""
    heights = []
    current_z = 0.0
    for z in z_values:
        if z > current_z:
            heights.append(z - current_z)
            current_z = z
    return heights or [default_height]


def analyze_layer_quality(
    z_values: Sequence[float],
    material_flow: Sequence[float],
    default_height: float = 0.2,
) -> AnalysisResult:
    """Score layer height and extrusion consistency."""
    result = AnalysisResult(score=100.0)

    heights = extract_layer_heights(z_values, default_height)
    if variation(heights) > 0.05:
        result.flag(
            "Inconsistent layer heights detected",
            "Calibrate Z-axis steps/mm and check bed leveling",
        )
        result.score -= 20

    if variation(material_flow) > 10:
        result.flag(
            "Inconsistent filament flow detected",
            "Check extruder gear tension and hotend temperature",
        )
        result.score -= 15

    result.score = max(0.0, result.score)
    return result


def detect_common_issues(inputs: CommonIssueInputs) -> AnalysisResult:
    """Independent rule scan; every matching rule adds its own issue."""
    result = AnalysisResult()

    if (inputs.temperature is not None and inputs.material_flow is not None
            and inputs.temperature < 200 and inputs.material_flow < 400):
        result.flag("Possible under-extrusion", "Increase temperature or flow rate")

    if inputs.material_flow is not None and inputs.material_flow > 800:
        result.flag("Possible over-extrusion", "Reduce flow rate or increase print speed")

    if (inputs.bed_temperature is not None and inputs.ambient_temperature is not None
            and inputs.bed_temperature < 50 and inputs.ambient_temperature < 20):
        result.flag("High warping risk detected", "Increase bed temperature and consider enclosure")

    if inputs.humidity is not None and inputs.humidity > 60:
        result.flag("High humidity may cause stringing", "Store filament in dry environment")

    return result


def generate_quality_report(
    temperatures: Sequence[float],
    vibration: Sequence[float],
    material_flow: Sequence[float],
    z_values: Sequence[float],
    common: Optional[CommonIssueInputs] = None,
    layer_height: float = 0.2,
    timestamp: Optional[float] = None,
) -> QualityReport:
    """
    Build a quality report from buffered telemetry.

    Args:
        temperatures: Hotend temperature history
        vibration: Vibration history
        material_flow: Material flow history
        z_values: Z positions in arrival order
        common: Averages for the common-issue scan
        layer_height: Fallback layer height when no Z movement was seen
        timestamp: Report time (defaults to now)

    Returns:
        QualityReport with the combined score and grade
    """
    temp = analyze_temperature_profile(temperatures)
    vib = analyze_vibration(vibration)
    layer = analyze_layer_quality(z_values, material_flow, layer_height)
    issues_scan = detect_common_issues(common or CommonIssueInputs())

    steps = [temp, vib, layer, issues_scan]
    score = mean([temp.score, vib.score, layer.score])

    report = QualityReport(
        timestamp=timestamp if timestamp is not None else time.time(),
        overall_score=int(math.floor(score + 0.5)),  # half-up
        grade=get_quality_grade(score),
        issues=[issue for step in steps for issue in step.issues],
        recommendations=[rec for step in steps for rec in step.recommendations],
        metrics=QualityMetrics(
            temperature_stability=temp.score,
            vibration_level=vib.score,
            layer_quality=layer.score,
        ),
    )

    logger.debug(f"Quality analysis complete: {report.grade.value} ({report.overall_score}/100)")
    return report
