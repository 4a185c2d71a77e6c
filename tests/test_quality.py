"""Tests for print quality scoring."""

import pytest

from printwatch.monitoring.quality import (
    CommonIssueInputs,
    QualityGrade,
    analyze_layer_quality,
    analyze_temperature_profile,
    analyze_vibration,
    detect_common_issues,
    detect_periodic_vibration,
    extract_layer_heights,
    generate_quality_report,
    get_quality_grade,
)


class TestQualityGrade:
    """Tests for grade bands."""

    @pytest.mark.parametrize("score,grade", [
        (100, QualityGrade.EXCELLENT),
        (90, QualityGrade.EXCELLENT),
        (89.999, QualityGrade.GOOD),
        (80, QualityGrade.GOOD),
        (79.999, QualityGrade.FAIR),
        (70, QualityGrade.FAIR),
        (60, QualityGrade.POOR),
        (59.999, QualityGrade.CRITICAL),
        (0, QualityGrade.CRITICAL),
    ])
    def test_grade_boundaries(self, score, grade):
        assert get_quality_grade(score) == grade


class TestTemperatureProfile:
    """Tests for analyze_temperature_profile."""

    def test_stable_temperature(self):
        result = analyze_temperature_profile([210, 210, 210])
        assert result.score == 100
        assert result.issues == []

    def test_fluctuation(self):
        result = analyze_temperature_profile([200, 220, 200, 220])
        # Population std of +/-10 around 210
        assert result.score == pytest.approx(0.0)
        assert "Temperature fluctuation detected" in result.issues

    def test_score_floored_at_zero(self):
        result = analyze_temperature_profile([180, 240, 180, 240])
        assert result.score == 0.0

    def test_unusual_temperature(self):
        result = analyze_temperature_profile([260, 260])
        assert result.issues == ["Unusual temperature: 260.0°C"]
        assert result.recommendations == ["Verify material temperature requirements"]

    def test_no_samples_no_band_issue(self):
        result = analyze_temperature_profile([])
        assert result.score == 100
        assert result.issues == []


class TestVibration:
    """Tests for vibration analysis."""

    def test_low_vibration(self):
        result = analyze_vibration([5, 5, 5, 5])
        assert result.score == 95
        assert result.issues == []

    def test_excessive_vibration(self):
        result = analyze_vibration([60, 60, 60])
        assert result.score == 40
        assert "Excessive printer vibration detected" in result.issues

    def test_score_floored_at_zero(self):
        assert analyze_vibration([150, 150]).score == 0.0

    def test_periodic_pattern(self):
        samples = [0, 20, 0, 20, 0, 20, 0, 20]
        assert detect_periodic_vibration(samples)
        result = analyze_vibration(samples)
        assert "Periodic vibration pattern detected" in result.issues

    def test_smooth_ramp_is_not_periodic(self):
        assert not detect_periodic_vibration([0, 5, 10, 15, 20, 25])
        assert not detect_periodic_vibration([])


class TestLayerQuality:
    """Tests for layer quality analysis."""

    def test_extract_layer_heights(self):
        assert extract_layer_heights([0.2, 0.4, 0.4, 0.3, 0.6]) == pytest.approx([0.2, 0.2, 0.2])

    def test_extract_defaults_without_movement(self):
        assert extract_layer_heights([]) == [0.2]
        assert extract_layer_heights([], default_height=0.1) == [0.1]

    def test_consistent_layers(self):
        result = analyze_layer_quality([0.2, 0.4, 0.6, 0.8], [400, 400, 400])
        assert result.score == 100
        assert result.issues == []

    def test_both_penalties(self):
        result = analyze_layer_quality([0.2, 0.6, 0.7], [100, 140])
        assert result.score == 65
        assert result.issues == [
            "Inconsistent layer heights detected",
            "Inconsistent filament flow detected",
        ]


class TestCommonIssues:
    """Tests for the common-issue rule scan."""

    def test_unknown_inputs(self):
        assert detect_common_issues(CommonIssueInputs()).issues == []

    def test_under_extrusion(self):
        result = detect_common_issues(CommonIssueInputs(temperature=190, material_flow=300))
        assert result.issues == ["Possible under-extrusion"]

    def test_over_extrusion(self):
        result = detect_common_issues(CommonIssueInputs(temperature=210, material_flow=900))
        assert result.issues == ["Possible over-extrusion"]

    def test_warping_risk(self):
        result = detect_common_issues(CommonIssueInputs(bed_temperature=40, ambient_temperature=15))
        assert result.issues == ["High warping risk detected"]

    def test_humidity(self):
        result = detect_common_issues(CommonIssueInputs(humidity=75))
        assert result.issues == ["High humidity may cause stringing"]
        assert result.recommendations == ["Store filament in dry environment"]

    def test_rules_are_independent(self):
        result = detect_common_issues(CommonIssueInputs(
            temperature=190, material_flow=300, bed_temperature=40,
            ambient_temperature=15, humidity=75,
        ))
        assert len(result.issues) == 3


class TestQualityReport:
    """Tests for generate_quality_report."""

    def test_clean_print(self):
        report = generate_quality_report(
            temperatures=[210] * 5,
            vibration=[0] * 5,
            material_flow=[450] * 5,
            z_values=[0.2, 0.4, 0.6],
            timestamp=1000.0,
        )
        assert report.overall_score == 100
        assert report.grade == QualityGrade.EXCELLENT
        assert report.issues == []
        assert report.timestamp == 1000.0

    def test_combined_issues_and_score(self):
        report = generate_quality_report(
            temperatures=[260, 260],
            vibration=[60, 60],
            material_flow=[450],
            z_values=[],
            common=CommonIssueInputs(humidity=80),
        )
        # (100 + 40 + 100) / 3
        assert report.overall_score == 80
        assert report.grade == QualityGrade.GOOD
        assert report.issues == [
            "Unusual temperature: 260.0°C",
            "Excessive printer vibration detected",
            "High humidity may cause stringing",
        ]
        assert len(report.recommendations) == len(report.issues)

    def test_score_rounds_half_up(self):
        # (100 + 97 + 100) / 3 = 99.0, (100 + 98.5 + 100) / 3 = 99.5
        report = generate_quality_report([], [3.0], [], [])
        assert report.overall_score == 99
        report = generate_quality_report([], [1.5], [], [])
        assert report.overall_score == 100

    def test_grade_uses_unrounded_score(self):
        # (100 + 69 + 100) / 3 = 89.67 rounds to 90 but grades Good
        report = generate_quality_report([], [31.0], [], [])
        assert report.overall_score == 90
        assert report.grade == QualityGrade.GOOD

    def test_to_dict(self):
        report = generate_quality_report([210], [10], [450], [0.2], timestamp=5.0)
        data = report.to_dict()
        assert data["grade"] == report.grade.value
        assert data["metrics"]["vibration_level"] == 90
        assert data["timestamp"] == 5.0
