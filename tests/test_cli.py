"""Tests for the printwatch CLI."""

import json

import pytest
from click.testing import CliRunner

from printwatch import __version__
from printwatch.cli.main import cli
from printwatch.cli.replay import ReplayClock, load_events, replay_events

START = 1_700_000_000.0

RECORDING = [
    {"type": "start", "name": "benchy", "timestamp": START},
    {"type": "sensor", "readings": {"temperature": 210, "vibration": 5, "materialFlow": 450},
     "timestamp": START + 1},
    {"type": "printer", "position": {"x": 10, "y": 10, "z": 0.2}, "timestamp": START + 2},
    {"type": "printer", "position": {"x": 12, "y": 10, "z": 0.4}, "timestamp": START + 3},
    {"type": "outcome", "failure": False, "timestamp": START + 4},
    {"type": "stop", "timestamp": START + 10},
]


def write_events(path, events, header=True):
    lines = ["# recorded on the test bench", ""] if header else []
    lines.extend(json.dumps(e) for e in events)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def parse_json(output):
    return json.loads(output[output.index("{"):])


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def recording(tmp_path):
    return write_events(tmp_path / "benchy.jsonl", RECORDING)


class TestLoadEvents:
    """Tests for load_events."""

    def test_skips_comments_and_blank_lines(self, recording):
        events = load_events(recording)

        assert len(events) == len(RECORDING)
        assert events[0]["type"] == "start"
        assert events[0]["_line"] == 3

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.jsonl"
        path.write_text('{"type": "start"}\nnot json\n', encoding="utf-8")

        with pytest.raises(ValueError, match="bad.jsonl:2: invalid JSON"):
            load_events(path)

    def test_unknown_event_type(self, tmp_path):
        path = write_events(tmp_path / "bad.jsonl", [{"type": "teleport"}], header=False)

        with pytest.raises(ValueError, match="unknown event type"):
            load_events(path)


class TestReplayEvents:
    """Tests for replay_events."""

    def test_replay_produces_detections(self, monitor):
        detections = replay_events(monitor, RECORDING)

        assert [d.layer for d in detections] == [1, 2]
        report = monitor.get_final_report()
        assert report.session.name == "benchy"
        assert monitor.get_detection_stats()["false_positives"] == 1

    def test_auto_start(self, monitor):
        events = [{"type": "sensor", "channel": "vibration", "value": 90}]
        replay_events(monitor, events, name="auto")

        assert monitor.is_monitoring
        assert monitor.session.name == "auto"
        assert monitor.get_status().data_points["vibration"] == 1

    def test_replay_clock_follows_events(self, settings):
        from printwatch.monitoring import SessionMonitor

        clock = ReplayClock(START)
        monitor = SessionMonitor(settings=settings, clock=clock)
        replay_events(monitor, RECORDING, clock=clock)

        assert clock() == START + 10
        assert monitor.get_final_report().runtime_ms == 10000

    def test_replay_clock_never_moves_backwards(self):
        clock = ReplayClock(100.0)
        clock.advance_to(50.0)
        clock.advance_to(None)
        assert clock() == 100.0

    def test_null_readings_are_skipped(self, monitor):
        events = [{"type": "sensor", "readings": {"vibration": 10, "humidity": None}}]
        replay_events(monitor, events)

        data_points = monitor.get_status().data_points
        assert data_points["vibration"] == 1
        assert data_points["humidity"] == 0

    def test_null_value(self, monitor):
        events = [{"type": "sensor", "channel": "vibration", "value": None, "_line": 4}]

        with pytest.raises(ValueError, match="line 4: sensor event has an invalid value"):
            replay_events(monitor, events)

    def test_missing_field(self, monitor):
        events = [{"type": "sensor", "channel": "vibration", "_line": 7}]

        with pytest.raises(ValueError, match="line 7: sensor event is missing"):
            replay_events(monitor, events)


class TestCommands:
    """Tests for CLI commands."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_grade(self, runner):
        result = runner.invoke(cli, ["grade", "87.5"])
        assert result.exit_code == 0
        assert "87.5 -> Good" in result.output

    def test_grade_out_of_range(self, runner):
        result = runner.invoke(cli, ["grade", "150"])
        assert result.exit_code == 1
        assert "between 0 and 100" in result.output

    def test_config(self, runner):
        result = runner.invoke(cli, ["config"])
        assert result.exit_code == 0
        assert "buffer_capacity" in result.output
        assert "session_restart_policy" in result.output

    def test_replay_report(self, runner, recording):
        result = runner.invoke(cli, ["replay", str(recording)])

        assert result.exit_code == 0, result.output
        assert "Print Quality Report" in result.output
        assert "Excellent" in result.output
        assert "benchy" in result.output

    def test_replay_json(self, runner, recording):
        result = runner.invoke(cli, ["replay", str(recording), "--json"])

        assert result.exit_code == 0, result.output
        data = parse_json(result.output)
        assert data["detections"] == 2
        assert data["report"]["final"] is True
        assert data["report"]["session"]["name"] == "benchy"
        assert data["report"]["runtime_ms"] == 10000
        assert data["detection_stats"]["total_detections"] == 2
        assert data["detection_stats"]["false_positives"] == 1
        assert data["detection_stats"]["recent_detections"][0]["layer"] == 1

    def test_replay_name_for_auto_start(self, runner, tmp_path):
        path = write_events(tmp_path / "raw.jsonl", [
            {"type": "printer", "position": {"z": 0.2}, "timestamp": START},
        ])
        result = runner.invoke(cli, ["replay", str(path), "--json", "--name", "calibration cube"])

        assert result.exit_code == 0, result.output
        assert parse_json(result.output)["report"]["session"]["name"] == "calibration cube"

    def test_replay_empty_recording(self, runner, tmp_path):
        path = write_events(tmp_path / "empty.jsonl", [])
        result = runner.invoke(cli, ["replay", str(path)])

        assert result.exit_code == 0
        assert "nothing to report" in result.output

    def test_replay_malformed_file(self, runner, tmp_path):
        path = tmp_path / "broken.jsonl"
        path.write_text("not json\n", encoding="utf-8")
        result = runner.invoke(cli, ["replay", str(path)])

        assert result.exit_code == 1
        assert "invalid JSON" in result.output

    def test_replay_null_reading(self, runner, tmp_path):
        path = write_events(tmp_path / "gaps.jsonl", [
            {"type": "sensor", "readings": {"vibration": 10, "humidity": None}, "timestamp": START},
        ])
        result = runner.invoke(cli, ["replay", str(path), "--json"])

        assert result.exit_code == 0, result.output
        assert parse_json(result.output)["report"]["data_points"]["humidity"] == 0

    def test_replay_invalid_value(self, runner, tmp_path):
        path = write_events(tmp_path / "bad.jsonl", [
            {"type": "sensor", "channel": "vibration", "value": None, "timestamp": START},
        ])
        result = runner.invoke(cli, ["replay", str(path)])

        assert result.exit_code == 1
        assert "invalid value" in result.output

    def test_replay_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["replay", str(tmp_path / "nope.jsonl")])
        assert result.exit_code != 0
