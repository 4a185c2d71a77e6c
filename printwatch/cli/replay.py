"""Replay recorded telemetry through a session monitor."""

import json
import time
from pathlib import Path
from typing import Iterable, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from printwatch.monitoring import Detection, SessionMonitor, SessionReport
from printwatch.utils import format_duration, get_logger

console = Console()
logger = get_logger("cli.replay")

EVENT_TYPES = ("start", "sensor", "printer", "structure", "visual", "outcome", "stop")


class ReplayClock:
    """Clock driven by event timestamps so alert ages match the recording."""

    def __init__(self, start: Optional[float] = None):
        self.now = start if start is not None else time.time()

    def advance_to(self, timestamp: Optional[float]) -> None:
        if timestamp is not None and timestamp > self.now:
            self.now = timestamp

    def __call__(self) -> float:
        return self.now


def load_events(path: Path) -> List[dict]:
    """
    Read a JSON-lines event file.

    Blank lines and lines starting with ``#`` are skipped.

    Raises:
        ValueError: On malformed JSON or an unknown event type
    """
    events = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path.name}:{lineno}: invalid JSON ({e.msg})") from e
            if not isinstance(event, dict) or event.get("type") not in EVENT_TYPES:
                raise ValueError(f"{path.name}:{lineno}: unknown event type {event.get('type') if isinstance(event, dict) else event!r}")
            event["_line"] = lineno
            events.append(event)
    return events


def replay_events(
    monitor: SessionMonitor,
    events: Iterable[dict],
    clock: Optional[ReplayClock] = None,
    name: str = "replay",
) -> List[Detection]:
    """
    Feed events into a monitor.

    Monitoring starts automatically on the first telemetry event if the
    recording has no explicit ``start`` event.

    Returns:
        Detections produced during the replay
    """
    detections = []
    for event in events:
        kind = event["type"]
        if clock is not None:
            clock.advance_to(event.get("timestamp"))

        try:
            if kind == "start":
                monitor.start(event.get("name", name))
                continue
            if kind == "stop":
                monitor.stop()
                continue
            if kind in ("sensor", "printer") and not monitor.is_monitoring:
                monitor.start(name)

            if kind == "sensor":
                if "readings" in event:
                    monitor.update_sensor_data(event["readings"], event.get("timestamp"))
                else:
                    monitor.push_sensor_sample(event["channel"], event["value"], event.get("timestamp"))
            elif kind == "printer":
                detection = monitor.push_printer_telemetry(
                    position=event.get("position"),
                    temperature=event.get("temperature"),
                    timestamp=event.get("timestamp"),
                )
                if detection is not None:
                    detections.append(detection)
            elif kind == "structure":
                monitor.push_structural_snapshot(int(event["layer"]), event.get("snapshot", {}))
            elif kind == "visual":
                monitor.push_visual_signal(float(event.get("confidence", 0.0)), event.get("patterns"))
            elif kind == "outcome":
                result = monitor.report_outcome(bool(event.get("failure")))
                if not result.success:
                    logger.warning(f"Line {event.get('_line')}: {result.message}")
        except KeyError as e:
            raise ValueError(f"line {event.get('_line')}: {kind} event is missing {e}") from e
        except TypeError as e:
            raise ValueError(f"line {event.get('_line')}: {kind} event has an invalid value ({e})") from e

    return detections


def _print_report(report: SessionReport) -> None:
    quality = report.quality
    grade_colors = {
        "Excellent": "green",
        "Good": "green",
        "Fair": "yellow",
        "Poor": "red",
        "Critical": "red",
    }
    color = grade_colors.get(quality.grade.value, "white")

    console.print(Panel(
        f"[bold {color}]{quality.grade.value}[/bold {color}] ({quality.overall_score}/100)\n\n"
        f"Print: {report.session.name} ({report.session.session_id})\n"
        f"Progress: {report.session.progress}%\n"
        f"Runtime: {format_duration(report.runtime_ms / 1000)}\n"
        f"Temperature stability: {quality.metrics.temperature_stability:.1f}\n"
        f"Vibration score: {quality.metrics.vibration_level:.1f}\n"
        f"Layer quality: {quality.metrics.layer_quality:.1f}",
        title="Print Quality Report",
    ))

    if quality.issues:
        table = Table(title="Issues")
        table.add_column("Issue", style="yellow")
        table.add_column("Recommendation")
        for issue, rec in zip(quality.issues, quality.recommendations):
            table.add_row(issue, rec)
        console.print(table)

    if report.alerts:
        table = Table(title=f"Alerts ({report.total_alerts} in last hour)")
        table.add_column("Type")
        table.add_column("Severity")
        table.add_column("Message")
        for alert in report.alerts:
            table.add_row(alert.alert_type.value, alert.severity.value, alert.message)
        console.print(table)


def _print_stats(stats: dict) -> None:
    table = Table(title="Risk Detection", show_header=False, box=None)
    table.add_row("Detections:", str(stats["total_detections"]))
    table.add_row("Accuracy:", f"{stats['accuracy']:.1%}")
    table.add_row("Confirmed failures:", str(stats["true_positives"]))
    table.add_row("False positives:", str(stats["false_positives"]))
    console.print(table)

    recent = stats["recent_detections"]
    if recent:
        det_table = Table(title="Recent Detections")
        det_table.add_column("Layer", justify="right")
        det_table.add_column("Risk", justify="right")
        det_table.add_column("Confidence", justify="right")
        det_table.add_column("Action")
        for det in recent:
            det_table.add_row(
                str(det.layer),
                f"{det.risk_score:.2f}",
                f"{det.confidence:.0%}",
                det.recommendation.action.value,
            )
        console.print(det_table)


@click.command()
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", "-n", help="Print job name (defaults to the file name)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def replay(ctx: click.Context, events_file: Path, name: Optional[str], output_json: bool) -> None:
    """Replay a recorded telemetry file and report print quality.

    EVENTS_FILE holds one JSON event per line, for example:

        {"type": "sensor", "channel": "vibration", "value": 12.5}

        {"type": "printer", "position": {"x": 10, "y": 5, "z": 0.4}}

    Examples:

        printwatch replay benchy.jsonl

        printwatch replay benchy.jsonl --json
    """
    from printwatch.config import get_settings

    try:
        events = load_events(events_file)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    first_ts = next((e["timestamp"] for e in events if e.get("timestamp") is not None), None)
    clock = ReplayClock(first_ts)
    monitor = SessionMonitor(settings=get_settings(), clock=clock)

    try:
        detections = replay_events(monitor, events, clock=clock, name=name or events_file.stem)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    report = monitor.stop() if monitor.is_monitoring else monitor.get_final_report()
    stats = monitor.get_detection_stats()

    if output_json:
        click.echo(json.dumps({
            "report": report.to_dict() if report else None,
            "detections": len(detections),
            "detection_stats": {
                **stats,
                "recent_detections": [d.to_dict() for d in stats["recent_detections"]],
            },
        }, indent=2))
        return

    if report is None:
        console.print("[yellow]No telemetry in recording - nothing to report[/yellow]")
        return

    _print_report(report)
    console.print()
    _print_stats(stats)
