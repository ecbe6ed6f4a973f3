"""Output handlers: JSON and Markdown replay reports."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from compass_replay.models import ReplayResult


def _cell(value: Any) -> str:
    return "N/A" if value is None else str(value)


def write_json(result: ReplayResult, output_dir: str | Path) -> Path:
    """Write ``<scenario>.json`` and return its path."""
    path = Path(output_dir) / f"{result.scenario.name}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        json.dump(result.to_dict(), f, indent=2, ensure_ascii=False, sort_keys=True)
    return path


def render_markdown(result: ReplayResult) -> str:
    summary = result.summary
    ratios = summary.classification_ratios
    projection = summary.threshold_projection
    unit = projection.get("unit", "")

    lines = [
        f"# {result.scenario.name}",
        "",
        f"Generated: {result.generated_at}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Dose Count | {summary.dose_count} |",
        f"| Optimal Days | {ratios['green']} |",
        f"| Caution Days | {ratios['yellow']} |",
        f"| Too High | {ratios['red']} |",
        f"| Trend | {summary.trend_note} |",
        "",
        "## Threshold Projection",
        "",
        f"| Level | Dose ({unit}) |",
        "|-------|-----------|",
        f"| Floor | {_cell(projection['floor'])} |",
        f"| Sweet Spot | {_cell(projection['sweet'])} |",
        f"| Ceiling | {_cell(projection['ceiling'])} |",
        f"| Confidence | {_cell(projection['confidence'])} |",
        "",
    ]
    if projection.get("qualifier"):
        lines += [f"_{projection['qualifier']}_", ""]

    lines += ["## Interventions", ""]
    lines += [f"- {item}" for item in summary.interventions]
    lines += [
        "",
        "## Dose Log",
        "",
        "| Day | Date | Dose | Carryover | Signal | Interference | Class | Feel |",
        "|-----|------|------|-----------|--------|--------------|-------|------|",
    ]
    for e in result.dose_events:
        lines.append(
            f"| {e['day_index']} | {e['date']} | {e['dose_amount']} | {e['carryover_score']} "
            f"| {e['signal_score']} | {e['interference_score']} | {e['day_classification']} "
            f"| {e['threshold_feel']} |"
        )
    lines += ["", "---", "*Generated by compass-replay*", ""]
    return "\n".join(lines)


def write_markdown(result: ReplayResult, output_dir: str | Path) -> Path:
    path = Path(output_dir) / f"{result.scenario.name}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_markdown(result))
    return path


def write_index(results: list[ReplayResult], output_dir: str | Path, generated_at: str) -> Path:
    """Cross-scenario summary table written to ``index.md``."""
    lines = [
        "# Protocol Replay Summary",
        "",
        f"Generated: {generated_at}",
        "",
        "## Scenarios",
        "",
        "| Scenario | Doses | Optimal | Caution | Too High | Sweet Spot | Confidence | Trend |",
        "|----------|-------|---------|---------|----------|------------|------------|-------|",
    ]
    for result in results:
        s = result.summary
        r = s.classification_ratios
        p = s.threshold_projection
        lines.append(
            f"| {result.scenario.name} | {s.dose_count} | {r['green']} | {r['yellow']} | {r['red']} "
            f"| {_cell(p['sweet'])} | {_cell(p['confidence'])} | {s.trend_note} |"
        )
    lines += ["", "---", "*compass-replay*", ""]

    path = Path(output_dir) / "index.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines))
    return path
