"""CLI interface for the protocol replay harness."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import click

from threshold_compass.config import Config
from threshold_compass.logging import setup_logging

from compass_replay.engine import ReplayEngine
from compass_replay.models import Scenario
from compass_replay.output import write_index, write_json, write_markdown
from compass_replay.presets import PRESETS


@click.group()
def main():
    """Threshold Compass protocol replay harness."""
    config = Config.from_env()
    setup_logging(config.log_format, config.log_level)


@main.command()
@click.option(
    "--scenario", "scenario_names",
    type=click.Choice(list(PRESETS.keys())),
    multiple=True,
    help="Replay a preset scenario (repeatable).",
)
@click.option(
    "--scenario-file",
    type=click.Path(exists=True, path_type=Path),
    help="Load a custom scenario from a JSON file.",
)
@click.option("--all", "run_all", is_flag=True, help="Replay every preset scenario.")
@click.option(
    "--format", "output_format",
    type=click.Choice(["json", "md", "both"]),
    default="both",
    show_default=True,
    help="Report formats to write.",
)
@click.option(
    "--output-dir", "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for reports (defaults to COMPASS_REPLAY_OUTPUT_DIR).",
)
@click.option("--generated-at", type=str, help="Fixed generation stamp for reproducible reports.")
def run(
    scenario_names: tuple[str, ...],
    scenario_file: Path | None,
    run_all: bool,
    output_format: str,
    output_dir: Path | None,
    generated_at: str | None,
):
    """Replay one or more scenarios and write reports."""
    config = Config.from_env()
    scenarios: list[Scenario] = []
    if run_all:
        scenarios.extend(PRESETS.values())
    else:
        scenarios.extend(PRESETS[name] for name in scenario_names)

    if scenario_file:
        with scenario_file.open() as f:
            data = json.load(f)
        try:
            scenarios.append(Scenario.from_dict({**config.scenario_defaults(), **data}))
        except (TypeError, ValueError) as e:
            click.echo(f"Error: invalid scenario file: {e}", err=True)
            sys.exit(1)

    if not scenarios:
        click.echo("Error: No scenario selected. Use --all, --scenario or --scenario-file.", err=True)
        sys.exit(1)

    out = output_dir or Path(config.replay_output_dir)
    stamp = generated_at or datetime.now(timezone.utc).isoformat()

    results = []
    for scenario in scenarios:
        click.echo(f"Replaying {scenario.name} for {scenario.days} days...")
        result = ReplayEngine(scenario, generated_at=stamp).run()
        results.append(result)

        if output_format in ("json", "both"):
            click.echo(f"  - {write_json(result, out)}")
        if output_format in ("md", "both"):
            click.echo(f"  - {write_markdown(result, out)}")

    index_path = write_index(results, out, stamp)
    click.echo(f"Wrote {len(results)} run(s). Summary: {index_path}")


@main.command("list-scenarios")
def list_scenarios():
    """List available preset scenarios."""
    for name, scenario in PRESETS.items():
        click.echo(f"{name}:")
        click.echo(f"  Days: {scenario.days}")
        click.echo(f"  Schedule: {scenario.schedule}")
        click.echo(f"  Adherence: {scenario.adherence * 100:.0f}%")
        click.echo(f"  Base dose: {scenario.base_dose} ({scenario.substance})")
        click.echo(f"  Variability: +/-{scenario.variability * 100:.0f}%")
        click.echo(f"  Sensitivity: {scenario.sensitivity}/5")
        if scenario.escalation_per_dose:
            click.echo(f"  Escalation: +{scenario.escalation_per_dose * 100:.1f}%/dose")
        click.echo()
