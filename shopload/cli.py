"""
shop-load: load testing CLI for the coin shop service

Drives the auth -> info -> sendCoin -> buy flow at a constant arrival rate
and gates the run on error-rate and latency thresholds.

Usage:
    # Quick sanity check
    shop-load run --profile smoke

    # The reference load: 250 flows/s for 100s
    shop-load run --profile load --url http://shop:8080

    # Custom shape and thresholds
    shop-load run --rate 100 --duration 2m --threshold "http_req_duration=p(95)<200"

    # Export the summary for CI
    shop-load run --profile load --summary-export result.json

    # List available profiles
    shop-load list profiles
"""

import logging
import os
import sys
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config import (
    Config,
    DEFAULT_PROFILES,
    apply_load_env_overrides,
    get_scenario_info,
    list_profiles,
    list_scenarios,
    load_config,
)
from .output import (
    RunMetadata,
    RunOutput,
    export_summary,
    generate_run_id,
    print_summary,
    save_results,
)
from .runners import RunnerConfig, ScenarioRunner
from .thresholds import parse_threshold_option, parse_thresholds

# Three-state exit codes so CI can tell "test failed" from "tool crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_CONFIG_ERROR = 2


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(EXIT_CONFIG_ERROR)


@click.group()
@click.option("--config", "-c", "config_path", help="Path to config file (shop-load.yaml)")
@click.option("--url", "-u", help="Shop server URL (overrides config)")
@click.option("--quiet", "-q", is_flag=True, help="Reduce output verbosity")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=lambda: os.environ.get("SHOPLOAD_LOG_LEVEL", "WARNING"),
    show_default="WARNING",
    help="Diagnostic log level",
)
@click.pass_context
def cli(ctx, config_path: Optional[str], url: Optional[str], quiet: bool, log_level: str):
    """shop-load: load testing CLI for the coin shop service"""
    ctx.ensure_object(dict)
    setup_logging(log_level)

    try:
        config = load_config(config_path)
    except ValueError as e:
        _fail(str(e))

    # Apply URL override
    if url:
        config.target.url = url.rstrip("/")

    ctx.obj["config"] = config
    ctx.obj["quiet"] = quiet


@cli.command()
@click.option("--profile", "-p", help="Load profile to run (smoke, load, stress)")
@click.option("--rate", type=float, help="Iterations started per time unit")
@click.option("--time-unit", help="Time unit for --rate (e.g. 1s, 1m)")
@click.option("--duration", "-d", help="How long to keep starting iterations (e.g. 100s, 2m)")
@click.option("--preallocated", type=int, help="Workers started before the run")
@click.option("--max-workers", type=int, help="Upper bound for the worker pool")
@click.option("--graceful-stop", help="How long in-flight iterations may finish after the run")
@click.option(
    "--threshold", "-t", "threshold_opts", multiple=True,
    help="METRIC=PREDICATE, e.g. http_req_failed=rate<0.01 (replaces configured thresholds)",
)
@click.option(
    "--abort-on-auth-failure/--continue-on-auth-failure", default=None,
    help="Skip the remaining steps of an iteration when auth returns no token",
)
@click.option("--output-dir", "-o", help="Output directory for results")
@click.option("--format", "output_format", type=click.Choice(["json", "markdown", "both"]),
              help="Result file format")
@click.option("--summary-export", type=click.Path(dir_okay=False), help="Also write the JSON summary here")
@click.option("--no-save", is_flag=True, help="Don't save results to files")
@click.pass_context
def run(
    ctx,
    profile: Optional[str],
    rate: Optional[float],
    time_unit: Optional[str],
    duration: Optional[str],
    preallocated: Optional[int],
    max_workers: Optional[int],
    graceful_stop: Optional[str],
    threshold_opts: tuple,
    abort_on_auth_failure: Optional[bool],
    output_dir: Optional[str],
    output_format: Optional[str],
    summary_export: Optional[str],
    no_save: bool,
):
    """Run the shop flow load test."""
    config: Config = ctx.obj["config"]
    quiet = ctx.obj["quiet"]

    load = config.load
    if profile:
        profile_config = DEFAULT_PROFILES.get(profile)
        if not profile_config:
            click.echo(f"Error: Unknown profile '{profile}'", err=True)
            click.echo(f"Available profiles: {', '.join(list_profiles())}", err=True)
            sys.exit(EXIT_CONFIG_ERROR)
        load = profile_config.load

    # Apply overrides
    overrides = {
        "arrival_rate": rate,
        "time_unit": time_unit,
        "duration": duration,
        "preallocated_workers": preallocated,
        "max_workers": max_workers,
        "graceful_stop": graceful_stop,
    }
    try:
        if profile:
            load = apply_load_env_overrides(load)
        load = replace(load, **{k: v for k, v in overrides.items() if v is not None})
        if threshold_opts:
            thresholds = [parse_threshold_option(t) for t in threshold_opts]
        else:
            thresholds = parse_thresholds(config.thresholds)
    except ValueError as e:
        _fail(str(e))

    flow = config.flow
    if abort_on_auth_failure is not None:
        flow = replace(flow, abort_on_auth_failure=abort_on_auth_failure)

    result_output_dir = output_dir or config.output.directory
    result_format = output_format or config.output.format

    # Print banner
    if not quiet:
        click.echo()
        click.echo("=" * 70)
        click.echo("SHOP LOAD TEST")
        click.echo("=" * 70)
        click.echo(f"Target:     {config.target.url}")
        click.echo(f"Profile:    {profile or 'custom'}")
        click.echo(f"Rate:       {load.arrival_rate:g}/{load.time_unit:g}s for {load.duration:g}s")
        click.echo(f"Workers:    {load.preallocated_workers} -> {load.max_workers}")
        click.echo(f"Thresholds: {'; '.join(str(t) for t in thresholds) or 'none'}")
        click.echo("=" * 70)

    run_id = generate_run_id()
    start_time = datetime.now()

    run_output = RunOutput(
        metadata=RunMetadata(
            run_id=run_id,
            profile=profile,
            start_time=start_time.isoformat(),
            url=config.target.url,
            load=asdict(load),
            config_path=config.config_path,
        ),
    )

    runner = ScenarioRunner(
        "shop-flow",
        RunnerConfig(
            target=config.target,
            load=load,
            flow=flow,
            thresholds=thresholds,
            quiet=quiet,
        ),
    )
    result = runner.run()
    run_output.add(result)
    if result.executor.get("stopped_early"):
        click.echo("\n\nInterrupted by user, reporting partial results")

    # Finalize
    end_time = datetime.now()
    run_output.metadata.end_time = end_time.isoformat()
    run_output.metadata.duration_secs = (end_time - start_time).total_seconds()

    print_summary(run_output)

    # Save results
    if not no_save:
        summary_path = save_results(run_output, result_output_dir, result_format)
        click.echo(f"\nResults saved to: {summary_path}")
    if summary_export:
        click.echo(f"Summary exported to: {export_summary(run_output, summary_export)}")

    sys.exit(EXIT_PASS if run_output.success else EXIT_THRESHOLD_BREACH)


@cli.command("list")
@click.argument("what", type=click.Choice(["scenarios", "profiles"]))
@click.pass_context
def list_items(ctx, what: str):
    """List available scenarios or profiles."""
    if what == "scenarios":
        click.echo("\nAvailable Scenarios:")
        click.echo("-" * 60)
        for name in list_scenarios():
            info = get_scenario_info(name)
            click.echo(f"  {name:<20} {info['description']}")

    elif what == "profiles":
        click.echo("\nAvailable Profiles:")
        click.echo("-" * 60)
        for name, profile in DEFAULT_PROFILES.items():
            ld = profile.load
            click.echo(f"  {name:<12} {profile.description}")
            click.echo(
                f"               {ld.arrival_rate:g}/{ld.time_unit:g}s for {ld.duration:g}s, "
                f"workers {ld.preallocated_workers} -> {ld.max_workers}"
            )

    click.echo()


@cli.command()
@click.pass_context
def version(ctx):
    """Show version information."""
    click.echo(f"shop-load {__version__}")
    click.echo("Load testing CLI for the coin shop service")


SAMPLE_CONFIG = """\
# shop-load configuration

target:
  url: http://localhost:8080
  request_timeout: 10
  retries: 0

load:
  arrival_rate: 250        # iterations started per time_unit
  time_unit: 1s
  duration: 100s           # be careful, the users' coins can run out
  preallocated_workers: 300
  max_workers: 100000
  graceful_stop: 30s

thresholds:
  http_req_failed: ["rate<0.0001"]
  http_req_duration: ["med<50"]

flow:
  password: testpassword
  username_template: "testuser{id}"
  recipient: testuser
  amount: 1
  item: pen
  abort_on_auth_failure: false

output:
  directory: ./results
  format: json  # json, markdown, or both
"""


@cli.command()
@click.pass_context
def init(ctx):
    """Create a sample configuration file."""
    output_path = Path.cwd() / "shop-load.yaml"
    if output_path.exists():
        if not click.confirm(f"{output_path} already exists. Overwrite?"):
            click.echo("Aborted.")
            return

    with open(output_path, "w") as f:
        f.write(SAMPLE_CONFIG)

    click.echo(f"Created {output_path}")
    click.echo("\nEdit this file to configure your tests, then run:")
    click.echo("  shop-load run --profile smoke")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
