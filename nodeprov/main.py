"""
nodeprov — CLI entrypoint.

Usage:
    python -m nodeprov.main --help
    nodeprov provision control-plane
    nodeprov provision worker --join-command "kubeadm join ..."
    nodeprov plan control-plane
    nodeprov facts
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from nodeprov import __version__
from nodeprov.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="nodeprov")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to config.yml (default: $NODEPROV_CONFIG or /etc/nodeprov/config.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """nodeprov — idempotent Kubernetes node provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("NODEPROV_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("NODEPROV_LOG_FILE"),
        log_file_level=os.environ.get("NODEPROV_LOG_FILE_LEVEL"),
    )

    from nodeprov.core.config.loader import ConfigError, find_config_file

    try:
        ctx.obj["config_path"] = find_config_file(Path(config_path) if config_path else None)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def facts(ctx: click.Context, as_json: bool) -> None:
    """Show what the probe currently sees on this host."""
    from nodeprov.core.probe.host import HostProbe
    from nodeprov.core.use_cases.provision import default_runner

    probe = ctx.obj.get("probe") or HostProbe(default_runner())
    snapshot = probe.snapshot()

    if as_json:
        click.echo(json.dumps([f.model_dump(mode="json") for f in snapshot], indent=2))
        return

    click.secho("\n🔍 Host facts", fg="cyan", bold=True)
    click.echo()
    width = max(len(f.key) for f in snapshot)
    for fact in snapshot:
        if fact.error:
            click.secho(f"   {fact.key:<{width}}  ", nl=False)
            click.secho(f"error: {fact.error}", fg="red")
            continue
        value = fact.value
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "—"
        elif value is None:
            value = "—"
        click.echo(f"   {fact.key:<{width}}  {value}")
    click.echo()


@cli.command()
@click.pass_context
def nodes(ctx: click.Context) -> None:
    """List cluster nodes (control-plane only)."""
    from nodeprov.core.probe.host import HostProbe
    from nodeprov.core.use_cases.provision import default_runner

    probe = ctx.obj.get("probe") or HostProbe(default_runner())
    if not probe.cluster_initialized():
        click.secho("❌ This host is not an initialized control-plane node.", fg="red")
        sys.exit(1)

    result = probe.cluster_nodes()
    if not result.ok:
        click.secho(f"❌ {result.failure_detail()}", fg="red")
        sys.exit(1)
    click.echo(result.stdout.rstrip())


# ── Register sub-command groups from nodeprov/ui/cli/ ──────────────

from nodeprov.ui.cli.provision import plan, provision

cli.add_command(provision)
cli.add_command(plan)


if __name__ == "__main__":
    cli()
