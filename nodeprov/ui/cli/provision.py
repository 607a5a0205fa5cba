"""
CLI commands for provisioning a node.

    nodeprov provision control-plane
    nodeprov provision worker --join-command "kubeadm join ..."
    nodeprov plan worker --join-command "kubeadm join ..."
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from typing import Any

import click

from nodeprov.core.engine.report import RunReport

_STATUS_COLORS = {
    "applied": "green",
    "skipped": "bright_black",
    "planned": "cyan",
    "failed": "red",
    "aborted": "yellow",
}


# ── Shared options ─────────────────────────────────────────────────


def _common_options(func: Callable) -> Callable:
    """Options accepted by every role."""
    options = [
        click.option("--k8s-version", envvar="NODEPROV_K8S_VERSION", default=None,
                     help="Exact kubelet/kubeadm package version (e.g. 1.29.2-1.1)."),
        click.option("--node-ip", envvar="NODEPROV_NODE_IP", default=None,
                     help="Node IP address (default: first address of `hostname -I`)."),
        click.option("--allow-unsupported-os", is_flag=True, default=False,
                     help="Continue on non-Ubuntu hosts."),
        click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _run_options(func: Callable) -> Callable:
    """Options that only make sense when executing."""
    options = [
        click.option("--continue-on-failure", is_flag=True, envvar="NODEPROV_CONTINUE_ON_FAILURE",
                     help="Keep going after a failed step and report every failure."),
        click.option("--dry-run", is_flag=True, help="Check every step, change nothing."),
        click.option("--skip-preflight", is_flag=True, help="Skip root and OS checks."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _control_plane_options(func: Callable) -> Callable:
    options = [
        click.option("--pod-cidr", envvar="NODEPROV_POD_CIDR", default=None,
                     help="Pod network CIDR (default: 10.244.0.0/16)."),
        click.option("--addon-url", envvar="NODEPROV_ADDON_URL", default=None,
                     help="Network add-on manifest URL."),
        click.option("--join-command-path", envvar="NODEPROV_JOIN_COMMAND_PATH", default=None,
                     help="Where to write the worker join command."),
        click.option("--init-log-path", envvar="NODEPROV_INIT_LOG_PATH", default=None,
                     help="Where to write kubeadm init output."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _worker_options(func: Callable) -> Callable:
    options = [
        click.option("--join-command", envvar="NODEPROV_JOIN_COMMAND", default=None,
                     help="Full `kubeadm join ...` line printed by the control plane."),
        click.option("--endpoint", default=None, help="API server host:port."),
        click.option("--token", envvar="NODEPROV_JOIN_TOKEN", default=None,
                     help="Bootstrap token."),
        click.option("--ca-cert-hash", default=None, help="sha256:<hex> CA certificate hash."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _overrides(**opts: Any) -> dict[str, Any]:
    """Map CLI option values onto ProvisionConfig fields."""
    overrides: dict[str, Any] = {
        "kubernetes_version": opts.get("k8s_version"),
        "node_ip": opts.get("node_ip"),
        "pod_cidr": opts.get("pod_cidr"),
        "network_addon_url": opts.get("addon_url"),
        "join_command_path": opts.get("join_command_path"),
        "init_log_path": opts.get("init_log_path"),
    }
    if opts.get("allow_unsupported_os"):
        overrides["allow_unsupported_os"] = True
    if opts.get("continue_on_failure"):
        overrides["halt_on_failure"] = False

    join_command = opts.get("join_command")
    parts = {
        "endpoint": opts.get("endpoint"),
        "token": opts.get("token"),
        "ca_cert_hash": opts.get("ca_cert_hash"),
    }
    if join_command:
        overrides["join"] = join_command
    elif any(parts.values()):
        missing = [f"--{k.replace('_', '-')}" for k, v in parts.items() if not v]
        if missing:
            raise click.UsageError(
                f"Structured join credential is incomplete; missing {', '.join(missing)}"
            )
        overrides["join"] = parts
    return overrides


# ── Rendering ──────────────────────────────────────────────────────


def render_report(report: RunReport, verbose: bool = False) -> None:
    """Colourised version of ``RunReport.summary_entries()``."""
    mode_label = "[dry-run] " if report.dry_run else ""
    click.secho(f"\n⚡ {mode_label}provision {report.role} — {report.run_id}", fg="cyan", bold=True)
    click.echo()

    for kind, text in report.summary_entries(verbose=verbose):
        if kind in _STATUS_COLORS:
            click.secho(f"   {text}", fg=_STATUS_COLORS[kind])
        elif kind == "total":
            click.secho(f"   {text}", fg="green" if report.ok else "red", bold=True)
        elif kind == "failure":
            click.secho(f"   {text}", fg="red")
        else:
            click.echo(f"   {text}" if text else "")


def _execute(ctx: click.Context, role: str, as_json: bool, dry_run: bool,
             skip_preflight: bool, overrides: dict[str, Any]) -> None:
    from nodeprov.core.use_cases.provision import provision as run_provision

    result = run_provision(
        role,
        config_path=ctx.obj.get("config_path"),
        overrides=overrides,
        dry_run=dry_run,
        skip_preflight=skip_preflight,
        probe=ctx.obj.get("probe"),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    report = result.report
    if result.error or report is None:
        click.secho(f"❌ {result.error_kind} error: {result.error}", fg="red")
        sys.exit(1)

    render_report(report, verbose=ctx.obj.get("verbose", False))

    if result.join_command_path:
        click.echo()
        click.secho(f"   🔑 Join command: {result.join_command_path}", fg="cyan")
        click.echo("      Copy it to each worker, then run:")
        click.echo(
            "      sudo nodeprov provision worker --join-command \"$(cat join-command.txt)\""
        )

    click.echo()
    if not result.ok:
        sys.exit(1)


# ── Commands ───────────────────────────────────────────────────────


@click.group()
def provision() -> None:
    """Provision this host as a Kubernetes node."""


@provision.command("control-plane")
@_common_options
@_control_plane_options
@_run_options
@click.pass_context
def provision_control_plane(ctx: click.Context, as_json: bool, dry_run: bool,
                            skip_preflight: bool, **opts: Any) -> None:
    """Set up a control-plane node and write a worker join command.

    Examples:

        sudo nodeprov provision control-plane

        sudo nodeprov provision control-plane --pod-cidr 10.10.0.0/16 --dry-run
    """
    _execute(ctx, "control-plane", as_json, dry_run, skip_preflight, _overrides(**opts))


@provision.command("worker")
@_common_options
@_worker_options
@_run_options
@click.pass_context
def provision_worker(ctx: click.Context, as_json: bool, dry_run: bool,
                     skip_preflight: bool, **opts: Any) -> None:
    """Set up a worker node and join it to a cluster.

    Examples:

        sudo nodeprov provision worker --join-command "$(cat join-command.txt)"

        sudo nodeprov provision worker --endpoint 10.0.0.5:6443 \\
            --token abcdef.0123456789abcdef --ca-cert-hash sha256:...
    """
    _execute(ctx, "worker", as_json, dry_run, skip_preflight, _overrides(**opts))


@click.command("plan")
@click.argument("role", type=click.Choice(["control-plane", "worker"]))
@_common_options
@_control_plane_options
@_worker_options
@click.pass_context
def plan(ctx: click.Context, role: str, as_json: bool, **opts: Any) -> None:
    """Show the resolved step order for ROLE without changing anything."""
    from nodeprov.core.config.loader import ConfigError, load_config
    from nodeprov.core.engine.plan import build_plan
    from nodeprov.core.errors import PlanInvalid, PreflightError
    from nodeprov.core.probe.host import HostProbe
    from nodeprov.core.use_cases.provision import default_runner

    try:
        config = load_config(ctx.obj.get("config_path"), _overrides(**opts))
        probe = ctx.obj.get("probe") or HostProbe(default_runner())
        built = build_plan(role, config, probe)
    except (ConfigError, PlanInvalid, PreflightError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(built.to_dict(), indent=2))
        return

    click.secho(f"\n📋 {role} plan — {len(built)} steps", fg="cyan", bold=True)
    click.echo()
    for i, step in enumerate(built.order, start=1):
        click.secho(f"   {i:2d}. {step.id}", bold=True, nl=False)
        click.echo(f"  {step.description}")
        if step.depends_on and ctx.obj.get("verbose"):
            click.echo(f"       after: {', '.join(step.depends_on)}")
    click.echo()
