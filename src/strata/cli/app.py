# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from strata.config.defaults import ROOT_WORKSPACE
from strata.config.loader import load_instance, load_operator_config
from strata.config.models import PlatformInstance
from strata.errors import StrataError
from strata.inventory.assemblers import exposure_values
from strata.kube.client import (
    KubernetesResourceClient,
    KubernetesSecretReader,
    load_host_configuration,
)
from strata.logging.log import init_logging
from strata.manifest.materializer import NO_OP, materialize_file
from strata.manifest.template import TemplateRenderer
from strata.observers.console import ConsoleObserver
from strata.observers.dispatcher import EventBus
from strata.observers.jsonfile import JsonFileObserver
from strata.observers.logger import LoggerObserver
from strata.provision.tree import walk
from strata.subroutines.base import OperatorContext, process_all
from strata.subroutines.registry import SUBROUTINES, build_subroutines


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Strata workspace provisioning CLI")


def parse_set_flags(items: Optional[List[str]]) -> Dict[str, str]:
    """``["a=1", "b=x=y"]`` -> ``{"a": "1", "b": "x=y"}``."""
    values: Dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {item!r}")
        values[key.strip()] = value
    return values


def offline_values(
    instance: Optional[PlatformInstance],
    values_file: Optional[Path],
    overrides: Dict[str, str],
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if instance is not None:
        values.update(instance.spec.values)
        values.update(exposure_values(instance))
        values["helmReleaseNamespace"] = instance.namespace
    if values_file is not None:
        values.update(yaml.safe_load(values_file.read_text()) or {})
    values.update(overrides)
    return values


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def render(
    directory: Path = typer.Argument(..., exists=True, file_okay=False, help="Manifest source tree"),
    instance_file: Optional[Path] = typer.Option(None, "--instance", help="Instance YAML for values and bindings"),
    values_file: Optional[Path] = typer.Option(None, "--values", help="YAML file with flat template values"),
    set_values: Optional[List[str]] = typer.Option(None, "--set", help="KEY=VALUE template value"),
    root: str = typer.Option(ROOT_WORKSPACE, "--root", help="Workspace path of the tree root"),
):
    """Render every manifest of a source tree offline and print the documents."""
    instance = load_instance(instance_file) if instance_file else None
    values = offline_values(instance, values_file, parse_set_flags(set_values))
    bindings = instance.spec.kcp.extra_default_api_bindings if instance else []
    renderer = TemplateRenderer()

    failed = 0
    for node in walk(directory, root):
        for path in node.manifests:
            try:
                obj = materialize_file(
                    path, values, workspace_path=node.path, bindings=bindings, renderer=renderer,
                )
            except StrataError as e:
                failed += 1
                typer.secho(f"# {node.path}: {path.name}: {e}", fg=typer.colors.RED, err=True)
                continue
            if obj is NO_OP:
                typer.echo(f"# workspace: {node.path} source: {path.name} (empty)")
                continue
            typer.echo(f"# workspace: {node.path} source: {path.name}")
            typer.echo(yaml.safe_dump(obj.to_dict(), sort_keys=False).rstrip())
            typer.echo("---")

    if failed:
        raise typer.Exit(code=1)


@app.command()
def provision(
    config: Path = typer.Argument(..., exists=True, dir_okay=False, help="Operator configuration YAML"),
    instance_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Platform instance YAML"),
    only: Optional[str] = typer.Option(
        None,
        "--only",
        help=f"Subroutines to run: {','.join(SUBROUTINES)} (default: all)",
    ),
    context: Optional[str] = typer.Option(None, "--context", help="kube context of the hosting cluster"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Run the provisioning subroutines once against a live cluster."""
    cfg = load_operator_config(config)
    if verbose:
        cfg.verbose_diff = True
    instance = load_instance(instance_file)

    logger, run_id, log_path = init_logging(verbose=verbose, instance=instance.name)

    typer.echo("")
    typer.secho("Strata Provisioning Started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    observers = [LoggerObserver(logger), JsonFileObserver(log_path.with_suffix(".events.jsonl"), instance=instance.name)]
    if verbose:
        observers.append(ConsoleObserver())
    bus = EventBus(observers, run_id=run_id)

    try:
        host = load_host_configuration(context)
    except StrataError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    ctx = OperatorContext(
        config=cfg,
        secrets=KubernetesSecretReader(host),
        infra=KubernetesResourceClient(host),
        bus=bus,
    )
    selected = [s.strip() for s in only.split(",") if s.strip()] if only else None
    try:
        subroutines = build_subroutines(ctx, selected)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    result = process_all(subroutines, instance, bus)

    for ws in instance.status.kcp_workspaces:
        typer.echo(f"  workspace {ws.name}: {ws.phase}")

    if result.error is not None:
        color = typer.colors.YELLOW if result.requeue_after else typer.colors.RED
        typer.secho(f"Failed: {result.error}", fg=color)
    if result.requeue_after:
        typer.echo(f"Requeue after {result.requeue_after:g}s")
        raise typer.Exit(code=2)
    if result.error is not None:
        raise typer.Exit(code=1)
    typer.secho("Provisioning complete", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
