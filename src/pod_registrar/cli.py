"""
Command line interface for the pod registrar.
"""

import asyncio
import builtins
import signal
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .config import ControllerConfig, load_config
from .controller import RegistrarController
from .errors import ConfigurationError
from .logging import setup_logging

console = Console()


def _load(config_path: Path | None, overrides: builtins.dict[str, Any]) -> ControllerConfig:
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    if overrides.get("namespace") is not None:
        config.kubernetes.namespace = overrides["namespace"]
    if overrides.get("log_level"):
        config.logging.level = overrides["log_level"].upper()

    try:
        config.validate()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


def _flatten(data: builtins.dict[str, Any], prefix: str = "") -> builtins.list[tuple[str, str]]:
    rows = []
    for key, value in data.items():
        name = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            rows.extend(_flatten(value, name))
        else:
            rows.append((name, ", ".join(value) if isinstance(value, list) else str(value)))
    return rows


async def _run_controller(config: ControllerConfig) -> None:
    controller = RegistrarController(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(controller.stop()))
    await controller.run()


@click.group()
def main():
    """Keep a service registry in sync with Kubernetes pods."""
    pass


@main.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file",
)
@click.option("--namespace", default=None, help="Namespace to watch (default: all)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Override the configured log level",
)
def run(config_path: Path | None, namespace: str | None, log_level: str | None):
    """Run the registrar controller."""
    config = _load(config_path, {"namespace": namespace, "log_level": log_level})
    logger = setup_logging(config.logging)
    logger.info("Configuration loaded", extra={"namespace": config.kubernetes.namespace or "*"})
    asyncio.run(_run_controller(config))


@main.command("show-config")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file",
)
def show_config(config_path: Path | None):
    """Print the resolved configuration."""
    config = _load(config_path, {})

    table = Table(title="Resolved configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for name, value in _flatten(config.to_dict()):
        table.add_row(name, value)

    console.print(table)
