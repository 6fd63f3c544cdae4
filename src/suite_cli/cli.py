from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

import click

from .config import LaunchOptions, load_settings
from .launcher import Launcher, prepare_host_dirs
from .runtime import DockerRuntime
from .xauth import allow_local_x_clients, prepare_xauth


LOG_LEVEL_ENV = "SUITE_CLI_LOG_LEVEL"
LOG_LEVEL_CHOICES = ("debug", "info", "warning", "error")
DEFAULT_LOG_LEVEL = "warning"

LOGGER = logging.getLogger("suite_cli")
LOGGER.addHandler(logging.NullHandler())

HELP = """Run the Hailo AI Software Suite Docker image.

The default mode creates a new container. If one already exists, use
--resume or --override.
"""


def _normalize_log_level(value: Any) -> str:
    normalized = str(value or "").strip().lower()
    if normalized in LOG_LEVEL_CHOICES:
        return normalized
    return DEFAULT_LOG_LEVEL


def _configure_logging(level: str) -> None:
    normalized = _normalize_log_level(level)
    handler = logging.StreamHandler(sys.__stderr__)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    LOGGER.handlers.clear()
    LOGGER.addHandler(handler)
    LOGGER.setLevel(getattr(logging, normalized.upper(), logging.WARNING))
    LOGGER.propagate = False


@click.command(help=HELP, context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--resume", is_flag=True, default=False, help="Resume the old container")
@click.option("--override", is_flag=True, default=False, help="Delete the existing container and start a new one")
@click.option("--hailort-enable-service", "enable_service", is_flag=True, default=False, help="Run HailoRT service")
@click.option(
    "--service-enable-monitor",
    "enable_monitor",
    is_flag=True,
    default=False,
    help="Enable the HailoRT monitor (HailoRT service option)",
)
@click.option(
    "--service-hailort-logger-path",
    "logger_path",
    default=None,
    metavar="PATH",
    help="HailoRT logger path, set inside the docker container (HailoRT service option)",
)
@click.option(
    "--config-file",
    default=None,
    type=click.Path(dir_okay=False),
    help="TOML file overriding launcher settings (defaults to $SUITE_CLI_CONFIG).",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(LOG_LEVEL_CHOICES, case_sensitive=False),
    help="Launcher logging verbosity. Defaults to $SUITE_CLI_LOG_LEVEL, else warning.",
)
def main(
    resume: bool,
    override: bool,
    enable_service: bool,
    enable_monitor: bool,
    logger_path: str | None,
    config_file: str | None,
    log_level: str | None,
) -> None:
    _configure_logging(log_level or os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL))
    cwd = Path.cwd().resolve()
    settings = load_settings(config_file, cwd)
    options = LaunchOptions(
        resume=resume,
        override=override,
        enable_service=enable_service,
        enable_monitor=enable_monitor,
        logger_path=(logger_path or "").strip() or None,
    )
    LOGGER.info(
        "Launching container=%s image=%s resume=%s override=%s service=%s",
        settings.container_name,
        settings.image_name,
        options.resume,
        options.override,
        options.enable_service,
    )

    prepare_host_dirs(settings)
    allow_local_x_clients()
    prepare_xauth(settings.xauth_file, os.environ.get("DISPLAY", ""))

    runtime = DockerRuntime(user=os.environ.get("USER", ""))
    exit_code = Launcher(settings, options, runtime).dispatch()
    if exit_code:
        click.get_current_context().exit(exit_code)


if __name__ == "__main__":
    main()
