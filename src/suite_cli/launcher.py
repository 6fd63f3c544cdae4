from __future__ import annotations

import logging
import os
import shutil
import stat
import subprocess
from pathlib import Path
from typing import Callable, Mapping

import click

from .config import LaunchOptions, SuiteSettings
from .errors import ContainerAlreadyExists, HostPathError, ImageTarballMissing, NoContainerToResume
from .host_checks import check_system_requirements
from .runtime import ContainerRuntime


LOGGER = logging.getLogger("suite_cli.launcher")

HOST_DIR_MODE = 0o777
DOCKER_SOCKET_PATH = "/var/run/docker.sock"
DBUS_SYSTEM_SOCKET_PATH = "/var/run/dbus/system_bus_socket"
X11_SOCKET_DIR = "/tmp/.X11-unix/"
CONTAINER_XAUTHORITY_PATH = "/home/hailo/.Xauthority"
DKMS_DIR = Path("/var/lib/dkms")
VIDEO_GROUP_ID = "44"
NVIDIA_VGA_MARKER = "VGA compatible controller: NVIDIA"
NVIDIA_CONTAINER_PACKAGES = ("nvidia-docker", "nvidia-container-toolkit")
HOST_PASSTHROUGH_VOLUMES = (
    "/dev:/dev",
    "/lib/firmware:/lib/firmware",
    "/lib/modules:/lib/modules",
    "/lib/udev/rules.d:/lib/udev/rules.d",
    "/usr/src:/usr/src",
)


def prepare_host_dirs(settings: SuiteSettings) -> None:
    for path in (settings.shared_path, settings.workspace_path):
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise HostPathError("create", str(path), exc) from exc
        if stat.S_IMODE(path.stat().st_mode) == HOST_DIR_MODE:
            continue
        try:
            path.chmod(HOST_DIR_MODE)
        except OSError as exc:
            raise HostPathError("change permissions of", str(path), exc) from exc


def service_env(options: LaunchOptions, *, default_logger_path: str | None) -> dict[str, str]:
    if not options.enable_service:
        return {}
    env = {"hailort_enable_service": "yes"}
    if options.enable_monitor:
        env["HAILO_MONITOR"] = "1"
    logger_path = options.logger_path or default_logger_path
    if logger_path:
        env["HAILORT_LOGGER_PATH"] = logger_path
    return env


def build_resume_env(options: LaunchOptions, display: str) -> dict[str, str]:
    # DISPLAY may change between runs, e.g. after a reboot.
    env = {"DISPLAY": display}
    env.update(service_env(options, default_logger_path=None))
    return env


def _command_output(cmd: list[str]) -> str:
    if shutil.which(cmd[0]) is None:
        return ""
    result = subprocess.run(
        cmd,
        check=False,
        capture_output=True,
        text=True,
        env={**os.environ, "LC_ALL": "C"},
    )
    return result.stdout if result.returncode == 0 else ""


def nvidia_gpu_passthrough_available() -> bool:
    has_gpu = NVIDIA_VGA_MARKER in _command_output(["lspci"])
    packages = _command_output(["dpkg", "-l"])
    has_toolkit = any(package in packages for package in NVIDIA_CONTAINER_PACKAGES)
    LOGGER.debug("NVIDIA GPU present=%s container toolkit present=%s", has_gpu, has_toolkit)
    return has_gpu and has_toolkit


def build_run_args(
    settings: SuiteSettings,
    options: LaunchOptions,
    env: Mapping[str, str],
    *,
    gpu_passthrough: bool,
    dkms: bool,
) -> list[str]:
    args = [
        "--privileged",
        "--net=host",
        "-e",
        f"DISPLAY={env.get('DISPLAY', '')}",
        "-e",
        f"XDG_RUNTIME_DIR={env.get('XDG_RUNTIME_DIR', '')}",
        "--device=/dev/dri:/dev/dri",
        "--ipc=host",
        "--group-add",
        VIDEO_GROUP_ID,
    ]
    for volume in HOST_PASSTHROUGH_VOLUMES:
        args.extend(["-v", volume])
    args.extend(
        [
            "-v",
            f"{settings.xauth_file}:{CONTAINER_XAUTHORITY_PATH}",
            "-v",
            f"{X11_SOCKET_DIR}:{X11_SOCKET_DIR}",
            "--name",
            settings.container_name,
            "-v",
            f"{DOCKER_SOCKET_PATH}:{DOCKER_SOCKET_PATH}",
            "-v",
            "/etc/machine-id:/etc/machine-id:ro",
            "-v",
            f"{DBUS_SYSTEM_SOCKET_PATH}:{DBUS_SYSTEM_SOCKET_PATH}",
            "-v",
            f"{settings.shared_path}/:/local/{settings.shared_dir}:rw",
            "--mount",
            f"type=bind,src={settings.workspace_path}/,dst=/local/workspace/{settings.workspace_dir}",
            "-v",
            "/etc/timezone:/etc/timezone:ro",
            "-v",
            "/etc/localtime:/etc/localtime:ro",
        ]
    )
    if dkms:
        args.extend(["-v", f"{DKMS_DIR}:{DKMS_DIR}"])
    if gpu_passthrough:
        args.extend(["--gpus", "all"])
    for key, value in service_env(options, default_logger_path=settings.default_logger_path).items():
        args.extend(["-e", f"{key}={value}"])
    return args


class Launcher:
    def __init__(
        self,
        settings: SuiteSettings,
        options: LaunchOptions,
        runtime: ContainerRuntime,
        env: Mapping[str, str] | None = None,
        *,
        check_requirements: Callable[[SuiteSettings], object] | None = None,
        gpu_probe: Callable[[], bool] | None = None,
    ) -> None:
        self.settings = settings
        self.options = options
        self.runtime = runtime
        self.env = dict(os.environ if env is None else env)
        self.check_requirements = check_requirements or check_system_requirements
        self.gpu_probe = gpu_probe or nvidia_gpu_passthrough_available

    def dispatch(self) -> int:
        self.runtime.ensure_available()
        count = self.runtime.container_count(self.settings.container_name)
        LOGGER.info("Found %d container(s) named %s", count, self.settings.container_name)
        if self.options.resume:
            return self.resume(count)
        if self.options.override:
            return self.override(count)
        return self.run_new(count)

    def run_new(self, count: int) -> int:
        if count >= 1:
            raise ContainerAlreadyExists(self.settings.container_name)
        if not self.runtime.image_exists(self.settings.image_name):
            self.load_image_from_tarball()
        click.secho("Starting new container", fg="cyan", bold=True)
        args = build_run_args(
            self.settings,
            self.options,
            self.env,
            gpu_passthrough=self.gpu_probe(),
            dkms=DKMS_DIR.is_dir(),
        )
        return self.runtime.run(args, self.settings.image_name)

    def load_image_from_tarball(self) -> None:
        tarball = self.settings.tarball_path
        if not tarball.is_file():
            raise ImageTarballMissing(str(tarball))
        click.secho(f"Loading Docker image: {tarball}", fg="cyan", bold=True)
        self.check_requirements(self.settings)
        self.runtime.load_image(tarball)

    def override(self, count: int) -> int:
        name = self.settings.container_name
        if count >= 1:
            click.secho("Overriding old container", fg="cyan", bold=True)
            self.runtime.stop(name)
            self.runtime.remove(name)
            count = self.runtime.container_count(name)
        return self.run_new(count)

    def resume(self, count: int) -> int:
        name = self.settings.container_name
        if count < 1:
            raise NoContainerToResume(name)
        click.secho("Resuming an old container", fg="cyan", bold=True)
        self.runtime.start(name)
        return self.runtime.exec_shell(name, build_resume_env(self.options, self.env.get("DISPLAY", "")))
