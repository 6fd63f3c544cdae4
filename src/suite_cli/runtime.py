from __future__ import annotations

import abc
import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, Mapping

import click

from .errors import DockerCommandError, DockerNotInstalled, DockerPermissionDenied


LOGGER = logging.getLogger("suite_cli.runtime")

DOCKER_BINARY = "docker"
CONTAINER_SHELL = "/bin/bash"


class ContainerRuntime(abc.ABC):
    @abc.abstractmethod
    def ensure_available(self) -> None:
        """Raises when the runtime is not installed or the user cannot talk to it."""
        pass

    @abc.abstractmethod
    def container_count(self, name: str) -> int:
        """Returns how many containers (running or stopped) match the given name."""
        pass

    def exists(self, name: str) -> bool:
        return self.container_count(name) >= 1

    @abc.abstractmethod
    def image_exists(self, image: str) -> bool:
        """Returns True when the image is present in the local image store."""
        pass

    @abc.abstractmethod
    def load_image(self, tarball: Path) -> None:
        """Loads an image tarball into the local image store."""
        pass

    @abc.abstractmethod
    def run(self, args: Iterable[str], image: str) -> int:
        """Creates and attaches to a new interactive container.

        Returns the exit status of the session, which is the status of the
        last command the user ran in the container shell.
        """
        pass

    @abc.abstractmethod
    def start(self, name: str) -> None:
        pass

    @abc.abstractmethod
    def exec_shell(self, name: str, env: Mapping[str, str]) -> int:
        """Opens an interactive shell in a running container and returns its exit status."""
        pass

    @abc.abstractmethod
    def stop(self, name: str) -> None:
        pass

    @abc.abstractmethod
    def remove(self, name: str) -> None:
        pass


def _env_flags(env: Mapping[str, str]) -> list[str]:
    flags: list[str] = []
    for key, value in env.items():
        flags.extend(["-e", f"{key}={value}"])
    return flags


class DockerRuntime(ContainerRuntime):
    def __init__(self, binary: str = DOCKER_BINARY, user: str | None = None) -> None:
        self.binary = binary
        self.user = user if user is not None else os.environ.get("USER", "")

    def _cmd(self, *args: str) -> list[str]:
        return [self.binary, *args]

    def _run(self, cmd: list[str], *, quiet: bool = False) -> None:
        LOGGER.debug("Running %s", shlex.join(cmd))
        try:
            subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.DEVNULL if quiet else None,
            )
        except subprocess.CalledProcessError as exc:
            raise DockerCommandError(cmd, exc.returncode) from exc

    def _session(self, cmd: list[str]) -> int:
        LOGGER.debug("Attaching %s", shlex.join(cmd))
        returncode = subprocess.run(cmd, check=False).returncode
        LOGGER.debug("Session exited with %s", returncode)
        return returncode

    def _capture(self, cmd: list[str]) -> str:
        LOGGER.debug("Querying %s", shlex.join(cmd))
        result = subprocess.run(cmd, check=False, capture_output=True, text=True)
        if result.returncode != 0:
            LOGGER.debug("Query failed with %s: %s", result.returncode, result.stderr.strip())
            raise DockerCommandError(cmd, result.returncode)
        return result.stdout

    def ensure_available(self) -> None:
        if shutil.which(self.binary) is None:
            raise DockerNotInstalled()
        result = subprocess.run(
            self._cmd("images"),
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        if result.returncode != 0:
            raise DockerPermissionDenied(self.user)

    def container_count(self, name: str) -> int:
        output = self._capture(self._cmd("ps", "-a", "-q", "-f", f"name={name}"))
        return len([line for line in output.splitlines() if line.strip()])

    def image_exists(self, image: str) -> bool:
        result = subprocess.run(
            self._cmd("images", "-q", image),
            check=False,
            capture_output=True,
            text=True,
        )
        return bool(result.stdout.strip())

    def load_image(self, tarball: Path) -> None:
        self._run(self._cmd("load", "-i", str(tarball)))

    def run(self, args: Iterable[str], image: str) -> None:
        cmd = self._cmd("run", *args, "-ti", image)
        click.secho(
            "Running Hailo AI SW suite Docker image with the following Docker command:",
            fg="cyan",
            bold=True,
        )
        click.echo(shlex.join(cmd))
        return self._session(cmd)

    def start(self, name: str) -> None:
        self._run(self._cmd("start", name))

    def exec_shell(self, name: str, env: Mapping[str, str]) -> int:
        return self._session(self._cmd("exec", "-ti", *_env_flags(env), name, CONTAINER_SHELL))

    def stop(self, name: str) -> None:
        self._run(self._cmd("stop", name), quiet=True)

    def remove(self, name: str) -> None:
        self._run(self._cmd("rm", name), quiet=True)
