from __future__ import annotations

import click


class SuiteError(click.ClickException):
    """Base class for every terminal launcher failure. Click exits with code 1."""

    exit_code = 1


class ConfigError(SuiteError):
    pass


class HostPathError(SuiteError):
    def __init__(self, action: str, path: str, exc: OSError) -> None:
        super().__init__(f"Unable to {action} {path}: {exc.strerror or exc}")
        self.action = action
        self.path = path


class RequirementsNotMet(SuiteError):
    def __init__(self, log_file: str) -> None:
        super().__init__(f"System requirements check failed. See {log_file} for more information.")
        self.log_file = log_file


class DockerNotInstalled(SuiteError):
    def __init__(self) -> None:
        super().__init__("Docker is not installed")


class DockerPermissionDenied(SuiteError):
    def __init__(self, user: str) -> None:
        super().__init__(f"The current user:{user} is not in the 'Docker' group")
        self.user = user


class DockerCommandError(SuiteError):
    def __init__(self, cmd: list[str], returncode: int) -> None:
        super().__init__(f"Command failed with exit code {returncode}: {' '.join(cmd)}")
        self.cmd = list(cmd)
        self.returncode = returncode


class ContainerAlreadyExists(SuiteError):
    def __init__(self, container_name: str) -> None:
        super().__init__(
            f"Can't start a new container, already found one ({container_name}). "
            "Consider using --resume or --override\n"
            "In case of replacing the Hailo AI SW Suite image, delete the existing containers and images\n"
            "Caution, all data from the existing container will be erased. "
            "To prevent data loss, save it to your own Docker volume"
        )
        self.container_name = container_name


class NoContainerToResume(SuiteError):
    def __init__(self, container_name: str) -> None:
        super().__init__(
            f"Found no container named {container_name}. Please run for the first time without --resume"
        )
        self.container_name = container_name


class ImageTarballMissing(SuiteError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Missing file: {path}")
        self.path = path


class XauthPathIsDirectory(SuiteError):
    def __init__(self, path: str) -> None:
        super().__init__(
            "It looks like there was an attempt to start the container with means other than "
            "this launcher, and the X authority path is now a directory. "
            "Please run the command below before starting or resuming the container:\n\n"
            f"    sudo rm -r {path}\n"
        )
        self.path = path
