from __future__ import annotations

import subprocess
import unittest
from pathlib import Path
from unittest.mock import patch

import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from suite_cli.errors import DockerCommandError, DockerNotInstalled, DockerPermissionDenied
from suite_cli.runtime import DockerRuntime


def _completed(cmd: list[str], returncode: int = 0, stdout: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")


class DockerRuntimeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.runtime = DockerRuntime(user="tester")

    def test_missing_docker_binary(self) -> None:
        with patch("suite_cli.runtime.shutil.which", return_value=None):
            with self.assertRaises(DockerNotInstalled):
                self.runtime.ensure_available()

    def test_permission_denied_names_user(self) -> None:
        with patch("suite_cli.runtime.shutil.which", return_value="/usr/bin/docker"), patch(
            "suite_cli.runtime.subprocess.run", return_value=_completed(["docker", "images"], 1)
        ):
            with self.assertRaises(DockerPermissionDenied) as ctx:
                self.runtime.ensure_available()
        self.assertIn("tester", ctx.exception.format_message())

    def test_available_when_images_succeeds(self) -> None:
        with patch("suite_cli.runtime.shutil.which", return_value="/usr/bin/docker"), patch(
            "suite_cli.runtime.subprocess.run", return_value=_completed(["docker", "images"])
        ) as run:
            self.runtime.ensure_available()
        self.assertEqual(run.call_args.args[0], ["docker", "images"])

    def test_container_count_counts_listed_ids(self) -> None:
        with patch(
            "suite_cli.runtime.subprocess.run",
            return_value=_completed([], stdout="3f2a1b\n9c8d7e\n\n"),
        ) as run:
            count = self.runtime.container_count("suite")
        self.assertEqual(count, 2)
        self.assertEqual(run.call_args.args[0], ["docker", "ps", "-a", "-q", "-f", "name=suite"])

    def test_exists_is_false_for_empty_listing(self) -> None:
        with patch("suite_cli.runtime.subprocess.run", return_value=_completed([], stdout="")):
            self.assertFalse(self.runtime.exists("suite"))

    def test_failing_query_raises(self) -> None:
        with patch("suite_cli.runtime.subprocess.run", return_value=_completed([], 1)):
            with self.assertRaises(DockerCommandError):
                self.runtime.container_count("suite")

    def test_image_exists_checks_for_id_output(self) -> None:
        with patch("suite_cli.runtime.subprocess.run", return_value=_completed([], stdout="abc123\n")) as run:
            self.assertTrue(self.runtime.image_exists("suite:1"))
        self.assertEqual(run.call_args.args[0], ["docker", "images", "-q", "suite:1"])

        with patch("suite_cli.runtime.subprocess.run", return_value=_completed([], stdout="")):
            self.assertFalse(self.runtime.image_exists("suite:1"))

    def test_run_appends_tty_flags_before_image(self) -> None:
        with patch("suite_cli.runtime.subprocess.run", return_value=_completed([])) as run:
            returncode = self.runtime.run(["--privileged", "--name", "suite"], "suite:1")
        self.assertEqual(returncode, 0)
        self.assertEqual(
            run.call_args.args[0],
            ["docker", "run", "--privileged", "--name", "suite", "-ti", "suite:1"],
        )

    def test_exec_shell_passes_env(self) -> None:
        with patch("suite_cli.runtime.subprocess.run", return_value=_completed([])) as run:
            self.runtime.exec_shell("suite", {"DISPLAY": ":0", "HAILO_MONITOR": "1"})
        self.assertEqual(
            run.call_args.args[0],
            ["docker", "exec", "-ti", "-e", "DISPLAY=:0", "-e", "HAILO_MONITOR=1", "suite", "/bin/bash"],
        )

    def test_interactive_sessions_return_shell_status(self) -> None:
        with patch("suite_cli.runtime.subprocess.run", return_value=_completed([], 130)) as run:
            self.assertEqual(self.runtime.run(["--name", "suite"], "suite:1"), 130)
            self.assertEqual(self.runtime.exec_shell("suite", {"DISPLAY": ":0"}), 130)
        for call in run.call_args_list:
            self.assertFalse(call.kwargs["check"])

    def test_stop_and_remove_discard_output(self) -> None:
        with patch("suite_cli.runtime.subprocess.run") as run:
            self.runtime.stop("suite")
            self.runtime.remove("suite")
        first, second = run.call_args_list
        self.assertEqual(first.args[0], ["docker", "stop", "suite"])
        self.assertEqual(second.args[0], ["docker", "rm", "suite"])
        self.assertEqual(second.kwargs["stdout"], subprocess.DEVNULL)

    def test_failing_command_raises_with_exit_code(self) -> None:
        error = subprocess.CalledProcessError(125, ["docker", "load", "-i", "x.tar.gz"])
        with patch("suite_cli.runtime.subprocess.run", side_effect=error):
            with self.assertRaises(DockerCommandError) as ctx:
                self.runtime.load_image(Path("x.tar.gz"))
        self.assertEqual(ctx.exception.returncode, 125)
        self.assertEqual(ctx.exception.exit_code, 1)
