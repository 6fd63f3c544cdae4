from __future__ import annotations

import logging
import shutil
import stat
import subprocess
from pathlib import Path
from typing import Iterable

from .errors import HostPathError, XauthPathIsDirectory


LOGGER = logging.getLogger("suite_cli.xauth")

WILDCARD_FAMILY = "ffff"
OTHER_RW = stat.S_IROTH | stat.S_IWOTH


def wildcard_family(entries: Iterable[str]) -> list[str]:
    """Replaces the address family of each ``xauth nlist`` entry with ``ffff``.

    A wildcard family makes the cookie valid for any hostname, so the
    process in the container can reach the host display.
    """
    rewritten: list[str] = []
    for entry in entries:
        if not entry.strip():
            continue
        rewritten.append(WILDCARD_FAMILY + entry[len(WILDCARD_FAMILY):])
    return rewritten


def allow_local_x_clients() -> None:
    try:
        result = subprocess.run(
            ["xhost", "+"],
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as exc:
        LOGGER.debug("xhost unavailable: %s", exc)
        return
    if result.returncode != 0:
        LOGGER.debug("xhost + exited with %s", result.returncode)


def prepare_xauth(path: Path, display: str) -> None:
    if path.is_dir():
        raise XauthPathIsDirectory(str(path))

    try:
        path.touch(exist_ok=True)
    except OSError as exc:
        raise HostPathError("create", str(path), exc) from exc
    if shutil.which("xauth") is None:
        LOGGER.warning("xauth not found; %s left without display cookies", path)
    else:
        nlist_cmd = ["xauth", "nlist"] + ([display] if display else [])
        listed = subprocess.run(nlist_cmd, check=False, capture_output=True, text=True)
        if listed.returncode != 0:
            LOGGER.warning("xauth nlist failed with %s: %s", listed.returncode, listed.stderr.strip())
        entries = wildcard_family(listed.stdout.splitlines())
        merge_input = "".join(f"{entry}\n" for entry in entries)
        merged = subprocess.run(
            ["xauth", "-f", str(path), "nmerge", "-"],
            check=False,
            input=merge_input,
            capture_output=True,
            text=True,
        )
        if merged.returncode != 0:
            LOGGER.warning("xauth nmerge into %s failed: %s", path, merged.stderr.strip())
        else:
            LOGGER.debug("Merged %d display cookie(s) into %s", len(entries), path)

    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & OTHER_RW == OTHER_RW:
        return
    try:
        path.chmod(mode | OTHER_RW)
    except OSError as exc:
        raise HostPathError("change permissions of", str(path), exc) from exc
