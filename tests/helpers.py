from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping

import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from suite_cli.runtime import ContainerRuntime


class FakeRuntime(ContainerRuntime):
    """Records every call instead of talking to docker.

    ``counts`` is consumed one value per ``container_count`` call; the last
    value repeats once the list runs out. ``session_code`` is what the
    interactive ``run`` and ``exec_shell`` sessions exit with.
    """

    def __init__(
        self,
        *,
        counts: Iterable[int] = (0,),
        image_present: bool = True,
        unavailable: Exception | None = None,
        session_code: int = 0,
    ) -> None:
        self.counts = list(counts) or [0]
        self.image_present = image_present
        self.unavailable = unavailable
        self.session_code = session_code
        self.calls: list[tuple] = []

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def ensure_available(self) -> None:
        self.calls.append(("ensure_available",))
        if self.unavailable is not None:
            raise self.unavailable

    def container_count(self, name: str) -> int:
        self.calls.append(("container_count", name))
        if len(self.counts) > 1:
            return self.counts.pop(0)
        return self.counts[0]

    def image_exists(self, image: str) -> bool:
        self.calls.append(("image_exists", image))
        return self.image_present

    def load_image(self, tarball: Path) -> None:
        self.calls.append(("load_image", Path(tarball)))
        self.image_present = True

    def run(self, args: Iterable[str], image: str) -> int:
        self.calls.append(("run", list(args), image))
        return self.session_code

    def start(self, name: str) -> None:
        self.calls.append(("start", name))

    def exec_shell(self, name: str, env: Mapping[str, str]) -> int:
        self.calls.append(("exec_shell", name, dict(env)))
        return self.session_code

    def stop(self, name: str) -> None:
        self.calls.append(("stop", name))

    def remove(self, name: str) -> None:
        self.calls.append(("remove", name))
