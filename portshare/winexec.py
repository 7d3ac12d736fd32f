"""Starting helper programs without flashing a console window."""

from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

CREATE_NO_WINDOW = 0x08000000
_STARTF_USESHOWWINDOW = 0x00000001
_SW_HIDE = 0


def _is_windows() -> bool:
    return sys.platform == "win32"


@dataclass
class Command:
    """A program and its arguments, ready to be started."""

    name: str
    args: tuple[str, ...] = ()
    hide_window: bool = field(default_factory=_is_windows)

    @property
    def argv(self) -> list[str]:
        return [self.name, *self.args]

    def popen_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for subprocess that hide the child's window."""
        if not self.hide_window:
            return {}
        kwargs: dict[str, Any] = {"creationflags": CREATE_NO_WINDOW}
        startupinfo_type = getattr(subprocess, "STARTUPINFO", None)
        if startupinfo_type is not None:
            startupinfo = startupinfo_type()
            startupinfo.dwFlags |= _STARTF_USESHOWWINDOW
            startupinfo.wShowWindow = _SW_HIDE
            kwargs["startupinfo"] = startupinfo
        return kwargs

    def start(self) -> subprocess.Popen:
        """Start the program and return the running process."""
        return subprocess.Popen(
            self.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            **self.popen_kwargs(),
        )

    def run(self, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        """Run the program to completion, killing it once the timeout passes."""
        return subprocess.run(
            self.argv,
            capture_output=True,
            timeout=timeout,
            check=False,
            **self.popen_kwargs(),
        )


def new_command(name: str, *args: str) -> Command:
    """Build a command that hides its window where the platform has one."""
    return Command(name, tuple(args))