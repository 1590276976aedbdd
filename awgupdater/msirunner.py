"""Private temporary files for downloaded installers, and running msiexec."""

from __future__ import annotations

import os
import secrets
import subprocess
import sys
import tempfile
from collections.abc import Sequence
from contextlib import suppress
from typing import BinaryIO

_RANDOM_BYTES = 32


class TempFile:
    """A freshly created file that only this process has open for writing.

    While it is open, data can be written to it. ``exclusive_path`` closes it
    so that another program may open it by name.
    """

    def __init__(self, name: str, fd: int) -> None:
        self.name = name
        self._file: BinaryIO | None = os.fdopen(fd, "wb")

    @property
    def closed(self) -> bool:
        return self._file is None

    def write(self, data: bytes) -> int:
        """Append ``data`` to the file and return the number of bytes written."""
        if self._file is None:
            raise ValueError("write to a closed temporary file")
        return self._file.write(data)

    def exclusive_path(self) -> str:
        """Close the file, if still open, and return its path."""
        if self._file is not None:
            self._file.close()
            self._file = None
        return self.name

    def delete(self) -> None:
        """Close the file if needed and remove it from disk."""
        if self._file is not None:
            self._file.close()
            self._file = None
        os.remove(self.name)

    def __enter__(self) -> TempFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        with suppress(FileNotFoundError):
            self.delete()


def _windows_dir() -> str:
    return os.environ.get("SystemRoot") or os.environ.get("WINDIR") or r"C:\Windows"


def _default_temp_dir() -> str:
    if sys.platform == "win32":
        return os.path.join(_windows_dir(), "Temp")
    return tempfile.gettempdir()


def msi_temp_file(directory: str | os.PathLike[str] | None = None) -> TempFile:
    """Create a new, randomly named file readable and writable only by its owner."""
    if directory is None:
        directory = _default_temp_dir()
    name = os.path.join(os.fspath(directory), secrets.token_hex(_RANDOM_BYTES))
    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)
    fd = os.open(name, flags, 0o600)
    return TempFile(name, fd)


def run_msi(
    msi: TempFile,
    msiexec: str | os.PathLike[str] | Sequence[str] | None = None,
) -> None:
    """Install ``msi`` with msiexec and wait for it to finish.

    ``msiexec`` is the installer program, or a command prefix as a list; by
    default the system's msiexec.exe. A non-zero exit status raises
    subprocess.CalledProcessError.
    """
    path = msi.exclusive_path()
    if msiexec is None:
        msiexec = os.path.join(_windows_dir(), "System32", "msiexec.exe")
    if isinstance(msiexec, (str, os.PathLike)):
        command = [os.fspath(msiexec)]
    else:
        command = list(msiexec)
    subprocess.run(
        [*command, "/qb!-", "/i", os.path.basename(path)],
        cwd=os.path.dirname(path) or None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=True,
    )