"""Checking for, downloading, verifying and installing client updates."""

from __future__ import annotations

import hashlib
import hmac
import os
import queue
import threading
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, replace

from .httpclient import Connection, HttpError, Response, Session
from .msirunner import TempFile, msi_temp_file, run_msi
from .signify import (
    HASH_SIZE,
    LATEST_VERSION_PATH,
    MSI_PATH,
    RELEASE_PUBLIC_KEY_BASE64,
    UPDATE_SERVER_HOST,
    UPDATE_SERVER_PORT,
    UPDATE_SERVER_USE_HTTPS,
    read_file_list,
)
from .version import NUMBER, os_name
from .version import arch as current_arch
from .versions import UpdateFound, find_candidate

_FILE_LIST_LIMIT = 512 * 1024
_MSI_LIMIT = 100 * 1024 * 1024
_CHUNK_SIZE = 64 * 1024

_update_lock = threading.Lock()


@dataclass(frozen=True)
class DownloadProgress:
    """One report on the state of an update in progress."""

    activity: str = ""
    bytes_downloaded: int = 0
    bytes_total: int = 0
    error: BaseException | None = None
    complete: bool = False


class UpdateError(Exception):
    """An update could not be found, downloaded, verified or installed."""


def _read_limited(response: Response, limit: int) -> bytes:
    parts: list[bytes] = []
    remaining = limit
    while remaining > 0:
        chunk = response.read(min(_CHUNK_SIZE, remaining))
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


class Updater:
    """Finds newer releases on an update server and installs them."""

    def __init__(
        self,
        host: str = UPDATE_SERVER_HOST,
        port: int = UPDATE_SERVER_PORT,
        https: bool = UPDATE_SERVER_USE_HTTPS,
        public_key: str = RELEASE_PUBLIC_KEY_BASE64,
        arch: str | None = None,
        version: str = NUMBER,
        user_agent: str | None = None,
        official: bool = True,
        verify_signature: Callable[[str], bool] | None = None,
        installer: Callable[[TempFile], None] | None = None,
        temp_dir: str | os.PathLike[str] | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.https = https
        self.public_key = public_key
        self.arch = current_arch() if arch is None else arch
        self.version = version
        if user_agent is None:
            user_agent = f"AmneziaWG/{version} ({os_name()}; {self.arch})"
        self.user_agent = user_agent
        self.official = official
        self.verify_signature = verify_signature
        self.installer = run_msi if installer is None else installer
        self.temp_dir = temp_dir

    def _require_official(self) -> None:
        if not self.official:
            raise UpdateError("Build is not official, so updates are disabled")

    def _find_update(self, connection: Connection) -> UpdateFound | None:
        with connection.get(LATEST_VERSION_PATH, refresh=True) as response:
            data = _read_limited(response, _FILE_LIST_LIMIT)
        if not data:
            raise UpdateError("The update server sent an empty file list")
        files = read_file_list(data, self.public_key)
        return find_candidate(files, self.arch, self.version)

    def check_for_update(self) -> UpdateFound | None:
        """Return the newer release offered by the server, or None."""
        self._require_official()
        with Session(self.user_agent) as session:
            connection = session.connect(self.host, self.port, self.https)
            return self._find_update(connection)

    def download_verify_and_execute(self) -> queue.Queue[DownloadProgress]:
        """Start updating in the background and return its progress queue.

        The last item put on the queue has either ``complete`` or ``error`` set.
        """
        progress: queue.Queue[DownloadProgress] = queue.Queue()
        progress.put(DownloadProgress(activity="Initializing"))
        if not _update_lock.acquire(blocking=False):
            progress.put(DownloadProgress(error=UpdateError("An update is already in progress")))
            return progress
        try:
            threading.Thread(target=self._worker, args=(progress,), daemon=True).start()
        except BaseException:
            _update_lock.release()
            raise
        return progress

    def _worker(self, progress: queue.Queue[DownloadProgress]) -> None:
        try:
            self._update(progress.put)
            final = DownloadProgress(complete=True)
        except Exception as exc:
            final = DownloadProgress(error=exc)
        finally:
            _update_lock.release()
        progress.put(final)

    def _update(self, emit: Callable[[DownloadProgress], None]) -> None:
        emit(DownloadProgress(activity="Checking for update"))
        self._require_official()
        with Session(self.user_agent) as session:
            connection = session.connect(self.host, self.port, self.https)
            update = self._find_update(connection)
            if update is None:
                raise UpdateError("No update was found")

            emit(DownloadProgress(activity="Creating temporary file"))
            msi = msi_temp_file(self.temp_dir)
            try:
                emit(DownloadProgress(activity=f"Msi destination is `{msi.name}`"))
                digest = self._download(connection, update, msi, emit)
                if len(update.hash) != HASH_SIZE or not hmac.compare_digest(digest, update.hash):
                    raise UpdateError("The downloaded update has the wrong hash")

                if self.verify_signature is not None:
                    emit(DownloadProgress(activity="Verifying authenticode signature"))
                    if not self.verify_signature(msi.exclusive_path()):
                        raise UpdateError(
                            "The downloaded update does not have an authentic authenticode signature"
                        )

                emit(DownloadProgress(activity="Installing update"))
                self.installer(msi)
            finally:
                with suppress(OSError):
                    msi.delete()

    def _download(
        self,
        connection: Connection,
        update: UpdateFound,
        msi: TempFile,
        emit: Callable[[DownloadProgress], None],
    ) -> bytes:
        state = DownloadProgress(activity="Downloading update")
        emit(state)
        hasher = hashlib.blake2b(digest_size=HASH_SIZE)
        with connection.get(MSI_PATH.format(update.name), refresh=False) as response:
            try:
                state = replace(state, bytes_total=response.length())
                emit(state)
            except HttpError:
                pass
            remaining = _MSI_LIMIT
            while remaining > 0:
                chunk = response.read(min(_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                msi.write(chunk)
                state = replace(state, bytes_downloaded=state.bytes_downloaded + len(chunk))
                emit(state)
                hasher.update(chunk)
        return hasher.digest()