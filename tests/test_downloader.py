import base64
import hashlib
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from awgupdater.downloader import DownloadProgress, UpdateError, Updater
from awgupdater.signify import SignifyError

MSI_NAME = "wireguard-amd64-1.0.1.msi"
MSI_BODY = bytes(range(256)) * 800


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.server.agents.append(self.headers.get("User-Agent"))
        body = self.server.files.get(self.path)
        if body is None:
            self.send_error(404)
            return
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.files = {}
    httpd.agents = []
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()


def _sign(payload):
    key = Ed25519PrivateKey.generate()
    key_id = b"\x07" * 8
    raw_public = key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    public_key = base64.b64encode(b"Ed" + key_id + raw_public).decode()
    signature = base64.b64encode(b"Ed" + key_id + key.sign(payload))
    return public_key, b"untrusted comment: signature\n" + signature + b"\n" + payload


def _updater(server, tmp_path, names=None, body=MSI_BODY, listed_hash=None, **kwargs):
    digest = listed_hash or hashlib.blake2b(body, digest_size=32).hexdigest()
    names = [MSI_NAME] if names is None else names
    payload = "".join(f"{digest}  {name}\n" for name in names).encode()
    public_key, signed = _sign(payload)
    server.files["/windows-client/latest.sig"] = signed
    for name in names:
        server.files[f"/windows-client/{name}"] = body
    temp_dir = tmp_path / "msi"
    temp_dir.mkdir(exist_ok=True)
    options = dict(
        host="127.0.0.1",
        port=server.server_address[1],
        https=False,
        public_key=public_key,
        arch="amd64",
        version="1.0.0",
        user_agent="AmneziaWG/1.0.0 (Test; amd64)",
        temp_dir=temp_dir,
    )
    options.update(kwargs)
    return Updater(**options)


def _collect(progress):
    items = []
    while True:
        item = progress.get(timeout=20)
        items.append(item)
        if item.error is not None or item.complete:
            return items


class _Recorder:
    def __init__(self):
        self.contents = []

    def __call__(self, msi):
        self.contents.append(Path(msi.exclusive_path()).read_bytes())


def test_check_for_update_finds_newer_release(server, tmp_path):
    updater = _updater(server, tmp_path)
    update = updater.check_for_update()
    assert update.name == MSI_NAME
    assert update.hash == hashlib.blake2b(MSI_BODY, digest_size=32).digest()
    assert server.agents == ["AmneziaWG/1.0.0 (Test; amd64)"]


def test_check_for_update_none_when_not_newer(server, tmp_path):
    updater = _updater(
        server, tmp_path, names=["wireguard-amd64-1.0.0.msi", "wireguard-x86-2.0.msi"]
    )
    assert updater.check_for_update() is None


def test_check_for_update_unofficial(server, tmp_path):
    updater = _updater(server, tmp_path, official=False)
    with pytest.raises(UpdateError, match="not official"):
        updater.check_for_update()
    assert server.agents == []


def test_check_for_update_rejects_bad_signature(server, tmp_path):
    updater = _updater(server, tmp_path)
    signed = server.files["/windows-client/latest.sig"]
    server.files["/windows-client/latest.sig"] = signed.replace(b"1.0.1", b"9.0.1")
    with pytest.raises(SignifyError, match="Signature is invalid"):
        updater.check_for_update()


def test_update_downloads_verifies_and_installs(server, tmp_path):
    recorder = _Recorder()
    checked = []

    def verify(path):
        checked.append(Path(path).read_bytes())
        return True

    updater = _updater(server, tmp_path, installer=recorder, verify_signature=verify)
    items = _collect(updater.download_verify_and_execute())

    assert items[-1] == DownloadProgress(complete=True)
    activities = [item.activity for item in items if item.activity]
    assert activities[:3] == ["Initializing", "Checking for update", "Creating temporary file"]
    assert activities[3].startswith("Msi destination is `")
    assert "Downloading update" in activities
    assert activities.index("Verifying authenticode signature") < activities.index("Installing update")

    downloads = [item for item in items if item.bytes_downloaded]
    counts = [item.bytes_downloaded for item in downloads]
    assert counts == sorted(counts)
    assert counts[-1] == len(MSI_BODY)
    assert all(item.bytes_total == len(MSI_BODY) for item in downloads)

    assert recorder.contents == [MSI_BODY]
    assert checked == [MSI_BODY]
    assert list((tmp_path / "msi").iterdir()) == []


def test_update_wrong_hash(server, tmp_path):
    recorder = _Recorder()
    updater = _updater(server, tmp_path, installer=recorder, listed_hash="ab" * 32)
    items = _collect(updater.download_verify_and_execute())
    assert isinstance(items[-1].error, UpdateError)
    assert str(items[-1].error) == "The downloaded update has the wrong hash"
    assert recorder.contents == []
    assert list((tmp_path / "msi").iterdir()) == []


def test_update_rejected_signature(server, tmp_path):
    recorder = _Recorder()
    updater = _updater(server, tmp_path, installer=recorder, verify_signature=lambda path: False)
    items = _collect(updater.download_verify_and_execute())
    assert "authentic authenticode signature" in str(items[-1].error)
    assert recorder.contents == []


def test_update_none_found(server, tmp_path):
    updater = _updater(server, tmp_path, names=["wireguard-amd64-0.9.msi"], installer=_Recorder())
    items = _collect(updater.download_verify_and_execute())
    assert str(items[-1].error) == "No update was found"


def test_update_unofficial_reports_error(server, tmp_path):
    updater = _updater(server, tmp_path, official=False, installer=_Recorder())
    items = _collect(updater.download_verify_and_execute())
    assert [item.activity for item in items[:2]] == ["Initializing", "Checking for update"]
    assert "not official" in str(items[-1].error)


def test_installer_failure_is_reported(server, tmp_path):
    def failing(msi):
        raise OSError("installer exploded")

    updater = _updater(server, tmp_path, installer=failing)
    items = _collect(updater.download_verify_and_execute())
    assert str(items[-1].error) == "installer exploded"
    assert list((tmp_path / "msi").iterdir()) == []


def test_only_one_update_at_a_time(server, tmp_path):
    started = threading.Event()
    release = threading.Event()

    def blocking(msi):
        started.set()
        release.wait(20)

    updater = _updater(server, tmp_path, installer=blocking)
    first = updater.download_verify_and_execute()
    try:
        assert started.wait(20)
        second = updater.download_verify_and_execute()
        assert second.get(timeout=5).activity == "Initializing"
        error = second.get(timeout=5).error
        assert str(error) == "An update is already in progress"
    finally:
        release.set()
    assert _collect(first)[-1].complete
    third = _collect(_updater(server, tmp_path, installer=_Recorder()).download_verify_and_execute())
    assert third[-1].complete