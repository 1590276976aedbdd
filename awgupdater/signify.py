"""Verification of signify-signed release file lists."""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

RELEASE_PUBLIC_KEY_BASE64 = "RWRNqGKtBXftKTKPpBPGDMe8jHLnFQ0EdRy8Wg0apV6vTDFLAODD83G4"
UPDATE_SERVER_HOST = "download.wireguard.com"
UPDATE_SERVER_PORT = 443
UPDATE_SERVER_USE_HTTPS = True
LATEST_VERSION_PATH = "/windows-client/latest.sig"
MSI_PATH = "/windows-client/{}"
MSI_ARCH_PREFIX = "wireguard-{}-"
MSI_SUFFIX = ".msi"

HASH_SIZE = 32
_PUBLIC_KEY_SIZE = 32
_SIGNATURE_SIZE = 64
_HEADER_SIZE = 10


class SignifyError(ValueError):
    """A signed file list is malformed or its signature does not verify."""


def _b64decode(text: bytes | str) -> bytes:
    if isinstance(text, str):
        text = text.encode("ascii", errors="strict")
    text = text.replace(b"\r", b"").replace(b"\n", b"")
    return base64.b64decode(text, validate=True)


def read_file_list(data: bytes, public_key: str = RELEASE_PUBLIC_KEY_BASE64) -> dict[str, bytes]:
    """Verify a signed file list and return its file names mapped to hashes.

    ``data`` is a signify message with embedded content: an untrusted comment
    line, a base64 signature line, then lines of ``<hex hash>  <file name>``.
    """
    try:
        key_bytes = _b64decode(public_key)
    except (binascii.Error, ValueError):
        key_bytes = b""
    if len(key_bytes) != _PUBLIC_KEY_SIZE + _HEADER_SIZE or key_bytes[:2] != b"Ed":
        raise SignifyError("Invalid public key")

    lines = data.split(b"\n", 2)
    if len(lines) != 3:
        raise SignifyError("Signature input has too few lines")
    comment, signature_line, payload = lines
    if not comment.startswith(b"untrusted comment: "):
        raise SignifyError("Signature input is missing untrusted comment")
    try:
        signature = _b64decode(signature_line)
    except (binascii.Error, ValueError):
        raise SignifyError("Signature input is not valid base64") from None
    if len(signature) != _SIGNATURE_SIZE + _HEADER_SIZE or signature[:_HEADER_SIZE] != key_bytes[:_HEADER_SIZE]:
        raise SignifyError("Signature input bytes are incorrect length, type, or keyid")
    verifier = Ed25519PublicKey.from_public_bytes(key_bytes[_HEADER_SIZE:])
    try:
        verifier.verify(signature[_HEADER_SIZE:], payload)
    except InvalidSignature:
        raise SignifyError("Signature is invalid") from None

    file_lines = payload.decode("utf-8", errors="replace").split("\n")
    if file_lines[-1] == "":
        file_lines.pop()
    hashes: dict[str, bytes] = {}
    for line in file_lines:
        digest_hex, sep, name = line.partition("  ")
        if not sep:
            raise SignifyError("File hash line has too few components")
        try:
            digest = binascii.unhexlify(digest_hex)
        except (binascii.Error, ValueError):
            digest = b""
        if len(digest) != HASH_SIZE:
            raise SignifyError("File hash is invalid base64 or incorrect number of bytes")
        hashes[name] = digest
    if not hashes:
        raise SignifyError("No file hashes found in signed input")
    return hashes