"""Selection of a newer release from a verified file list."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from itertools import zip_longest

from .signify import MSI_ARCH_PREFIX, MSI_SUFFIX
from .version import NUMBER
from .version import arch as current_arch

_MAX_PART = 0xFFFF
_MAX_VERSION_LENGTH = 128


@dataclass(frozen=True)
class UpdateFound:
    """A release file that is newer than the running client."""

    name: str
    hash: bytes


def _parse_part(part: str) -> int:
    if not part:
        raise ValueError("Empty version part")
    if not (part.isascii() and part.isdigit()):
        raise ValueError("Invalid version integer part")
    value = int(part)
    if value > _MAX_PART:
        raise ValueError("Invalid version integer part")
    return value


def version_newer_than(candidate: str, ours: str = NUMBER) -> bool:
    """Whether the dotted version ``candidate`` is newer than ``ours``.

    Missing trailing parts count as zero; each part must be a decimal
    integer that fits in 16 bits.
    """
    for cand_part, our_part in zip_longest(candidate.split("."), ours.split(".")):
        cand_value = 0 if cand_part is None else _parse_part(cand_part)
        our_value = 0 if our_part is None else _parse_part(our_part)
        if cand_value != our_value:
            return cand_value > our_value
    return False


def find_candidate(
    candidates: Mapping[str, bytes],
    arch: str | None = None,
    ours: str = NUMBER,
) -> UpdateFound | None:
    """Return the first installer for ``arch`` that is newer than ``ours``.

    Returns None when no such installer is listed.
    """
    prefix = MSI_ARCH_PREFIX.format(current_arch() if arch is None else arch)
    for name, digest in candidates.items():
        if not (name.startswith(prefix) and name.endswith(MSI_SUFFIX)):
            continue
        version = name[len(prefix):]
        version = version[: len(version) - len(MSI_SUFFIX)] if len(version) >= len(MSI_SUFFIX) else ""
        if len(version) > _MAX_VERSION_LENGTH:
            raise ValueError("Version length is too long")
        if version_newer_than(version, ours):
            return UpdateFound(name, digest)
    return None