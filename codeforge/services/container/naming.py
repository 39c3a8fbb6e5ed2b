"""Deterministic names for workspace images and containers.

A workspace path maps to ``cf-<slug>-<hash>``: the slug keeps names
readable in ``docker ps`` and the hash keeps distinct paths apart. The
same string is used as the image name and as the container-name prefix.
"""

import hashlib
import os
import posixpath
import re
import secrets
import time
from typing import Optional, Union

from ...models.containers import ContainerType

NAME_PREFIX = "cf"
HASH_LENGTH = 12
MAX_SLUG_LENGTH = 40

_INVALID_CHARS = re.compile(r"[^a-z0-9_.-]+")
_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")


def normalize_workspace_path(workspace_path: Union[str, "os.PathLike[str]"]) -> str:
    """Canonical form of a workspace path used for hashing.

    Separators become ``/``, ``.`` and ``..`` segments collapse, trailing
    separators are dropped and a Windows drive letter is lower-cased.

    Raises:
        ValueError: the path is empty
    """
    if workspace_path is None:
        raise ValueError("Invalid workspace folder path provided")
    path = os.fspath(workspace_path).strip()
    if not path:
        raise ValueError("Invalid workspace folder path provided")

    normalized = posixpath.normpath(path.replace("\\", "/"))
    if _DRIVE_LETTER.match(normalized):
        normalized = normalized[0].lower() + normalized[1:]
    if len(normalized) > 1:
        normalized = normalized.rstrip("/")
    return normalized


def _slug(normalized: str) -> str:
    base = normalized.rstrip("/").rsplit("/", 1)[-1].lower()
    slug = _INVALID_CHARS.sub("-", base).strip("-_.")
    slug = slug[:MAX_SLUG_LENGTH].rstrip("-_.")
    return slug or "workspace"


def name_for(workspace_path: Union[str, "os.PathLike[str]"]) -> str:
    """Image name (and container prefix) for a workspace path."""
    normalized = normalize_workspace_path(workspace_path)
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    return f"{NAME_PREFIX}-{_slug(normalized)}-{digest}"


def container_name_for(
    prefix: str,
    container_type: ContainerType,
    unique: Optional[str] = None,
) -> str:
    """``<prefix>_<type>_<unique>``; unique defaults to a millisecond stamp plus entropy."""
    if unique is None:
        unique = f"{int(time.time() * 1000)}{secrets.token_hex(2)}"
    return f"{prefix}_{ContainerType(container_type).value}_{unique}"


def belongs_to_workspace(prefix: str, name: str) -> bool:
    """True when a container name was generated for ``prefix``."""
    name = name.lstrip("/")
    return name == prefix or name.startswith(f"{prefix}_")


def type_from_name(prefix: str, name: str) -> ContainerType:
    """Recover the container type encoded in a generated name."""
    name = name.lstrip("/")
    if not name.startswith(f"{prefix}_"):
        return ContainerType.UNKNOWN
    fragment = name[len(prefix) + 1:].split("_", 1)[0]
    return ContainerType.parse(fragment)
