"""Device and project identity derivation.

Project ids prefer the git ``origin`` remote so that clones of the same
repository on different machines land in the same logical project; the raw
project path is only a fallback.
"""
from __future__ import annotations

import getpass
import hashlib
import logging
import platform
import re
import socket
import subprocess
import uuid
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from codeinsights import config

logger = logging.getLogger("codeinsights.identity")

_SSH_PATTERN = re.compile(r"^git@([^:]+):(.+)$")
_SSH_URL_PATTERN = re.compile(r"^ssh://(?:[^@/]+@)?([^/]+)/(.+)$")
_HTTPS_PATTERN = re.compile(r"^https?://(?:[^@/]+@)?([^/]+)/(.+)$")
_GIT_TIMEOUT_SECONDS = 5


class ProjectIdentity(BaseModel):
    projectId: str
    source: str  # "git-remote" | "path-hash"
    gitRemoteUrl: Optional[str] = None


class DeviceInfo(BaseModel):
    deviceId: str
    hostname: str
    platform: str
    username: str


def _username() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return "unknown"


def get_device_id(device_file: Path | None = None) -> str:
    """Return the cached device id, creating and persisting it on first use."""
    path = device_file or config.DEVICE_ID_FILE
    if path.exists():
        existing = path.read_text(encoding="utf-8").strip()
        if existing:
            return existing

    machine_info = "-".join(
        [socket.gethostname(), platform.system().lower(), _username(), platform.machine(), uuid.uuid4().hex]
    )
    device_id = hashlib.sha256(machine_info.encode("utf-8")).hexdigest()[:12]

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(device_id, encoding="utf-8")
    logger.info(f"Created device id {device_id} at {path}")
    return device_id


def get_device_info(device_file: Path | None = None) -> DeviceInfo:
    return DeviceInfo(
        deviceId=get_device_id(device_file),
        hostname=socket.gethostname(),
        platform=platform.system().lower(),
        username=_username(),
    )


def normalize_git_url(url: str) -> str:
    """Reduce SSH and HTTPS remote URLs to ``host/owner/repo``.

    Examples:
      git@github.com:user/repo.git -> github.com/user/repo
      https://github.com/user/repo.git -> github.com/user/repo
      ssh://git@github.com/user/repo -> github.com/user/repo
    """
    normalized = url.strip()
    if normalized.endswith(".git"):
        normalized = normalized[: -len(".git")]

    for pattern in (_SSH_PATTERN, _SSH_URL_PATTERN, _HTTPS_PATTERN):
        match = pattern.match(normalized)
        if match:
            return f"{match.group(1)}/{match.group(2)}"
    return normalized


def get_git_remote_url(project_path: str) -> str | None:
    """Return the normalized ``origin`` URL, or None outside a git checkout."""
    if not project_path or not Path(project_path).is_dir():
        return None
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=project_path,
            capture_output=True,
            text=True,
            timeout=_GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    remote = result.stdout.strip()
    return normalize_git_url(remote) if remote else None


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def generate_stable_project_id(project_path: str) -> ProjectIdentity:
    git_remote_url = get_git_remote_url(project_path)
    if git_remote_url:
        return ProjectIdentity(
            projectId=_short_hash(git_remote_url),
            source="git-remote",
            gitRemoteUrl=git_remote_url,
        )
    return ProjectIdentity(projectId=_short_hash(project_path), source="path-hash")
