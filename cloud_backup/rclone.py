"""rclone remote configuration carrying brokered temporary credentials.

The transfer engine (rclone) reads an INI file; each section is a remote.
We own one section (``[aws]`` by default) and rewrite it whenever the
broker hands out a new credential set, leaving other remotes alone.
"""

from __future__ import annotations

import configparser
import io
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloud_backup.credentials import TemporaryCredentials

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_NAME = "aws"
CONFIG_FILE_MODE = 0o600


def _parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    return parser


def _remote_options(credentials: TemporaryCredentials, region: str) -> dict[str, str]:
    return {
        "type": "s3",
        "provider": "AWS",
        "env_auth": "false",
        "access_key_id": credentials.access_key_id,
        "secret_access_key": credentials.secret_access_key,
        "session_token": credentials.session_token,
        "region": region,
        "acl": "private",
    }


def render_remote(credentials: TemporaryCredentials, region: str, remote_name: str = DEFAULT_REMOTE_NAME) -> str:
    """Render a single rclone S3 remote section."""
    parser = _parser()
    parser[remote_name] = _remote_options(credentials, region)
    buffer = io.StringIO()
    parser.write(buffer)
    return buffer.getvalue()


def write_remote(
    path: Path | str,
    credentials: TemporaryCredentials,
    region: str,
    remote_name: str = DEFAULT_REMOTE_NAME,
) -> Path:
    """Create or replace ``remote_name`` in the rclone config at ``path``.

    Other sections are preserved. The file is written atomically and is
    readable by the owner only.
    """
    path = Path(path).expanduser()
    parser = _parser()
    if path.is_file():
        try:
            parser.read(path, encoding="utf-8")
        except configparser.Error as e:
            logger.warning(f"Replacing unparsable rclone config at {path}: {e}")
            parser = _parser()

    if parser.has_section(remote_name):
        parser.remove_section(remote_name)
    parser[remote_name] = _remote_options(credentials, region)

    buffer = io.StringIO()
    parser.write(buffer)

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CONFIG_FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(buffer.getvalue())
    os.replace(tmp, path)
    os.chmod(path, CONFIG_FILE_MODE)

    logger.info(f"Wrote rclone remote [{remote_name}] with key {credentials.access_key_id} to {path}")
    return path
