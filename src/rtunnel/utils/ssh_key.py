"""
SSH key utilities for rtunnel.

This module loads the private key that authenticates the outbound session
to the relay host.
"""

import asyncssh

from rtunnel.config import expand_home
from rtunnel.exceptions import CredentialError
from rtunnel.utils.logger import get_logger

log = get_logger(__name__)


def load_private_key(file_path: str, passphrase: str | None = None) -> asyncssh.SSHKey:
    """
    Read and parse an SSH private key.

    Args:
        file_path: Path to the private key file (supports ~ expansion).
        passphrase: Optional passphrase for encrypted keys.

    Returns:
        The parsed key.

    Raises:
        CredentialError: If the file is missing, unreadable, empty or not a
            valid private key. The message names the path, never the key.
    """
    path = expand_home(file_path)

    try:
        with open(path, "rb") as f:
            data = f.read()
    except FileNotFoundError:
        raise CredentialError("file not found", path) from None
    except OSError as e:
        raise CredentialError(f"cannot read file: {e.strerror}", path) from e

    if not data.strip():
        raise CredentialError("file is empty", path)

    try:
        key = asyncssh.import_private_key(data, passphrase)
    except (asyncssh.KeyImportError, ValueError) as e:
        raise CredentialError(f"cannot parse key: {e}", path) from None

    log.debug(f"Loaded {key.get_algorithm()} private key from {path}")
    return key
