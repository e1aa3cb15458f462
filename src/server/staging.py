"""Staging directory lifecycle for the key share server.

Copies the key pair and the rendered index page into an exclusive
temporary directory and removes that directory exactly once on shutdown.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

STAGING_PREFIX = "keyshare-"
INDEX_FILENAME = "index.html"

PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644


class StagingError(IOError):
    """Staging failed (unreadable source or no directory could be allocated)."""


class StagingDirectory:
    """Exclusive temporary root holding the files served for one session."""

    def __init__(self, root: Path, key_name: str):
        self.root = root
        self.key_name = key_name
        self._removed = False

    @property
    def private_key(self) -> Path:
        return self.root / self.key_name

    @property
    def public_key(self) -> Path:
        return self.root / f"{self.key_name}.pub"

    @property
    def index(self) -> Path:
        return self.root / INDEX_FILENAME

    @property
    def removed(self) -> bool:
        return self._removed

    def artifacts(self) -> List[str]:
        """Return sorted file names currently in the staging root."""
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir())

    def write_index(self, content: str):
        """Write (or replace) the index page."""
        self.index.write_text(content, encoding="utf-8")
        os.chmod(self.index, PUBLIC_KEY_MODE)

    def cleanup(self) -> bool:
        """Remove the staging root recursively.

        Safe to call more than once; only the first call does any work.
        Removal problems are logged rather than raised.

        Returns:
            True if this call removed the directory.
        """
        if self._removed:
            return False
        self._removed = True

        if not self.root.exists():
            logger.warning("Staging directory already gone: %s", self.root)
            return False

        try:
            shutil.rmtree(self.root)
        except OSError as e:
            logger.warning("Failed to remove staging directory %s: %s", self.root, e)
            return False

        logger.info("Removed staging directory %s", self.root)
        return True

    def __enter__(self) -> "StagingDirectory":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    def __repr__(self) -> str:
        return f"StagingDirectory(root={str(self.root)!r}, key_name={self.key_name!r})"


def _copy_artifact(source: Path, dest: Path, mode: int):
    """Copy a single key file into the staging root."""
    if not source.is_file():
        raise StagingError(f"Key file not found: {source}")
    if not os.access(source, os.R_OK):
        raise StagingError(f"Key file not readable: {source}")
    try:
        shutil.copyfile(source, dest)
        os.chmod(dest, mode)
    except OSError as e:
        raise StagingError(f"Failed to copy {source}: {e}") from e


def stage(
    private_key_path: Path,
    public_key_path: Path,
    index_content: str,
    key_name: Optional[str] = None,
    parent_dir: Optional[Path] = None,
) -> StagingDirectory:
    """Create a staging root populated with the key pair and index page.

    Args:
        private_key_path: Source private key file
        public_key_path: Source public key file
        index_content: Rendered index document
        key_name: Served name of the private key (default: source file name)
        parent_dir: Where to allocate the staging root (default: system temp)

    Returns:
        StagingDirectory owning the new root

    Raises:
        StagingError: If a source file is unreadable or the directory
            cannot be allocated. A partially populated root is removed
            before the error propagates.
    """
    private_key_path = Path(private_key_path)
    public_key_path = Path(public_key_path)
    key_name = key_name or private_key_path.name

    # Check sources before allocating anything
    for source in (private_key_path, public_key_path):
        if not source.is_file():
            raise StagingError(f"Key file not found: {source}")

    try:
        root = Path(tempfile.mkdtemp(
            prefix=STAGING_PREFIX,
            dir=str(parent_dir) if parent_dir else None,
        ))
    except OSError as e:
        raise StagingError(f"Cannot allocate staging directory: {e}") from e

    staging = StagingDirectory(root, key_name)
    logger.info("Staging directory: %s", root)

    try:
        _copy_artifact(private_key_path, staging.private_key, PRIVATE_KEY_MODE)
        _copy_artifact(public_key_path, staging.public_key, PUBLIC_KEY_MODE)
        staging.write_index(index_content)
    except OSError as e:
        staging.cleanup()
        if isinstance(e, StagingError):
            raise
        raise StagingError(f"Failed to write index page: {e}") from e

    logger.debug("Staged artifacts: %s", ", ".join(staging.artifacts()))
    return staging
