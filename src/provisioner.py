"""Credential provisioning on the local host.

Installs OpenSSH if needed, generates the key pair with ssh-keygen, trusts
the public half in authorized_keys and brings up the SSH daemon.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from common import privileged, run_command

logger = logging.getLogger(__name__)

SSH_PACKAGES = ['openssh-server', 'openssh-client']
DEFAULT_SSH_DIR = Path.home() / '.ssh'
DEFAULT_KEY_TYPE = 'rsa'
DEFAULT_KEY_BITS = 4096
DEFAULT_SSH_SERVICE = 'ssh'

SSH_DIR_MODE = 0o700
AUTHORIZED_KEYS_MODE = 0o600


class ProvisionError(EnvironmentError):
    """A host precondition could not be satisfied."""


@dataclass
class KeyPair:
    """Generated key files."""
    name: str
    private_key: Path
    generated_at: datetime
    comment: str = ''

    @property
    def public_key(self) -> Path:
        return self.private_key.with_name(f"{self.private_key.name}.pub")


def _apt_install(packages: list[str]):
    """Install packages with apt-get."""
    rc, _, err = run_command(privileged(['apt-get', 'update']), timeout=600)
    if rc != 0:
        raise ProvisionError(f"apt-get update failed: {err.strip()}")
    rc, _, err = run_command(privileged(['apt-get', 'install', '-y'] + packages), timeout=1200)
    if rc != 0:
        raise ProvisionError(f"apt-get install {' '.join(packages)} failed: {err.strip()}")


def ensure_ssh_available():
    """Install the OpenSSH client and server when ssh is missing.

    Raises:
        ProvisionError: If installation fails
    """
    if shutil.which('ssh'):
        logger.info("SSH is already installed.")
        return
    logger.info("SSH is not installed. Starting installation...")
    _apt_install(SSH_PACKAGES)
    logger.info("SSH installation completed!")


def ensure_interpreter_available():
    """Make sure python3 is resolvable on PATH.

    Raises:
        ProvisionError: If python3 is missing and cannot be installed
    """
    if shutil.which('python3'):
        return
    logger.info("Python3 is not installed. Starting installation...")
    _apt_install(['python3'])
    if not shutil.which('python3'):
        raise ProvisionError("python3 still not found after installation")
    logger.info("Python3 installation completed!")


def enable_and_start_ssh_daemon(service: str = DEFAULT_SSH_SERVICE):
    """Enable and start the SSH service via systemd.

    Raises:
        ProvisionError: If systemctl fails
    """
    logger.info("Starting SSH service...")
    for action in ('enable', 'start'):
        rc, _, err = run_command(privileged(['systemctl', action, service]), timeout=60)
        if rc != 0:
            raise ProvisionError(f"systemctl {action} {service} failed: {err.strip()}")


def key_exists(ssh_dir: Path, key_name: str) -> bool:
    """Check whether a private key of this name already exists."""
    return (Path(ssh_dir) / key_name).exists()


def ensure_ssh_dir(ssh_dir: Path) -> Path:
    """Create the SSH directory with 0700 permissions."""
    ssh_dir = Path(ssh_dir)
    ssh_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(ssh_dir, SSH_DIR_MODE)
    return ssh_dir


def generate_keypair(
    ssh_dir: Path,
    key_name: str,
    key_type: str = DEFAULT_KEY_TYPE,
    bits: int = DEFAULT_KEY_BITS,
    comment: Optional[str] = None,
) -> KeyPair:
    """Generate an unencrypted key pair with ssh-keygen.

    An existing key of the same name is replaced; callers are expected to
    have confirmed the overwrite.

    Raises:
        ProvisionError: If ssh-keygen fails
    """
    ssh_dir = ensure_ssh_dir(ssh_dir)
    key_path = ssh_dir / key_name
    comment = comment or ''

    # ssh-keygen prompts before overwriting, so clear the old pair first
    for path in (key_path, key_path.with_name(f"{key_name}.pub")):
        if path.exists():
            path.unlink()

    logger.info("Generating SSH key...")
    cmd = ['ssh-keygen', '-t', key_type, '-f', str(key_path), '-N', '', '-C', comment]
    if key_type in ('rsa', 'dsa', 'ecdsa'):
        cmd[3:3] = ['-b', str(bits)]
    rc, _, err = run_command(cmd, timeout=120)
    if rc != 0:
        raise ProvisionError(f"ssh-keygen failed: {err.strip()}")

    key_pair = KeyPair(
        name=key_name,
        private_key=key_path,
        generated_at=datetime.now().astimezone(),
        comment=comment,
    )
    if not key_pair.public_key.exists():
        raise ProvisionError(f"ssh-keygen did not produce {key_pair.public_key}")

    logger.info("SSH key generation completed!")
    return key_pair


def existing_keypair(ssh_dir: Path, key_name: str) -> KeyPair:
    """Describe an already generated key pair (no generation).

    Raises:
        ProvisionError: If either half is missing
    """
    key_path = Path(ssh_dir) / key_name
    for path in (key_path, key_path.with_name(f"{key_name}.pub")):
        if not path.is_file():
            raise ProvisionError(f"Key file not found: {path}")

    return KeyPair(
        name=key_name,
        private_key=key_path,
        generated_at=datetime.fromtimestamp(key_path.stat().st_mtime).astimezone(),
    )


def install_authorized_key(key_pair: KeyPair, ssh_dir: Path) -> bool:
    """Append the public key to authorized_keys.

    Returns:
        True if the key was appended, False if it was already present
    """
    ssh_dir = ensure_ssh_dir(ssh_dir)
    authorized_keys = ssh_dir / 'authorized_keys'
    public_key = key_pair.public_key.read_text().strip()

    existing = authorized_keys.read_text() if authorized_keys.exists() else ''
    if public_key in existing.splitlines():
        logger.info("Public key already present in authorized_keys.")
        os.chmod(authorized_keys, AUTHORIZED_KEYS_MODE)
        return False

    with open(authorized_keys, 'a', encoding='utf-8') as f:
        if existing and not existing.endswith('\n'):
            f.write('\n')
        f.write(public_key + '\n')
    os.chmod(authorized_keys, AUTHORIZED_KEYS_MODE)
    logger.info("Public key added to authorized_keys.")
    return True
