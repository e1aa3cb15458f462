"""Common utilities for key provisioning and sharing."""

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def privileged(cmd: list[str]) -> list[str]:
    """Prefix cmd with sudo unless already running as root."""
    if os.geteuid() == 0:
        return cmd
    return ['sudo'] + cmd


def confirm(prompt: str, assume_yes: bool = False) -> bool:
    """Ask a y/N question on the terminal. Default is no.

    Non-interactive stdin counts as "no" unless assume_yes is set.
    """
    if assume_yes:
        return True
    if not sys.stdin or not sys.stdin.isatty():
        logger.warning(f"{prompt} (no terminal, assuming no)")
        return False
    try:
        reply = input(f"{prompt} (y/N): ")
    except EOFError:
        return False
    return reply.strip().lower() in ('y', 'yes')
