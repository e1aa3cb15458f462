"""Host identity and network address discovery."""

import getpass
import logging
import socket

import requests

logger = logging.getLogger(__name__)

DEFAULT_PUBLIC_IP_URL = "https://ifconfig.me/ip"
UNAVAILABLE = "unavailable"


def get_hostname() -> str:
    """Get the system hostname."""
    return socket.gethostname()


def get_username() -> str:
    """Get the login name of the current user."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def get_primary_ip() -> str:
    """Get the primary IP address.

    Uses the same approach as hostname -I: connects a UDP socket to an
    external address and checks the bound local address.

    Returns:
        Primary IP address, or 127.0.0.1 if it cannot be determined
    """
    try:
        # Connect to a public DNS server (doesn't actually send packets)
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(0)
            sock.connect(("8.8.8.8", 80))
            ip: str = sock.getsockname()[0]
        return ip
    except OSError as e:
        logger.debug("Cannot determine primary IP: %s", e)
        return "127.0.0.1"


def get_public_ip(url: str = DEFAULT_PUBLIC_IP_URL, timeout: float = 5.0) -> str:
    """Look up the public IP via an echo service.

    Returns:
        The address as text, or "unavailable" on any request failure
    """
    try:
        resp = requests.get(url, timeout=timeout)
        if resp.status_code != 200:
            logger.debug("Public IP lookup returned %d", resp.status_code)
            return UNAVAILABLE
        return resp.text.strip() or UNAVAILABLE
    except requests.exceptions.ConnectionError as e:
        logger.debug("Cannot connect to %s: %s", url, e)
    except requests.exceptions.Timeout:
        logger.debug("Timeout connecting to %s", url)
    except requests.exceptions.RequestException as e:
        logger.debug("Public IP lookup failed: %s", e)
    return UNAVAILABLE
