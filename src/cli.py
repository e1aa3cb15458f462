#!/usr/bin/env python3
"""CLI entry point for keyshare.

Generates an SSH key pair on this host, trusts it for login and serves it
over plain HTTP for a limited time so another machine can fetch it:

    keyshare [key_name] [port] [timeout_seconds]

The download endpoint has no authentication. Anyone who can reach the
port while the server runs can fetch the private key.
"""

import argparse
import logging
import sys
from pathlib import Path

from common import confirm
from config import ConfigError, KeyShareConfig, load_config
from netinfo import get_hostname, get_primary_ip, get_public_ip, get_username
from provisioner import (
    ProvisionError,
    enable_and_start_ssh_daemon,
    ensure_interpreter_available,
    ensure_ssh_available,
    existing_keypair,
    generate_keypair,
    install_authorized_key,
    key_exists,
)
from server.httpd import BindError, is_port_in_use
from server.session import Session, SessionConfig
from server.staging import StagingError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="keyshare",
        description="Generate an SSH key and serve it for one-time download",
    )
    parser.add_argument(
        "key_name",
        nargs="?",
        help="Key file name under the SSH directory (default: id_rsa)",
    )
    parser.add_argument(
        "port",
        nargs="?",
        type=int,
        help="HTTP port to serve on (default: 8000)",
    )
    parser.add_argument(
        "timeout",
        nargs="?",
        type=int,
        metavar="timeout_seconds",
        help="Seconds before the server shuts down (default: 300)",
    )
    parser.add_argument(
        "--bind", "-b",
        help="Address to bind to",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="YAML config file",
    )
    parser.add_argument(
        "--ssh-dir",
        type=Path,
        help="SSH directory holding the key and authorized_keys",
    )
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Answer yes to overwrite and busy-port prompts",
    )
    parser.add_argument(
        "--skip-provision",
        action="store_true",
        help="Serve an existing key without installing packages or generating a new one",
    )
    parser.add_argument(
        "--no-public-ip",
        action="store_true",
        help="Skip the public IP lookup",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def resolve_config(args) -> KeyShareConfig:
    """Merge config file values with command-line overrides."""
    config = load_config(args.config)
    config = config.merged(
        key_name=args.key_name,
        port=args.port,
        timeout=args.timeout,
        bind=args.bind,
        ssh_dir=args.ssh_dir,
        lookup_public_ip=False if args.no_public_ip else None,
    )
    return config.validate()


def provision(config: KeyShareConfig, user: str, hostname: str, assume_yes: bool = False):
    """Install prerequisites, generate the key pair and trust it.

    Returns:
        KeyPair, or None if the operator declined to overwrite
    """
    ensure_ssh_available()
    ensure_interpreter_available()

    if key_exists(config.ssh_dir, config.key_name):
        print(f"Warning: SSH key {config.ssh_dir / config.key_name} already exists.")
        if not confirm("Do you want to overwrite it?", assume_yes):
            print("Operation cancelled.")
            return None

    key_pair = generate_keypair(
        config.ssh_dir,
        config.key_name,
        key_type=config.key_type,
        bits=config.key_bits,
        comment=f"{user}@{hostname}",
    )
    install_authorized_key(key_pair, config.ssh_dir)
    enable_and_start_ssh_daemon(config.ssh_service)
    return key_pair


def print_banner(config: KeyShareConfig):
    print("=== SSH Key Generation and Download Server Setup ===")
    print(f"Key name: {config.key_name}")
    print(f"Port: {config.port}")
    print(f"Timeout: {config.timeout} seconds")
    print()


def print_server_info(config: KeyShareConfig, local_ip: str, public_ip: str):
    base = f"http://{local_ip}:{config.port}"
    print()
    print("=== Server Information ===")
    print(f"Local IP: {local_ip}")
    print(f"Public IP: {public_ip}")
    print("SSH Port: 22")
    print()
    print("=== File Download Server Starting ===")
    print("Download URLs:")
    print(f"  - Private Key: {base}/{config.key_name}")
    print(f"  - Public Key: {base}/{config.key_name}.pub")
    print(f"  - Web Interface: {base}/")
    print()
    print("Download commands for other machines:")
    print(f"  wget {base}/{config.key_name}")
    print(f"  wget {base}/{config.key_name}.pub")
    print()
    print(f"Server will auto-shutdown after {config.timeout} seconds.")
    print("Press Ctrl+C to shutdown manually.")
    print()


def print_summary(config: KeyShareConfig, session: Session, user: str, local_ip: str):
    downloaded = session.downloads()
    print()
    print("=== Completed ===")
    if downloaded:
        print(f"Downloaded: {', '.join(downloaded)}")
    else:
        print("No key files were downloaded.")
    print(f"SSH key saved to {config.ssh_dir / config.key_name}")
    print("SSH service is running.")
    print()
    print("Connection test:")
    print(f"  ssh {user}@localhost")
    print(f"  ssh -i {config.ssh_dir / config.key_name} {user}@{local_ip}")
    print()


def main(argv=None):
    """CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code: 0 after a graceful shutdown, 1 on any failure
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = resolve_config(args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    print_banner(config)

    user = get_username()
    hostname = get_hostname()

    try:
        if args.skip_provision:
            key_pair = existing_keypair(config.ssh_dir, config.key_name)
        else:
            key_pair = provision(config, user, hostname, assume_yes=args.yes)
    except ProvisionError as e:
        logger.error("Provisioning failed: %s", e)
        return 1
    if key_pair is None:
        return 1

    local_ip = get_primary_ip()
    public_ip = get_public_ip(config.public_ip_url) if config.lookup_public_ip else "unavailable"

    if config.port and is_port_in_use(config.port, config.bind):
        print(f"Warning: Port {config.port} is already in use.")
        print("Please use a different port or terminate the existing process.")
        if not confirm("Do you want to continue?", args.yes):
            return 1

    print_server_info(config, local_ip, public_ip)

    session = Session(SessionConfig(
        private_key_path=key_pair.private_key,
        public_key_path=key_pair.public_key,
        key_name=config.key_name,
        port=config.port,
        timeout=config.timeout,
        bind=config.bind,
        local_ip=local_ip,
        user=user,
        hostname=hostname,
        generated_at=key_pair.generated_at,
    ))

    try:
        trigger = session.run()
    except StagingError as e:
        logger.error("Failed to stage key files: %s", e)
        return 1
    except BindError as e:
        logger.error("Failed to start server: %s", e)
        return 1

    logger.debug("Session ended by %s", trigger.value if trigger else "unknown")
    print_summary(config, session, user, local_ip)
    return 0


if __name__ == "__main__":
    sys.exit(main())
