"""Key share session: stage, serve, shut down, clean up.

A session owns the staging directory and the listening socket from bind to
cleanup. Exactly one session runs per invocation.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from server.httpd import DEFAULT_BIND, DEFAULT_PORT, EphemeralServer, RequestLog
from server.index_page import IndexInfo, render_index
from server.shutdown import (
    DEFAULT_TIMEOUT,
    POLL_INTERVAL,
    ShutdownCoordinator,
    ShutdownState,
    ShutdownTrigger,
)
from server.staging import StagingDirectory, stage

logger = logging.getLogger(__name__)


@dataclass
class SessionConfig:
    """Inputs for one session, handed over by the provisioner."""
    private_key_path: Path
    public_key_path: Path
    key_name: str = "id_rsa"
    port: int = DEFAULT_PORT
    timeout: int = DEFAULT_TIMEOUT
    bind: str = DEFAULT_BIND
    local_ip: str = "127.0.0.1"
    user: str = ""
    hostname: str = ""
    generated_at: Optional[datetime] = None
    staging_parent: Optional[Path] = None

    def index_info(self, port: Optional[int] = None) -> IndexInfo:
        return IndexInfo(
            key_name=self.key_name,
            local_ip=self.local_ip,
            port=self.port if port is None else port,
            user=self.user,
            hostname=self.hostname,
            timeout=self.timeout,
            generated_at=self.generated_at,
        )


class Session:
    """One run of the ephemeral distribution server."""

    def __init__(self, config: SessionConfig):
        self.config = config
        self.coordinator = ShutdownCoordinator(timeout=config.timeout)
        self.request_log = RequestLog()
        self.staging: Optional[StagingDirectory] = None
        self.server: Optional[EphemeralServer] = None
        self.started_at: Optional[float] = None

    @property
    def state(self) -> ShutdownState:
        return self.coordinator.state

    @property
    def trigger(self) -> Optional[ShutdownTrigger]:
        return self.coordinator.trigger

    @property
    def port(self) -> int:
        """Actual bound port (differs from config when configured as 0)."""
        if self.server:
            return self.server.port
        return self.config.port

    @property
    def staging_root(self) -> Optional[Path]:
        return self.staging.root if self.staging else None

    def start(self):
        """Stage artifacts, bind the socket and begin serving.

        Raises:
            StagingError: If staging fails (nothing is left behind)
            BindError: If the port cannot be bound (staging is removed)
        """
        index_content = render_index(self.config.index_info())
        self.staging = stage(
            self.config.private_key_path,
            self.config.public_key_path,
            index_content,
            key_name=self.config.key_name,
            parent_dir=self.config.staging_parent,
        )

        try:
            self.server = EphemeralServer(
                self.staging,
                bind=self.config.bind,
                port=self.config.port,
                request_log=self.request_log,
            ).start()
            if self.server.port != self.config.port:
                # OS-assigned port: advertise the one actually bound
                self.staging.write_index(render_index(self.config.index_info(self.server.port)))
            self.server.serve_in_background()
        except Exception:
            self.close()
            raise

        self.started_at = time.time()
        self.coordinator.mark_running()
        logger.info("Server will auto-shutdown after %s seconds.", self.config.timeout)

    def stop(self, trigger: ShutdownTrigger = ShutdownTrigger.ADMIN) -> bool:
        """Request shutdown. Safe from any thread, idempotent."""
        return self.coordinator.request_stop(trigger)

    def close(self) -> bool:
        """Drive the session to STOPPED, running cleanup exactly once."""
        return self.coordinator.finish(self._teardown)

    def _teardown(self):
        try:
            if self.server:
                self.server.shutdown()
        except Exception as e:
            logger.warning("Error shutting down server: %s", e)
        finally:
            if self.staging:
                logger.info("Server shutdown. Cleaning up temporary files...")
                self.staging.cleanup()

    def wait(self, poll_interval: float = POLL_INTERVAL) -> Optional[ShutdownTrigger]:
        """Block until shutdown is requested."""
        return self.coordinator.wait(poll_interval)

    def run(self, install_signals: bool = True) -> Optional[ShutdownTrigger]:
        """Start, serve until timeout/signal/stop, then clean up.

        Args:
            install_signals: Route SIGINT/SIGTERM into the shutdown gate
                (only effective on the main thread)

        Returns:
            The trigger that ended the session
        """
        installed = install_signals and self.coordinator.install_signal_handlers()
        try:
            self.start()
            trigger = self.wait()
            logger.info("Stopping session (%s)", trigger.value if trigger else "unknown")
        finally:
            self.close()
            if installed:
                self.coordinator.restore_signal_handlers()
        return self.trigger

    def downloads(self) -> List[str]:
        """Artifacts that were downloaded at least once."""
        names = [self.config.key_name, f"{self.config.key_name}.pub"]
        return [n for n in names if self.request_log.downloads(n)]

    def __enter__(self) -> "Session":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def run_session(config: SessionConfig, install_signals: bool = True) -> Session:
    """Run a session to completion and return it (in STOPPED state)."""
    session = Session(config)
    session.run(install_signals=install_signals)
    return session
