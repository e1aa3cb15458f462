"""Server package for the ephemeral key share daemon.

Stages an SSH key pair into a temporary directory, serves it over plain
HTTP for a bounded window and removes everything on shutdown.
"""

from server.httpd import (
    EphemeralServer,
    KeyShareHandler,
    RequestLog,
    RequestRecord,
    BindError,
    NotFoundError,
    is_port_in_use,
    DEFAULT_PORT,
    DEFAULT_BIND,
)
from server.index_page import (
    IndexInfo,
    render_index,
)
from server.session import (
    Session,
    SessionConfig,
    run_session,
)
from server.shutdown import (
    ShutdownCoordinator,
    ShutdownState,
    ShutdownTrigger,
    DEFAULT_TIMEOUT,
)
from server.staging import (
    StagingDirectory,
    StagingError,
    stage,
)

__all__ = [
    # Server
    "EphemeralServer",
    "KeyShareHandler",
    "RequestLog",
    "RequestRecord",
    "BindError",
    "NotFoundError",
    "is_port_in_use",
    "DEFAULT_PORT",
    "DEFAULT_BIND",
    # Index page
    "IndexInfo",
    "render_index",
    # Session
    "Session",
    "SessionConfig",
    "run_session",
    # Shutdown
    "ShutdownCoordinator",
    "ShutdownState",
    "ShutdownTrigger",
    "DEFAULT_TIMEOUT",
    # Staging
    "StagingDirectory",
    "StagingError",
    "stage",
]
