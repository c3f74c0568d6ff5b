"""Consciousness Observer — service entry point.

Starts one process that does two things:

1. Listens on the mesh (UDP) and routes every inbound signal: each one is
   written to the audit log, terminal work is derived into operations, and
   notifications are raised for downstream pattern detection.

2. Serves the HTTP API: the read endpoints over both logs and the
   HTTP → mesh bridge for astrosentry outcome reports.

Flow for one datagram:
    UDP :MESH_PORT
        → decode JSON → Signal
        → SignalRouter.route()
            → attention event (always)
            → family handler → operation? notifications?
            → DOCK_APPROVED reply (dock requests only)

Run locally:
    uv run uvicorn main:app
"""

import logging

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from api.app import create_app
from core.config import Settings, configure_logging

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

settings = Settings.from_env()
configure_logging(settings.log_file)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = create_app(settings)

logger.info(
    "Observer '%s' configured: mesh %s:%d, store %s.",
    settings.observer_id,
    settings.mesh_host,
    settings.mesh_port,
    settings.db_path,
)


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000)
