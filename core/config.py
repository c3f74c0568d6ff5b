"""Observer configuration.

All settings come from environment variables, with a .env file in the
working directory loaded first. Nothing is required. Every setting has a
default that runs a local observer out of the box.

Environment variables:
    OBSERVER_ID              Identity sent in dock replies.
    MESH_HOST / MESH_PORT    UDP interface and port the mesh listener binds.
    OBSERVER_DB_PATH         SQLite file for the audit and operation logs.
    OBSERVER_LOG_FILE        Rotating log file written by the entry points.
    ALLOWED_ORIGINS          Comma-separated CORS origins for the HTTP API.
    RATE_LIMIT_WINDOW_MS     Rate-limit window length.
    RATE_LIMIT_MAX_REQUESTS  Requests allowed per client per window.
    NOTIFICATION_HISTORY     How many recent notifications the API can serve.
"""

import logging
import logging.handlers
import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Validated runtime settings. Build with Settings.from_env()."""

    observer_id: str = "consciousness-mcp"
    mesh_host: str = "0.0.0.0"
    mesh_port: int = Field(default=3028, ge=0, le=65535)
    db_path: str = "observer.db"
    log_file: str = "observer.log"
    allowed_origins: list[str] = ["http://localhost:3000"]
    rate_limit_window_ms: int = Field(default=60_000, gt=0)
    rate_limit_max_requests: int = Field(default=100, gt=0)
    notification_history: int = Field(default=200, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load .env, then read every setting that is present in the environment.

        Raises:
            pydantic.ValidationError: If a variable is set to an invalid
                value (e.g. a non-numeric MESH_PORT). Fails at startup
                rather than at first use.
        """
        load_dotenv(find_dotenv(usecwd=True))
        env = {
            "observer_id": os.environ.get("OBSERVER_ID"),
            "mesh_host": os.environ.get("MESH_HOST"),
            "mesh_port": os.environ.get("MESH_PORT"),
            "db_path": os.environ.get("OBSERVER_DB_PATH"),
            "log_file": os.environ.get("OBSERVER_LOG_FILE"),
            "rate_limit_window_ms": os.environ.get("RATE_LIMIT_WINDOW_MS"),
            "rate_limit_max_requests": os.environ.get("RATE_LIMIT_MAX_REQUESTS"),
            "notification_history": os.environ.get("NOTIFICATION_HISTORY"),
        }
        origins = os.environ.get("ALLOWED_ORIGINS")
        if origins:
            env["allowed_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
        return cls(**{k: v for k, v in env.items() if v is not None})


LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(log_file: str, level: int = logging.INFO) -> None:
    """Attach a rotating file handler to the root logger.

    Called once by each process entry point (main.py, cli.py). Library
    modules only ever call logging.getLogger(__name__).
    """
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)
