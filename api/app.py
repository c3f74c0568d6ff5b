"""Observer HTTP API.

Two concerns:

1. Read API — the audit log, the operation log, and recent notifications,
   for dashboards and the analysis jobs that mine them for patterns.

2. HTTP → mesh bridge — servers whose work happens behind HTTP endpoints
   (rather than on the mesh) report operational outcomes here. Each report
   is turned into an ASTROSENTRY_EVENT signal tagged source="http" and
   routed exactly like a datagram would be.

The app also owns the mesh listener: the lifespan handler binds the UDP
endpoint on startup and closes it, and the store, on shutdown.

    POST /astrosentry/events  → route as ASTROSENTRY_EVENT, 202
    GET  /attention-events    → newest audit records
    GET  /operations          → newest derived operations
    GET  /notifications       → newest notifications
    GET  /health              → liveness
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from api.middleware import AppError, create_limiter, install_middleware
from core.config import Settings
from core.notifier import Notifier
from core.store import ObservationStore, SQLiteStore, StorageError
from mesh.transport import start_listener
from schemas.events import Notification, NotificationName
from schemas.records import AttentionEvent, EventType, Operation, OperationOutcome
from schemas.signal import PROTOCOL_VERSION, Signal, SignalType
from signals.router import SignalRouter

logger = logging.getLogger(__name__)

BRIDGE_SOURCE = "http"
MAX_QUERY_LIMIT = 1000


class AstrosentryEventIn(BaseModel):
    """An operational outcome reported over HTTP.

    Attributes:
        server_id:  Server the operation ran on ("serverId").
        event_type: Operation category ("eventType"), e.g. "context_save".
        operation:  Specific operation name, e.g. "POST /api/context".
        outcome:    "success", "failure", or another state (partial). Omit
            it to log the event without deriving an Operation.
        metadata:   Anything else worth keeping for pattern analysis.
    """

    model_config = ConfigDict(populate_by_name=True)

    server_id: str = Field(alias="serverId", min_length=1)
    event_type: str = Field(alias="eventType", min_length=1)
    operation: str
    outcome: str | None = None
    metadata: dict = Field(default_factory=dict)

    def to_signal(self, now_s: int) -> Signal:
        return Signal(
            signal_type=SignalType.ASTROSENTRY_EVENT,
            version=PROTOCOL_VERSION,
            timestamp=now_s,
            payload={
                "sender": self.server_id,
                "serverId": self.server_id,
                "eventType": self.event_type,
                "operation": self.operation,
                "outcome": self.outcome,
                "metadata": self.metadata,
                "source": BRIDGE_SOURCE,
            },
        )


def create_app(
    settings: Settings,
    store: ObservationStore | None = None,
    listen: bool = True,
) -> FastAPI:
    """Wire store, notifier, router, and (optionally) the mesh listener.

    Args:
        settings: Runtime settings.
        store:    Backing store. Defaults to SQLiteStore(settings.db_path).
        listen:   Bind the UDP mesh listener during the app lifespan. Tests
            pass False and drive the router directly.
    """
    store = store if store is not None else SQLiteStore(settings.db_path)
    notifier = Notifier(history_size=settings.notification_history)
    router = SignalRouter(store, notifier, observer_id=settings.observer_id)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        transport = None
        if listen:
            transport, _ = await start_listener(router, settings.mesh_host, settings.mesh_port)
        try:
            yield
        finally:
            if transport is not None:
                transport.close()
            store.close()
            logger.info("Observer stopped.")

    app = FastAPI(title="Consciousness Observer", lifespan=lifespan)
    app.state.store = store
    app.state.notifier = notifier
    app.state.router = router

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    install_middleware(
        app,
        create_limiter(settings.rate_limit_window_ms, settings.rate_limit_max_requests),
    )

    # ---------------------------------------------------------------------------
    # Health
    # ---------------------------------------------------------------------------

    @app.get("/health")
    def health():
        return {"status": "ok", "observer_id": settings.observer_id}

    # ---------------------------------------------------------------------------
    # HTTP → mesh bridge
    # ---------------------------------------------------------------------------

    @app.post("/astrosentry/events", status_code=202)
    async def astrosentry_event(body: AstrosentryEventIn, request: Request):
        """Route an HTTP-reported outcome as an ASTROSENTRY_EVENT signal.

        async so routing runs on the event loop thread, the same thread
        that routes UDP datagrams.
        """
        signal = body.to_signal(int(time.time()))
        host = request.client.host if request.client else "unknown"
        port = request.client.port if request.client else 0
        router.route(signal, (host, port))
        return {"status": "accepted", "signal": signal.name}

    # ---------------------------------------------------------------------------
    # Read API
    # ---------------------------------------------------------------------------

    @app.get("/attention-events", response_model=list[AttentionEvent])
    def list_attention_events(
        limit: int = Query(100, ge=1, le=MAX_QUERY_LIMIT),
        server: str | None = None,
        event_type: EventType | None = None,
    ):
        try:
            return store.attention_events(limit=limit, server_name=server, event_type=event_type)
        except StorageError as exc:
            raise AppError.service_unavailable(f"Store unavailable: {exc}") from exc

    @app.get("/operations", response_model=list[Operation])
    def list_operations(
        limit: int = Query(100, ge=1, le=MAX_QUERY_LIMIT),
        server: str | None = None,
        outcome: OperationOutcome | None = None,
    ):
        try:
            return store.operations(limit=limit, server_name=server, outcome=outcome)
        except StorageError as exc:
            raise AppError.service_unavailable(f"Store unavailable: {exc}") from exc

    @app.get("/notifications", response_model=list[Notification])
    def list_notifications(
        limit: int = Query(100, ge=1, le=MAX_QUERY_LIMIT),
        name: NotificationName | None = None,
    ):
        return notifier.recent(limit=limit, name=name)

    return app
