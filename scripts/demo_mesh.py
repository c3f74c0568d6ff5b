"""Play a short mesh conversation at a running observer and print what it derived.

Start the service first (uv run uvicorn main:app), then:
    uv run python scripts/demo_mesh.py
"""

import json
import sys
import time

import httpx

from mesh.transport import send_signal
from schemas.signal import PROTOCOL_VERSION, Signal, SignalType

BASE_URL = "http://127.0.0.1:8000"
MESH_HOST = "127.0.0.1"
MESH_PORT = 3028
REPLY_TIMEOUT_SECONDS = 2.0

_CONVERSATION = [
    (SignalType.DOCK_REQUEST, {"sender": "search-mcp"}),
    (SignalType.HEARTBEAT, {"sender": "search-mcp", "uptime_s": 12}),
    (SignalType.SEARCH_STARTED, {"sender": "search-mcp", "query": "rate limiter"}),
    (SignalType.SEARCH_COMPLETED, {
        "sender": "search-mcp", "search_id": "demo-search-1",
        "query": "rate limiter", "results_count": 14, "duration_ms": 85,
    }),
    (SignalType.BUILD_STARTED, {"sender": "neurogenesis", "build_id": "demo-build-1"}),
    (SignalType.BUILD_FAILED, {
        "sender": "neurogenesis", "build_id": "demo-build-1",
        "error": "tsc exited with code 2",
    }),
    (SignalType.VERIFICATION_RESULT, {
        "sender": "verifier", "verification_id": "demo-verify-1",
        "claim": "the cache is invalidated on write", "verdict": "CONTRADICTED",
        "confidence": 0.8, "sources": ["store.py:212"],
    }),
    (SignalType.VALIDATION_REJECTED, {"sender": "context-guardian", "reason": "missing tests"}),
]


def _signal(signal_type: SignalType, payload: dict) -> Signal:
    return Signal(
        signal_type=signal_type,
        version=PROTOCOL_VERSION,
        timestamp=int(time.time()),
        payload=payload,
    )


def main() -> int:
    for signal_type, payload in _CONVERSATION:
        wait = REPLY_TIMEOUT_SECONDS if signal_type == SignalType.DOCK_REQUEST else 0.0
        reply = send_signal(_signal(signal_type, payload), MESH_HOST, MESH_PORT, timeout=wait)
        print(f"sent {signal_type.name} as {payload['sender']}")
        if reply is not None:
            print(f"  reply {reply.name}: {reply.payload.get('message')}")
        elif wait:
            print("  no dock reply, is the observer listening?", file=sys.stderr)

    try:
        with httpx.Client(base_url=BASE_URL, timeout=10) as client:
            bridged = client.post("/astrosentry/events", json={
                "serverId": "quartermaster",
                "eventType": "inventory_sync",
                "operation": "POST /api/sync",
                "outcome": "failure",
                "metadata": {"status": 502},
            })
            bridged.raise_for_status()
            print(f"bridged astrosentry event: {bridged.json()}")

            # UDP is fire-and-forget; give the listener a moment to catch up.
            time.sleep(0.5)
            operations = client.get("/operations", params={"limit": 10}).json()
    except httpx.HTTPError as exc:
        print(f"Failed to reach API at {BASE_URL}: {exc}", file=sys.stderr)
        print("Start it first with: uv run uvicorn main:app", file=sys.stderr)
        return 1

    print("\nDerived operations:")
    print(json.dumps(operations, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
