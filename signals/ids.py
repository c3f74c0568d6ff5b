"""Operation id resolution policies.

Every Operation needs a stable operation_id. It is the uniqueness key
that makes recording idempotent under re-delivery. Producers usually supply
one; when they do not, the observer synthesizes one from the clock.

Each family gets its own named policy so the tie-break order is explicit
and testable on its own. All policies are pure: the current time is passed
in, never read.
"""

from schemas.payloads import AstrosentryPayload, BuildPayload, SearchPayload, VerificationPayload


def resolve_search_id(payload: SearchPayload, now_ms: int) -> str:
    """search_id, else "search-<ms>"."""
    return payload.search_id or f"search-{now_ms}"


def resolve_build_id(payload: BuildPayload, now_ms: int) -> str:
    """build_id, else the server_name being built, else "build-<ms>".

    The same id is used as the build-started attention target and as the
    completion Operation's id, so a start and its completion line up.
    """
    return payload.build_id or payload.server_name or f"build-{now_ms}"


def resolve_verification_id(payload: VerificationPayload, now_ms: int) -> str:
    """verification_id, else "verify-<ms>"."""
    return payload.verification_id or f"verify-{now_ms}"


def synthesize_astrosentry_id(payload: AstrosentryPayload, server_name: str, now_ms: int) -> str:
    """"<serverId>-<eventType>-<ms>". Bridged events never carry their own id."""
    server = payload.server_id or server_name
    return f"{server}-{payload.event_type or 'unknown'}-{now_ms}"
