from __future__ import annotations
import uuid

# ========================================
#           IDENTIFIER HELPERS
# ========================================


def generate_request_id() -> str:
    """Generate a new UUID v4 for a single outbound frame"""
    return str(uuid.uuid4())


def generate_connection_key() -> str:
    """Generate a new UUID v4 scoping one physical connection"""
    return str(uuid.uuid4())


def is_uuid_v4(s: str) -> bool:
    """
    enforces that IDs like request_id or connection keys are valid UUIDv4s in canonical string form
    """
    try:
        u = uuid.UUID(s)
        return u.version == 4 and str(u) == s.lower()
    except (TypeError, ValueError, AttributeError):
        return False


def redact(secret: str, keep: int = 6) -> str:
    """
    Shorten a credential for display: 'eyJhbGciOi...' style.

    Returns '<empty>' for an empty or missing value.
    """
    if not secret:
        return "<empty>"
    if len(secret) <= keep:
        return "*" * len(secret)
    return f"{secret[:keep]}..."
