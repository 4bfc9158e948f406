"""Centralized ID generation utilities for shakepay."""

import uuid


def generate_session_id() -> str:
    """Generate a unique session ID.

    Returns:
        ``session-`` followed by 16 hex characters.
    """
    return f"session-{uuid.uuid4().hex[:16]}"


def generate_job_id() -> str:
    """Generate a unique background job ID.

    Returns:
        A short 8-character hex string.
    """
    return uuid.uuid4().hex[:8]


def generate_candidate_id() -> str:
    return str(uuid.uuid4())
