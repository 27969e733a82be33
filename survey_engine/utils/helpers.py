"""
Utility helper functions for the survey engine
"""

import uuid
from datetime import datetime, timezone


def generate_session_id(short=True):
    """
    Generate unique session identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Session ID

    Examples:
        >>> generate_session_id()
        'a3f7e2b9'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def utc_timestamp():
    """Current UTC time as an ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat()
