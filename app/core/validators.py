"""
Input Validators and Sanitizers

This module provides validation and sanitization functions for values that
end up as rate limit identifiers or document ids.

Security Considerations:
- Identifiers are stored as keys, so their length is bounded
- Document ids come from path parameters and are restricted to a safe charset
"""

import re
from typing import Optional

MAX_IDENTIFIER_LENGTH = 200


def sanitize_document_id(document_id: str) -> Optional[str]:
    """
    Sanitize and validate a document id taken from a URL path.

    Args:
        document_id: The raw id

    Returns:
        Sanitized id if valid, None otherwise
    """
    if not document_id or not isinstance(document_id, str):
        return None

    document_id = document_id.strip()

    if len(document_id) > 64:
        return None

    # Ids are generated as hex uuids, but allow the usual url-safe set
    if not re.match(r'^[0-9a-zA-Z_-]+$', document_id):
        return None

    return document_id


def sanitize_identifier(identifier: str) -> Optional[str]:
    """
    Validate a rate limit identifier such as ``user:42`` or ``ip:10.0.0.1``.

    Whitespace, control characters and values longer than
    MAX_IDENTIFIER_LENGTH are rejected.
    """
    if not identifier or not isinstance(identifier, str):
        return None

    identifier = identifier.strip()
    if not identifier or re.search(r'[\s\x00-\x1f]', identifier):
        return None

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        return None

    return identifier
