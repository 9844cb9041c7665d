"""Small helpers shared by the store entities."""

import re
from typing import Any, Dict

_PRIVATE_NAME_PATTERN = re.compile(r'^[a-z]', re.IGNORECASE)


def extract_error_message(params: Dict[str, Any]) -> str:
    """Return the first error message in params["errors"], or ''."""
    errors = params.get('errors')
    if not errors:
        return ''
    first = errors[0]
    if isinstance(first, dict):
        return first.get('message') or 'Unknown error.'
    return str(first) or 'Unknown error.'


def is_private_name(dialog_id: str) -> bool:
    """Nicks start with a letter, channel names with a prefix such as # or &."""
    return bool(_PRIVATE_NAME_PATTERN.match(dialog_id or ''))
