"""
JSON Utility Functions
Tolerant parsing for payloads coming from the AI model and the
WhatsApp provider, where a field may be a dict or a JSON-encoded string.
"""
import json
from typing import Any, Union, List, Dict


def safe_json_parse(
    data: Any,
    default: Any = None
) -> Union[Dict, List, Any]:
    """
    Parse JSON data, accepting strings and already-parsed objects.

    Examples:
        >>> safe_json_parse('{"key": "value"}')
        {'key': 'value'}

        >>> safe_json_parse({'already': 'parsed'})
        {'already': 'parsed'}

        >>> safe_json_parse('invalid json', default={})
        {}
    """
    if data is None:
        return default

    if isinstance(data, (dict, list)):
        return data

    if isinstance(data, str):
        if not data.strip():
            return default
        try:
            return json.loads(data)
        except (json.JSONDecodeError, ValueError):
            return default

    return default
