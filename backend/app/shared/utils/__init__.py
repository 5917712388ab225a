"""
Shared Utility Functions
"""
from app.shared.utils.json_utils import safe_json_parse
from app.shared.utils.exceptions import EntityNotFoundError, InvalidStateError
from app.shared.utils.phone_utils import (
    validate_phone,
    normalize_whatsapp_number,
    PhoneValidationResult
)

__all__ = [
    "safe_json_parse",
    "EntityNotFoundError",
    "InvalidStateError",
    # Phone utilities
    "validate_phone",
    "normalize_whatsapp_number",
    "PhoneValidationResult"
]
