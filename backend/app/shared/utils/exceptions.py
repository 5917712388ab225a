"""
Custom Exceptions for the WhatsApp Engagement Backend.

Raised by services for caller-facing flows (REST endpoints). The webhook and
AI pipelines catch everything and log instead.
"""
from typing import Union


class EntityNotFoundError(Exception):
    """
    Raised when a requested entity does not exist in the database.
    """
    def __init__(self, entity_type: str, entity_id: Union[int, str]):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.message = f"{entity_type} with ID {entity_id} not found."
        super().__init__(self.message)


class InvalidStateError(Exception):
    """
    Raised when an operation is not allowed for the entity's current state,
    e.g. starting a conversation with a customer that has no WhatsApp number.
    """
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
