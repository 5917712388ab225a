"""
WhatsApp Cloud API webhook envelope.

Only the routing structure is modelled; message and status items stay raw
dicts because they are stored as-is in the message metadata. Unknown keys are
ignored so new provider fields never break ingestion.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


class WebhookValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messaging_product: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    contacts: List[Dict[str, Any]] = Field(default_factory=list)
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    statuses: List[Dict[str, Any]] = Field(default_factory=list)


class WebhookChange(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: Optional[str] = None
    value: WebhookValue = Field(default_factory=WebhookValue)


class WebhookEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    changes: List[WebhookChange] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    """
    {"object": "whatsapp_business_account",
     "entry": [{"changes": [{"field": "messages", "value": {...}}]}]}
    """
    model_config = ConfigDict(extra="ignore")

    object: Optional[str] = None
    entry: List[WebhookEntry] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    """Response for webhook processing (always HTTP 200)"""
    success: bool
    error: Optional[str] = None
