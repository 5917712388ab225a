# backend/tests/conftest.py
"""
Shared fixtures for all test modules.
Simplified version - avoids async fixtures to prevent event loop issues.
"""
import os

# Settings require DATABASE_URL at import time; tests never need a real PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_app.db")

import pytest
from fastapi.testclient import TestClient

# Import app
from app.main import app


# --- TEST CLIENT FIXTURE ---
@pytest.fixture(scope="module")
def test_client():
    """Create a FastAPI test client."""
    return TestClient(app)


# --- DATABASE FIXTURE ---
@pytest.fixture
def sqlite_url(tmp_path):
    """URL of a throwaway SQLite database file for repository/service tests."""
    return f"sqlite+aiosqlite:///{tmp_path / 'engagement_test.db'}"


# --- SAMPLE DATA FIXTURES ---
@pytest.fixture
def sample_conversation():
    """An active conversation as returned by the repositories."""
    return {
        "id": 10,
        "customer_id": 7,
        "whatsapp_number": "5215512345678",
        "status": "active",
        "message_count": 3,
        "last_message_from": "customer",
    }


@pytest.fixture
def sample_inbound_payload():
    """Cloud API webhook delivery carrying one text message."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"display_phone_number": "15550000000", "phone_number_id": "123456"},
                            "contacts": [{"profile": {"name": "Ana"}, "wa_id": "5215512345678"}],
                            "messages": [
                                {
                                    "from": "5215512345678",
                                    "id": "wamid.IN1",
                                    "timestamp": "1700000000",
                                    "type": "text",
                                    "text": {"body": "Hola, me interesa un lote"}
                                }
                            ]
                        }
                    }
                ]
            }
        ]
    }


@pytest.fixture
def sample_status_payload():
    """Cloud API webhook delivery carrying one delivery report."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "123456"},
                            "statuses": [
                                {
                                    "id": "wamid.OUT1",
                                    "status": "delivered",
                                    "timestamp": "1700000100",
                                    "recipient_id": "5215512345678"
                                }
                            ]
                        }
                    }
                ]
            }
        ]
    }
