# backend/tests/test_main.py
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock
from app.main import app
from app.modules.whatsapp.services.whatsapp_client import WhatsAppNonRetryableError
from app.shared.utils.exceptions import EntityNotFoundError

# Create a test client (acts like a fake browser/frontend)
client = TestClient(app)

ENDPOINTS = "app.modules.whatsapp.api.whatsapp_endpoints"


def test_root():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "WhatsApp Engagement API is running"}


# --- WEBHOOK ---

def test_webhook_verification_echoes_challenge():
    with patch(f"{ENDPOINTS}.WebhookService.handle_verification", new_callable=AsyncMock, return_value="1158201444"):
        response = client.get(
            "/api/v1/whatsapp/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "token", "hub.challenge": "1158201444"}
        )

    assert response.status_code == 200
    assert response.text == "1158201444"
    assert response.headers["content-type"].startswith("text/plain")


def test_webhook_verification_token_mismatch():
    with patch(f"{ENDPOINTS}.WebhookService.handle_verification", new_callable=AsyncMock, return_value=None):
        response = client.get("/api/v1/whatsapp/webhook", params={"hub.challenge": "1"})

    assert response.status_code == 403


def test_webhook_post_always_answers_200(sample_inbound_payload):
    """
    Processing results (good or bad) never turn into a non-2xx for the provider.
    """
    with patch(f"{ENDPOINTS}.WebhookService.process_payload", new_callable=AsyncMock, return_value={"success": True}):
        ok = client.post("/api/v1/whatsapp/webhook", json=sample_inbound_payload)

    with patch(f"{ENDPOINTS}.WebhookService.process_payload", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
        crashed = client.post("/api/v1/whatsapp/webhook", json=sample_inbound_payload)

    invalid = client.post(
        "/api/v1/whatsapp/webhook",
        content=b"not json",
        headers={"content-type": "application/json"}
    )

    assert ok.status_code == 200
    assert ok.json() == {"success": True, "error": None}
    assert crashed.status_code == 200
    assert crashed.json()["success"] is False
    assert invalid.status_code == 200
    assert invalid.json() == {"success": False, "error": "Invalid JSON payload"}


def test_webhook_response_carries_request_id(sample_status_payload):
    with patch(f"{ENDPOINTS}.WebhookService.process_payload", new_callable=AsyncMock, return_value={"success": True}):
        response = client.post(
            "/api/v1/whatsapp/webhook",
            json=sample_status_payload,
            headers={"X-Request-ID": "req-test1234"}
        )

    assert response.headers["X-Request-ID"] == "req-test1234"


# --- MESSAGING & CONVERSATIONS ---

def test_send_message_validates_phone():
    response = client.post("/api/v1/whatsapp/send-message", json={"to": "123", "message": "Hola"})
    assert response.status_code == 422


def test_send_message_maps_transport_error_to_502():
    error = WhatsAppNonRetryableError("Recipient not allowed", status_code=400)
    with patch(f"{ENDPOINTS}.WhatsAppService.send_text_message", new_callable=AsyncMock, side_effect=error):
        response = client.post(
            "/api/v1/whatsapp/send-message",
            json={"to": "+52 55 1234 5678", "message": "Hola"}
        )

    assert response.status_code == 502
    assert "Recipient not allowed" in response.json()["detail"]


def test_start_conversation_unknown_customer_is_404():
    with patch(f"{ENDPOINTS}.WhatsAppService.start_conversation", new_callable=AsyncMock,
               side_effect=EntityNotFoundError("Customer", 99)):
        response = client.post(
            "/api/v1/whatsapp/start-conversation",
            json={"customer_id": 99, "template_name": "start_conversation_es"}
        )

    assert response.status_code == 404


def test_conversation_history_exposes_metadata():
    history = {
        "conversation": {
            "id": 10,
            "customer_id": 7,
            "whatsapp_number": "5215512345678",
            "status": "active",
            "message_count": 1,
        },
        "messages": [
            {
                "id": 1,
                "conversation_id": 10,
                "customer_id": 7,
                "whatsapp_number": "5215512345678",
                "provider_message_id": "wamid.IN1",
                "sender_type": "customer",
                "message_type": "text",
                "content": "Hola",
                "status": "delivered",
                "is_template": False,
                "extra_data": {"customer_data": {"profile": {"name": "Ana"}}},
            }
        ],
    }
    with patch(f"{ENDPOINTS}.ConversationService.get_conversation_history", new_callable=AsyncMock, return_value=history):
        response = client.get("/api/v1/whatsapp/conversation/7")

    assert response.status_code == 200
    body = response.json()
    assert body["conversation"]["id"] == 10
    assert body["messages"][0]["metadata"]["customer_data"]["profile"]["name"] == "Ana"


def test_clear_unknown_conversation_is_404():
    with patch(f"{ENDPOINTS}.WhatsAppService.clear_conversation", new_callable=AsyncMock,
               side_effect=EntityNotFoundError("Conversation", 5)):
        response = client.post("/api/v1/whatsapp/conversation/5/clear")

    assert response.status_code == 404


# --- AI AGENT & REALTIME ---

def test_model_status():
    response = client.get("/api/v1/whatsapp/ai/model-status")
    assert response.status_code == 200
    assert response.json()["default"] in ("gemini", "rule-based")


def test_process_message_endpoint():
    result = {"success": True, "action": "template_sent", "template_name": "riviera_information_contact_es", "message": {}}
    with patch(f"{ENDPOINTS}.AIAgentService.process_customer_message", new_callable=AsyncMock, return_value=result):
        response = client.post(
            "/api/v1/whatsapp/ai/process-message",
            json={"whatsapp_number": "5215512345678", "message": "Hola"}
        )

    assert response.status_code == 200
    assert response.json()["action"] == "template_sent"


def test_realtime_status():
    response = client.get("/api/v1/realtime/status")
    assert response.status_code == 200
    assert "connectedClients" in response.json()


def test_websocket_join_general_room():
    with client.websocket_connect("/ws") as websocket:
        greeting = websocket.receive_json()
        assert greeting["event"] == "connected"

        websocket.send_json({"event": "joinWhatsAppGeneral"})
        joined = websocket.receive_json()
        assert joined["event"] == "whatsappGeneralJoined"
        assert joined["data"]["room"] == "general"

        websocket.send_json({"event": "noSuchEvent"})
        error = websocket.receive_json()
        assert error["event"] == "error"


def test_intelligent_follow_up_endpoint():
    result = {
        "success": True,
        "message_id": "wamid.FU1",
        "recorded": True,
        "follow_up": "¿Quieres agendar una visita?",
        "suggestions": ["¿Quieres agendar una visita?"],
        "data": {},
    }
    with patch(f"{ENDPOINTS}.AIAgentService.send_intelligent_follow_up", new_callable=AsyncMock, return_value=result):
        response = client.post("/api/v1/whatsapp/ai/intelligent-follow-up/7")

    assert response.status_code == 200
    assert response.json()["follow_up"] == "¿Quieres agendar una visita?"

    with patch(f"{ENDPOINTS}.AIAgentService.send_intelligent_follow_up", new_callable=AsyncMock,
               side_effect=EntityNotFoundError("Active conversation for customer", 8)):
        missing = client.post("/api/v1/whatsapp/ai/intelligent-follow-up/8")

    assert missing.status_code == 404


def test_analytics_endpoint_returns_summary():
    analytics = {
        "conversation_id": 10,
        "total_messages": 4,
        "customer_messages": 2,
        "agent_messages": 2,
        "status": "active",
        "average_response_time_ms": 900,
        "summary": "Cliente pregunta por financiación.",
        "latest_sentiment": "positive",
        "sentiment_trend": ["neutral", "positive"],
    }
    with patch(f"{ENDPOINTS}.AIAgentService.get_conversation_analytics", new_callable=AsyncMock, return_value=analytics):
        response = client.get("/api/v1/whatsapp/ai/analytics/7")

    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == "Cliente pregunta por financiación."
    assert body["sentiment_trend"] == ["neutral", "positive"]
