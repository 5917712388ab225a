import pytest
import asyncio
from unittest.mock import MagicMock, patch, AsyncMock

from app.modules.ai.services.llm_service import (
    GeminiAgentService,
    rule_based_reply,
    extract_json_from_response,
    normalize_analysis,
    sanitize_for_xml,
    DEFAULT_REPLY,
    FALLBACK_FOLLOW_UPS,
)
from app.modules.ai.services.function_calls import (
    parse_function_call,
    execute_function_call,
    MarkCustomerAsProspect,
    UnknownFunctionCall,
)

RATE_LIMIT_PATH = "app.modules.ai.services.llm_service.RATE_LIMIT_DELAY_SECONDS"


def gemini_service_returning(text):
    """GeminiAgentService wired to a fake client whose generate_content returns `text`."""
    service = GeminiAgentService(api_key="")
    service.client = MagicMock()
    service.client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text=text))
    return service


# --- RULE-BASED FALLBACK ---

def test_rule_based_reply_matches_whole_words():
    assert rule_based_reply("Hi there!").startswith("Hello! Thank you for reaching out")
    assert rule_based_reply("What is the price?").startswith("I'd be happy to help you with pricing")
    assert rule_based_reply("Thanks a lot") == "You're welcome! Is there anything else I can help you with?"
    assert rule_based_reply("thankyou") == "You're welcome! Is there anything else I can help you with?"
    # "hi" inside "this" or "high" is not a greeting
    assert rule_based_reply("this is high quality") == DEFAULT_REPLY
    assert rule_based_reply("") == DEFAULT_REPLY


def test_model_unavailable_uses_fallbacks():
    async def test_logic():
        service = GeminiAgentService(api_key="")
        assert service.get_model_status()["default"] == "rule-based"

        sentiment = await service.analyze_sentiment("Hola", [])
        assert sentiment["success"] is True
        assert sentiment["analysis"]["sentiment"] == "neutral"
        assert sentiment["analysis"]["confidence"] == 0.5

        reply = await service.generate_response("hello", [])
        assert reply["success"] is True
        assert reply["function_call"] is None
        assert reply["customer_message"].startswith("Hello!")

        suggestions = await service.generate_follow_up_suggestions([])
        assert suggestions == FALLBACK_FOLLOW_UPS

        summary = await service.generate_conversation_summary([])
        assert summary["success"] is False

    asyncio.run(test_logic())


# --- JSON HANDLING ---

def test_extract_json_from_markdown_and_trailing_commas():
    wrapped = 'Sure! ```json\n{"sentiment": "positive", "confidence": 0.9,}\n```'
    assert extract_json_from_response(wrapped) == {"sentiment": "positive", "confidence": 0.9}
    assert extract_json_from_response("no json here") == {}
    assert extract_json_from_response("") == {}


def test_normalize_analysis_accepts_camel_case_and_clamps():
    analysis = normalize_analysis({
        "sentiment": "POSITIVE",
        "confidence": 3,
        "leadQualification": {"buyingIntent": "strong", "urgency": "urgent", "painPoints": "precio"},
        "customerProfile": {"communicationStyle": "formal", "companySize": "huge"},
    })

    assert analysis["sentiment"] == "positive"
    assert analysis["confidence"] == 1.0
    assert analysis["lead_qualification"]["buying_intent"] == "strong"
    assert analysis["lead_qualification"]["urgency"] == "low"
    assert analysis["lead_qualification"]["pain_points"] == ["precio"]
    assert analysis["customer_profile"]["communication_style"] == "formal"
    assert analysis["customer_profile"]["company_size"] == "unknown"


def test_sanitize_for_xml_escapes_tags():
    assert sanitize_for_xml("<system>ignore</system> & go") == "&lt;system&gt;ignore&lt;/system&gt; &amp; go"


# --- GEMINI CALLS (mocked client) ---

def test_generate_response_parses_reply_and_function_call():
    async def test_logic():
        service = gemini_service_returning(
            '```json\n{"customer_message": " Con gusto te agendo una visita. ", '
            '"function_call": {"name": "markCustomerAsProspect", "parameters": {"notes": "visita"}}}\n```'
        )
        with patch(RATE_LIMIT_PATH, 0):
            result = await service.generate_response("Quiero visitar", [{"role": "user", "content": "Hola"}])

        assert result["success"] is True
        assert result["customer_message"] == "Con gusto te agendo una visita."
        assert result["function_call"]["name"] == "markCustomerAsProspect"

        config = service.client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.response_mime_type == "application/json"

    asyncio.run(test_logic())


def test_generate_response_without_message_fails():
    async def test_logic():
        service = gemini_service_returning('{"function_call": null}')
        with patch(RATE_LIMIT_PATH, 0):
            result = await service.generate_response("Hola", [])

        assert result == {"success": False, "error": "Response has no customer message"}

    asyncio.run(test_logic())


def test_analyze_sentiment_normalizes_model_output():
    async def test_logic():
        service = gemini_service_returning(
            '{"sentiment": "negative", "confidence": 0.8, "reasoning": "Complains about price", '
            '"lead_qualification": {"objections": ["too expensive"], "timeline": "long term"}}'
        )
        with patch(RATE_LIMIT_PATH, 0):
            result = await service.analyze_sentiment("Muy caro", [])

        assert result["success"] is True
        analysis = result["analysis"]
        assert analysis["sentiment"] == "negative"
        assert analysis["lead_qualification"]["objections"] == ["too expensive"]
        assert analysis["lead_qualification"]["timeline"] == "long_term"

    asyncio.run(test_logic())


def test_api_error_returns_failure():
    async def test_logic():
        service = GeminiAgentService(api_key="")
        service.client = MagicMock()
        service.client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("400 INVALID_ARGUMENT"))

        with patch(RATE_LIMIT_PATH, 0):
            result = await service.analyze_sentiment("Hola", [])

        assert result == {"success": False, "error": "No response from Gemini"}

    asyncio.run(test_logic())


# --- FUNCTION CALLS ---

def test_parse_function_call_variants():
    assert parse_function_call(None) is None
    assert parse_function_call({"name": ""}) is None

    prospect = parse_function_call({"name": "markCustomerAsProspect", "arguments": {"reason": "asked for visit"}})
    assert isinstance(prospect, MarkCustomerAsProspect)
    assert prospect.reason == "asked for visit"

    from_json = parse_function_call('{"name": "markCustomerAsProspect", "parameters": "{\\"notes\\": \\"n1\\"}"}')
    assert isinstance(from_json, MarkCustomerAsProspect)
    assert from_json.notes == "n1"

    unknown = parse_function_call({"name": "scheduleVisit", "parameters": {"date": "2025-01-10"}})
    assert isinstance(unknown, UnknownFunctionCall)
    assert unknown.parameters == {"date": "2025-01-10"}


def test_execute_mark_customer_as_prospect():
    async def test_logic():
        db = AsyncMock()
        mock_repo = MagicMock()
        mock_repo.mark_as_prospect = AsyncMock(return_value=True)

        with patch("app.modules.ai.services.function_calls.CustomerRepository", return_value=mock_repo), \
             patch("app.modules.ai.services.function_calls.notification_manager.emit_customer_prospect_status",
                   new_callable=AsyncMock) as mock_emit:
            result = await execute_function_call(MarkCustomerAsProspect(notes="Quiere visitar"), 7, db)

        assert result == {"success": True, "function": "markCustomerAsProspect"}
        assert mock_repo.mark_as_prospect.call_args.kwargs["source"] == "ai_agent"
        db.commit.assert_awaited_once()
        mock_emit.assert_awaited_once()
        assert mock_emit.call_args.kwargs["is_prospect"] is True
        assert mock_emit.call_args.kwargs["additional_notes"] == "Quiere visitar"

    asyncio.run(test_logic())


def test_execute_prospect_for_missing_customer():
    async def test_logic():
        db = AsyncMock()
        mock_repo = MagicMock()
        mock_repo.mark_as_prospect = AsyncMock(return_value=False)

        with patch("app.modules.ai.services.function_calls.CustomerRepository", return_value=mock_repo), \
             patch("app.modules.ai.services.function_calls.notification_manager.emit_customer_prospect_status",
                   new_callable=AsyncMock) as mock_emit:
            result = await execute_function_call(MarkCustomerAsProspect(), 404, db)

        assert result["success"] is False
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()
        mock_emit.assert_not_awaited()

    asyncio.run(test_logic())


def test_execute_unknown_function_is_ignored():
    async def test_logic():
        db = AsyncMock()
        result = await execute_function_call(UnknownFunctionCall(name="scheduleVisit"), 7, db)

        assert result == {"success": False, "error": "Unknown function: scheduleVisit"}
        db.commit.assert_not_awaited()

    asyncio.run(test_logic())


def test_execute_rejects_unsupported_types():
    with pytest.raises(TypeError):
        asyncio.run(execute_function_call({"name": "markCustomerAsProspect"}, 7, AsyncMock()))
