"""
Gemini Agent Service
Sentiment / lead-qualification analysis and reply generation for WhatsApp conversations.
Uses Google Gemini AI in JSON mode.

- Regex-tolerant JSON parsing (robust against markdown wrapping)
- Safe initialization (no crash if API key missing): rule-based fallbacks
- XML delimiters around customer text to keep it out of the instructions
- RATE LIMITING: honours GEMINI_TIER with delays and 429 retries

Every public method returns a result dict ({"success": bool, ...}) and never raises.
"""
import re
import json
import time
import asyncio
import logging
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types

from app.shared.core.config import settings
from app.shared.core.constants import TIMEOUT_GEMINI_AI, GEMINI_MODEL_NAME, MAX_PROMPT_FIELD_CHARS

logger = logging.getLogger("llm_service")


# ============================================
# RATE LIMITING CONFIGURATION
# ============================================
# GEMINI_TIER in .env:
#   - "free"   : 5 req/min  → 13s delay between calls (default)
#   - "paid"   : 60 req/min → 1s delay between calls
#   - "enterprise" : 1000+ req/min → no delay
GEMINI_TIER = (settings.GEMINI_TIER or "free").lower()

if GEMINI_TIER == "enterprise":
    RATE_LIMIT_DELAY_SECONDS = 0
elif GEMINI_TIER == "paid":
    RATE_LIMIT_DELAY_SECONDS = 1
else:
    RATE_LIMIT_DELAY_SECONDS = 13

MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 60  # Start with 60s if we hit 429


DEFAULT_SYSTEM_PROMPT = (
    "You are an intelligent sales agent specializing in selling real estate lots. "
    "Your primary objective is to interact with customers to offer and sell parcels of land. "
    "Each lot available is 500 square meters, priced at 70,000,000 pesos."
)

FALLBACK_FOLLOW_UPS = [
    "Thank you for your inquiry. Is there anything else I can help you with?",
    "Would you like me to connect you with a human agent for further assistance?",
]

# ============================================
# ALLOWED VALUES
# ============================================
SENTIMENTS = ("positive", "negative", "neutral")
URGENCY = ("high", "medium", "low")
BUYING_INTENT = ("strong", "moderate", "weak", "none")
BUDGET = ("high", "medium", "low", "unknown")
TIMELINE = ("immediate", "short_term", "long_term", "unknown")
EXPERTISE = ("beginner", "intermediate", "expert")
COMPANY_SIZE = ("startup", "small", "medium", "large", "enterprise", "unknown")
COMMUNICATION_STYLE = ("formal", "casual", "technical", "business")


# ============================================
# RULE-BASED REPLIES (no model configured)
# ============================================
RULE_BASED_REPLIES = [
    (("hello", "hi", "hey"), "Hello! Thank you for reaching out. How can I assist you today?"),
    (("help", "support"), "I'm here to help! What specific assistance do you need?"),
    (("price", "cost", "quote"),
     "I'd be happy to help you with pricing information. Could you provide more details about what you're looking for?"),
    (("schedule", "appointment", "booking"),
     "To schedule an appointment, please let me know your preferred date and time, and I'll check our availability."),
    (("thank", "thanks"), "You're welcome! Is there anything else I can help you with?"),
    (("bye", "goodbye"),
     "Thank you for chatting with us! Have a great day. If you need anything else, feel free to reach out."),
]
DEFAULT_REPLY = (
    "Thank you for your message. I'm processing your request and will get back to you shortly. "
    "If this is urgent, please contact our support team directly."
)


def rule_based_reply(message: str) -> str:
    """Keyword reply used when Gemini is not configured. Keywords match whole words (or word prefixes)."""
    words = re.findall(r"[a-z]+", (message or "").lower())
    for keywords, reply in RULE_BASED_REPLIES:
        if any(word.startswith(keyword) if keyword == "thank" else word == keyword
               for word in words for keyword in keywords):
            return reply
    return DEFAULT_REPLY


def extract_json_from_response(text: str) -> dict:
    """
    Robustly extract JSON from AI response.
    Handles cases where AI wraps JSON in markdown or adds conversational text.
    """
    if not text:
        return {}

    first_brace = text.find('{')
    last_brace = text.rfind('}')

    if first_brace == -1 or last_brace == -1 or first_brace >= last_brace:
        logger.warning("No valid JSON object found in response")
        return {}

    json_str = text[first_brace:last_brace + 1]

    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.error(f"JSON parsing failed: {e}")
        json_str = re.sub(r',\s*([}\]])', r'\1', json_str)
        try:
            return json.loads(json_str)
        except json.JSONDecodeError:
            return {}


def sanitize_for_xml(text: str) -> str:
    """Sanitize text for safe inclusion in XML-style prompts."""
    if not text:
        return ""
    text = text.replace("&", "&amp;")
    text = text.replace("<", "&lt;")
    text = text.replace(">", "&gt;")
    return text[:MAX_PROMPT_FIELD_CHARS]


def format_history(history: List[Dict[str, str]]) -> str:
    if not history:
        return "No previous messages"
    return "\n".join(
        f"{item.get('role', 'user')}: {sanitize_for_xml(item.get('content', ''))}"
        for item in history
    )


def _pick(value: Any, allowed: tuple, default: str) -> str:
    value = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    return value if value in allowed else default


def _string_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(item) for item in value if item]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _get(data: dict, snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def normalize_analysis(raw: dict) -> Dict[str, Any]:
    """
    Coerce model output (camelCase or snake_case) into the stored shape,
    clamping every enumerated field to its allowed values.
    """
    lead = _get(raw, "lead_qualification", "leadQualification") or {}
    profile = _get(raw, "customer_profile", "customerProfile") or {}

    try:
        confidence = float(raw.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = min(max(confidence, 0.0), 1.0)

    return {
        "sentiment": _pick(raw.get("sentiment"), SENTIMENTS, "neutral"),
        "confidence": confidence,
        "reasoning": raw.get("reasoning") or "Analysis completed",
        "lead_qualification": {
            "urgency": _pick(lead.get("urgency"), URGENCY, "low"),
            "buying_intent": _pick(_get(lead, "buying_intent", "buyingIntent"), BUYING_INTENT, "none"),
            "budget_indication": _pick(_get(lead, "budget_indication", "budgetIndication"), BUDGET, "unknown"),
            "decision_maker": bool(_get(lead, "decision_maker", "decisionMaker", False)),
            "timeline": _pick(lead.get("timeline"), TIMELINE, "unknown"),
            "pain_points": _string_list(_get(lead, "pain_points", "painPoints")),
            "objections": _string_list(lead.get("objections")),
            "positive_signals": _string_list(_get(lead, "positive_signals", "positiveSignals")),
            "risk_factors": _string_list(_get(lead, "risk_factors", "riskFactors")),
            "next_best_action": _get(lead, "next_best_action", "nextBestAction") or "",
        },
        "customer_profile": {
            "expertise": _pick(profile.get("expertise"), EXPERTISE, "beginner"),
            "industry": profile.get("industry") or "unknown",
            "company_size": _pick(_get(profile, "company_size", "companySize"), COMPANY_SIZE, "unknown"),
            "role": profile.get("role") or "unknown",
            "communication_style": _pick(
                _get(profile, "communication_style", "communicationStyle"), COMMUNICATION_STYLE, "casual"
            ),
        },
    }


def fallback_analysis(reasoning: str) -> Dict[str, Any]:
    """Neutral analysis used when no model is configured."""
    analysis = normalize_analysis({"sentiment": "neutral", "confidence": 0.5, "reasoning": reasoning})
    analysis["lead_qualification"]["next_best_action"] = "Continue the conversation"
    return analysis


class GeminiAgentService:
    """
    AI collaborator of the conversation engine.

    1. analyze_sentiment() - sentiment + lead qualification + customer profile
    2. generate_response() - customer-facing reply plus optional function call
    3. generate_conversation_summary() / generate_follow_up_suggestions()
    """

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.client = None
        self.model_name = GEMINI_MODEL_NAME
        self.last_api_call_time = 0  # For rate limiting

        if self.api_key:
            try:
                self.client = genai.Client(api_key=self.api_key)
            except Exception as e:
                logger.error(f"Failed to initialize Gemini client: {e}")
                self.client = None
        else:
            logger.warning("GEMINI_API_KEY is missing - AI features will use rule-based fallbacks")

    def _is_available(self) -> bool:
        return self.client is not None

    def get_model_status(self) -> Dict[str, Any]:
        return {
            "gemini": self._is_available(),
            "model": self.model_name,
            "tier": GEMINI_TIER,
            "default": "gemini" if self._is_available() else "rule-based",
        }

    async def _rate_limited_generate(self, prompt: str, use_json_mode: bool = True):
        """
        Rate-limited API call with retry logic.

        - Enforces minimum delay between API calls
        - Retries on 429 errors with exponential backoff
        - Returns None if all retries fail
        """
        if not self._is_available():
            return None

        elapsed = time.time() - self.last_api_call_time
        if elapsed < RATE_LIMIT_DELAY_SECONDS:
            wait_time = RATE_LIMIT_DELAY_SECONDS - elapsed
            logger.info(f"⏱️ Rate limiting: waiting {wait_time:.1f}s before next API call")
            await asyncio.sleep(wait_time)

        config = types.GenerateContentConfig(response_mime_type="application/json") if use_json_mode else None

        for attempt in range(MAX_RETRIES):
            try:
                self.last_api_call_time = time.time()
                return await asyncio.wait_for(
                    self.client.aio.models.generate_content(
                        model=self.model_name,
                        contents=prompt,
                        config=config
                    ),
                    timeout=TIMEOUT_GEMINI_AI
                )

            except asyncio.TimeoutError:
                logger.error(f"❌ Gemini call timed out (>{TIMEOUT_GEMINI_AI}s)")
                return None
            except Exception as e:
                error_str = str(e)

                if "429" in error_str or "RESOURCE_EXHAUSTED" in error_str:
                    retry_delay = RETRY_BASE_DELAY_SECONDS * (2 ** attempt)
                    logger.warning(f"⚠️ Rate limited (429). Retry {attempt + 1}/{MAX_RETRIES} in {retry_delay}s")

                    if attempt < MAX_RETRIES - 1:
                        await asyncio.sleep(retry_delay)
                        continue
                    logger.error("❌ Max retries reached for rate limit")
                    return None

                logger.error(f"❌ API error: {e}")
                return None

        return None

    # ============================================
    # SENTIMENT / LEAD QUALIFICATION
    # ============================================

    async def analyze_sentiment(self, message: str, history: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Returns:
            {"success": True, "analysis": {...}} or {"success": False, "error": str}
        """
        if not self._is_available():
            return {
                "success": True,
                "analysis": fallback_analysis("Gemini model not configured for sentiment analysis"),
            }

        prompt = f"""
<context>
You analyse WhatsApp conversations between a real estate sales agent and a customer.
Judge the emotional tone of the customer's CURRENT message, qualify the lead and profile the customer.
</context>

<conversation_history>
{format_history(history)}
</conversation_history>

<current_message>
{sanitize_for_xml(message)}
</current_message>

<output_format>
{{
    "sentiment": "positive" | "negative" | "neutral",
    "confidence": 0.0-1.0,
    "reasoning": "Brief explanation",
    "lead_qualification": {{
        "urgency": "high" | "medium" | "low",
        "buying_intent": "strong" | "moderate" | "weak" | "none",
        "budget_indication": "high" | "medium" | "low" | "unknown",
        "decision_maker": true/false,
        "timeline": "immediate" | "short_term" | "long_term" | "unknown",
        "pain_points": ["..."],
        "objections": ["..."],
        "positive_signals": ["..."],
        "risk_factors": ["..."],
        "next_best_action": "What the agent should do next"
    }},
    "customer_profile": {{
        "expertise": "beginner" | "intermediate" | "expert",
        "industry": "Industry or unknown",
        "company_size": "startup" | "small" | "medium" | "large" | "enterprise" | "unknown",
        "role": "Role or unknown",
        "communication_style": "formal" | "casual" | "technical" | "business"
    }}
}}
</output_format>
"""
        try:
            response = await self._rate_limited_generate(prompt, use_json_mode=True)
            if not response:
                return {"success": False, "error": "No response from Gemini"}

            parsed = extract_json_from_response(response.text)
            if not parsed:
                return {"success": False, "error": "Unable to parse sentiment analysis"}

            return {"success": True, "analysis": normalize_analysis(parsed)}

        except Exception as e:
            logger.error(f"Sentiment analysis failed: {e}")
            return {"success": False, "error": str(e)}

    # ============================================
    # REPLY GENERATION
    # ============================================

    async def generate_response(
        self,
        message: str,
        history: List[Dict[str, str]],
        context: Optional[str] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT
    ) -> Dict[str, Any]:
        """
        Returns:
            {"success": True, "customer_message": str, "function_call": dict | None}
        """
        if not self._is_available():
            return {
                "success": True,
                "customer_message": rule_based_reply(message),
                "function_call": None,
            }

        prompt = f"""
<system>
{system_prompt}
Reply in the customer's language. Keep replies short enough for WhatsApp.
</system>

<context>
{sanitize_for_xml(context or 'No additional context')}
</context>

<conversation_history>
{format_history(history)}
</conversation_history>

<current_message>
{sanitize_for_xml(message)}
</current_message>

<functions>
markCustomerAsProspect(notes: string, reason: string)
  Call it when the customer shows clear interest in buying (asks to be contacted,
  asks for a visit, wants to reserve or pay).
</functions>

<output_format>
{{
    "customer_message": "Text sent to the customer",
    "function_call": {{"name": "markCustomerAsProspect", "parameters": {{"notes": "...", "reason": "..."}}}} or null
}}
</output_format>
"""
        try:
            response = await self._rate_limited_generate(prompt, use_json_mode=True)
            if not response:
                return {"success": False, "error": "No response from Gemini"}

            parsed = extract_json_from_response(response.text)
            customer_message = _get(parsed, "customer_message", "customerMessage")
            if not customer_message:
                return {"success": False, "error": "Response has no customer message"}

            return {
                "success": True,
                "customer_message": str(customer_message).strip(),
                "function_call": _get(parsed, "function_call", "functionCall"),
            }

        except Exception as e:
            logger.error(f"Reply generation failed: {e}")
            return {"success": False, "error": str(e)}

    # ============================================
    # SUMMARIES & SUGGESTIONS
    # ============================================

    async def generate_conversation_summary(self, history: List[Dict[str, str]]) -> Dict[str, Any]:
        if not self._is_available():
            return {"success": False, "summary": "Conversation summary not available - Gemini model not configured."}

        prompt = f"""
Provide a brief summary of this customer conversation in 2-3 sentences,
highlighting the main topics discussed and any action items needed.

<conversation>
{format_history(history)}
</conversation>
"""
        response = await self._rate_limited_generate(prompt, use_json_mode=False)
        if not response or not response.text:
            return {"success": False, "summary": "Unable to generate conversation summary at this time."}
        return {"success": True, "summary": response.text.strip()}

    async def generate_follow_up_suggestions(
        self,
        history: List[Dict[str, str]],
        context: Optional[str] = None
    ) -> List[str]:
        """3-5 follow-up lines for the agent; canned suggestions on any failure."""
        if not self._is_available():
            return list(FALLBACK_FOLLOW_UPS)

        prompt = f"""
Based on this conversation, suggest 3-5 helpful follow-up questions or statements
the agent could send to the customer. Return only the suggestions, one per line,
without numbering or bullet points.

<conversation>
{format_history(history)}
</conversation>

<context>
{sanitize_for_xml(context or 'No additional context')}
</context>
"""
        response = await self._rate_limited_generate(prompt, use_json_mode=False)
        if not response or not response.text:
            return list(FALLBACK_FOLLOW_UPS)

        lines = [line.strip() for line in response.text.split("\n") if line.strip()]
        return lines[:5] or list(FALLBACK_FOLLOW_UPS)


# Singleton instance for easy import
llm_service = GeminiAgentService()
