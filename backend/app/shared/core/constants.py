"""
Centralized Constants for the WhatsApp Engagement Backend.
All hardcoded values should be defined here for easy maintenance.
"""

# ============================================
# API TIMEOUTS (in seconds)
# ============================================
TIMEOUT_WHATSAPP_API = 30.0           # Graph API calls
TIMEOUT_WHATSAPP_MESSAGE = 45.0       # Send text / template
TIMEOUT_GEMINI_AI = 100.0             # Sentiment analysis and reply generation

# ============================================
# WHATSAPP TRANSPORT RETRIES
# ============================================
MAX_RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT_SECONDS = 2
RETRY_MAX_WAIT_SECONDS = 10

# ============================================
# AI MODEL CONFIGURATION
# ============================================
GEMINI_MODEL_NAME = "gemini-2.5-flash"
AI_HISTORY_WINDOW = 20                # Messages fed to the model as context
MAX_PROMPT_FIELD_CHARS = 2000
SENTIMENT_TREND_WINDOW = 10           # Latest sentiment records shown in analytics

# ============================================
# CONVERSATION RULES
# ============================================
# Initial outbound template + first customer reply
INFORMATION_TEMPLATE_TRIGGER_COUNT = 2

# ============================================
# PAGINATION
# ============================================
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
LAST_MESSAGES_LIMIT = 50

# ============================================
# DATABASE POOL SETTINGS
# ============================================
DB_POOL_SIZE = 5
DB_MAX_OVERFLOW = 10
DB_POOL_RECYCLE = 300
