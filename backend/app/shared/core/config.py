from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "WhatsApp Engagement API"
    API_V1_STR: str = "/api/v1"
    DATABASE_URL: str
    CORS_ORIGIN: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # WhatsApp Cloud API (Meta Graph)
    WHATSAPP_TOKEN: str = ""
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_API_VERSION: str = "v23.0"
    WHATSAPP_GRAPH_URL: str = "https://graph.facebook.com"
    WHATSAPP_VERIFY_TOKEN: str = ""  # Optional: Set to reject verification requests with a wrong hub.verify_token
    WHATSAPP_DEFAULT_LANGUAGE: str = "en_US"
    WHATSAPP_DEFAULT_COUNTRY: str = "MX"  # Used when a number arrives without country code

    # Template sent once, in place of the AI reply, on the customer's first answer
    INFORMATION_TEMPLATE_NAME: str = "riviera_information_contact_es"
    INFORMATION_TEMPLATE_LANGUAGE: str = "es"

    # Google Gemini
    GEMINI_API_KEY: str = ""
    GEMINI_TIER: str = "free"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
