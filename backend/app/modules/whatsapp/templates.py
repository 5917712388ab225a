"""
Approved WhatsApp templates known to the backend.

The name, language and (where the body has a {{customer_name}} placeholder) a
body parameter go to the Graph API; the body is kept here so the dashboard can
show what the customer actually received.
"""
from typing import Any, Dict, List, Optional


WHATSAPP_TEMPLATES: Dict[str, Dict[str, str]] = {
    "start_conversation_es": {
        "language": "es",
        "body": (
            "Hola {{customer_name}}!\n\n"
            "🏝️ Cartagena te espera…\n\n"
            "Tenemos lotes en una ubicación privilegiada, cerca de playas de arena "
            "blanca y mar turquesa. Solo para pocos."
        ),
    },
    "riviera_information_contact_es": {
        "language": "es",
        "body": (
            "🌴✨ RIVERA BEACH CARTAGENA – Tu paraíso frente al mar Caribe ✨🌊\n\n"
            "🏝️ Lotes disponibles:\n"
            "✅ Arena y Bahía: desde 200m² → $100M COP / 25K USD\n"
            "✅ Arrecife: desde 400m² → $200M COP / 50K USD\n"
            "✅ Coral: desde 1000m² → $400M COP / 100K USD\n\n"
            "📍 Zona Norte de Cartagena (Punta Canoa y Las Europas), acceso directo al mar.\n\n"
            "💼 ¿Deseas que un asesor te contacte?"
        ),
    },
}


def get_template_language(template_name: str, default: str) -> str:
    template = WHATSAPP_TEMPLATES.get(template_name)
    return template["language"] if template else default


def get_template_body(template_name: str, customer_name: Optional[str] = None) -> Optional[str]:
    template = WHATSAPP_TEMPLATES.get(template_name)
    if not template:
        return None
    return template["body"].replace("{{customer_name}}", customer_name or "")


def render_template_content(template_name: str) -> str:
    """Content stored for an outbound template message."""
    return f"Template: {template_name}"


def build_template_parameters(template_name: str, customer_name: Optional[str] = None) -> Optional[List[Dict[str, Any]]]:
    """
    Body components for templates whose body carries the {{customer_name}}
    placeholder. None when the template takes no parameters.
    """
    template = WHATSAPP_TEMPLATES.get(template_name)
    if not template or "{{customer_name}}" not in template["body"]:
        return None
    return [
        {
            "type": "body",
            "parameters": [
                {"type": "text", "text": customer_name or "", "parameter_name": "customer_name"}
            ],
        }
    ]
