"""Configuration management for the Luna WhatsApp tutor backend."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# WhatsApp Cloud API
WHATSAPP_TOKEN = os.getenv("WHATSAPP_TOKEN")
PHONE_NUMBER_ID = os.getenv("PHONE_NUMBER_ID")
VERIFY_TOKEN = os.getenv("VERIFY_TOKEN")
WHATSAPP_API_URL = os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v21.0")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Model Configuration
TUTOR_MODEL = os.getenv("TUTOR_MODEL", "llama-3.3-70b-versatile")
TUTOR_TEMPERATURE = float(os.getenv("TUTOR_TEMPERATURE", "0.7"))
TUTOR_MAX_TOKENS = int(os.getenv("TUTOR_MAX_TOKENS", "300"))

# Conversation Log Configuration
HEADER_SIZE = int(os.getenv("HEADER_SIZE", "10"))  # permanent onboarding turns
WINDOW_SIZE = int(os.getenv("WINDOW_SIZE", "50"))  # rolling dialogue turns
EVICTION_BATCH = int(os.getenv("EVICTION_BATCH", "5"))
HISTORY_CACHE_SIZE = int(os.getenv("HISTORY_CACHE_SIZE", "0"))  # 0 disables the cache
APPEND_MAX_ATTEMPTS = int(os.getenv("APPEND_MAX_ATTEMPTS", "3"))
TURNS_TABLE = os.getenv("TURNS_TABLE", "conversation_turns")

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
