"""Environment configuration for Mindtrail.

Values are read once at import time from the process environment
(optionally populated from a .env file).
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


# ============================================================================
# LLM Provider Configuration
# ============================================================================

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")  # openai, anthropic, xai
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
XAI_API_KEY = os.getenv("XAI_API_KEY")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1000"))

# Language passed to the tutor with every request (zh or en)
TUTOR_LANGUAGE = os.getenv("TUTOR_LANGUAGE", "zh")


# ============================================================================
# Application Settings
# ============================================================================

DATABASE_PATH = os.getenv("DATABASE_PATH", "mindtrail.db")

# Guidance timing (seconds)
IDLE_THRESHOLD_SECONDS = float(os.getenv("IDLE_THRESHOLD_SECONDS", "120"))
IDLE_POLL_SECONDS = float(os.getenv("IDLE_POLL_SECONDS", "30"))

# Coalescing window for markup re-rendering after graph edits
RENDER_DEBOUNCE_MS = int(os.getenv("RENDER_DEBOUNCE_MS", "600"))


def validate_api_keys() -> None:
    """Ensure the API key for the selected provider is set."""
    if LLM_PROVIDER == "openai" and not OPENAI_API_KEY:
        raise ValueError("OPENAI_API_KEY environment variable required when LLM_PROVIDER=openai")
    elif LLM_PROVIDER == "anthropic" and not ANTHROPIC_API_KEY:
        raise ValueError("ANTHROPIC_API_KEY environment variable required when LLM_PROVIDER=anthropic")
    elif LLM_PROVIDER == "xai" and not XAI_API_KEY:
        raise ValueError("XAI_API_KEY environment variable required when LLM_PROVIDER=xai")
