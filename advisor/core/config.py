"""
Advisor configuration - environment driven, single point of control.
All values are read once at import; tests patch the module attributes.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/advisor.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Chat / answer assembly
CHAT_API_ENABLED = os.getenv("CHAT_API_ENABLED", "true").lower() == "true"
GENERATOR_PROVIDER = os.getenv("GENERATOR_PROVIDER", "ollama")  # ollama|mock
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
GENERATOR_TEMPERATURE = float(os.getenv("GENERATOR_TEMPERATURE", "0.3"))
MAX_HISTORY_MESSAGES = int(os.getenv("MAX_HISTORY_MESSAGES", "30"))
MAX_DETAIL_ROWS = int(os.getenv("MAX_DETAIL_ROWS", "10"))

# Minimum caller-visible latency for chat answers (milliseconds)
MIN_RESPONSE_MS = int(os.getenv("MIN_RESPONSE_MS", "500"))

# Pending write actions
PENDING_ACTION_TTL_SEC = int(os.getenv("PENDING_ACTION_TTL_SEC", "300"))

# Elevated store credentials used only by the execution engine
SERVICE_ROLE_KEY = os.getenv("SERVICE_ROLE_KEY", "local-service-key")

VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_generator():
    """Get the configured text generator implementation."""
    if GENERATOR_PROVIDER == "mock":
        from ..agents.generator import MockGenerator
        return MockGenerator()

    from ..agents.generator import OllamaGenerator
    return OllamaGenerator(model_name=OLLAMA_MODEL, temperature=GENERATOR_TEMPERATURE)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if GENERATOR_PROVIDER not in ["ollama", "mock"]:
        issues.append(f"Invalid GENERATOR_PROVIDER: {GENERATOR_PROVIDER}")

    if PENDING_ACTION_TTL_SEC < 1:
        issues.append("PENDING_ACTION_TTL_SEC must be >= 1")

    if MIN_RESPONSE_MS < 0:
        issues.append("MIN_RESPONSE_MS must be >= 0")

    if MAX_DETAIL_ROWS < 1:
        issues.append("MAX_DETAIL_ROWS must be >= 1")

    if not SERVICE_ROLE_KEY:
        issues.append("SERVICE_ROLE_KEY must be set")

    return issues
