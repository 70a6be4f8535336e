# config.py
"""
Configuration for the StyleMuse closet recommendation engine.
All sensitive values should be set via environment variables.
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# ============================================================================
# Helper Functions
# ============================================================================
def is_valid_api_key(key: str, min_length: int = 20) -> bool:
    """
    Check if API key looks valid (not a placeholder).

    Args:
        key: The API key to validate
        min_length: Minimum length for a valid key

    Returns:
        True if key appears valid, False if it's a placeholder or invalid
    """
    if not key or len(key) < min_length:
        return False
    # Check for common placeholder patterns
    invalid_patterns = ['your_', 'example', 'placeholder', 'xxx', 'fake', 'test_key']
    return not any(pattern in key.lower() for pattern in invalid_patterns)


def _csv(value: str) -> list:
    return [part.strip().lower() for part in value.split(",") if part.strip()]

# ============================================================================
# OpenAI Configuration (AI Planner + image generation)
# ============================================================================
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
OPENAI_PLANNER_MODEL = os.environ.get("OPENAI_PLANNER_MODEL", "gpt-4o")       # Outfit planning
OPENAI_IMAGE_MODEL = os.environ.get("OPENAI_IMAGE_MODEL", "dall-e-3")         # Suggested item images
PLANNER_TIMEOUT = float(os.environ.get("PLANNER_TIMEOUT", "45"))              # Seconds
PLANNER_TEMPERATURE = float(os.environ.get("PLANNER_TEMPERATURE", "0.4"))
ENABLE_AI_PLANNER = os.environ.get("ENABLE_AI_PLANNER", "true").lower() == "true" and is_valid_api_key(OPENAI_API_KEY)
ENABLE_IMAGE_GENERATION = os.environ.get("ENABLE_IMAGE_GENERATION", "false").lower() == "true" and is_valid_api_key(OPENAI_API_KEY)
MAX_SUGGESTED_ITEM_IMAGES = int(os.environ.get("MAX_SUGGESTED_ITEM_IMAGES", "3"))

# ============================================================================
# Marketplace (Product Search) Configuration
# ============================================================================
MARKETPLACE_API_KEY = os.environ.get("MARKETPLACE_API_KEY", "")
MARKETPLACE_API_SECRET = os.environ.get("MARKETPLACE_API_SECRET", "")
MARKETPLACE_BASE_URL = os.environ.get("MARKETPLACE_BASE_URL", "https://webservices.amazon.com/paapi5")
MARKETPLACE_TIMEOUT = float(os.environ.get("MARKETPLACE_TIMEOUT", "30"))      # Seconds
MARKETPLACE_ITEM_COUNT = int(os.environ.get("MARKETPLACE_ITEM_COUNT", "10"))
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")

# Affiliate
AFFILIATE_ASSOCIATE_TAG = os.environ.get("AFFILIATE_ASSOCIATE_TAG", "stylemuse-20")
AFFILIATE_BASE_URL = os.environ.get("AFFILIATE_BASE_URL", "https://amazon.com/dp")

# ============================================================================
# Rate Limiting & Response Cache
# ============================================================================
RATE_LIMIT_MAX_PER_HOUR = int(os.environ.get("RATE_LIMIT_MAX_PER_HOUR", "8640"))  # Provider hourly ceiling
RATE_LIMIT_MIN_INTERVAL_MS = int(os.environ.get("RATE_LIMIT_MIN_INTERVAL_MS", "1000"))

SEARCH_CACHE_TTL = int(os.environ.get("SEARCH_CACHE_TTL", "3600"))     # 1 hour
DETAILS_CACHE_TTL = int(os.environ.get("DETAILS_CACHE_TTL", "86400"))  # 24 hours

# ============================================================================
# Persistent Suggestion Store
# ============================================================================
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6380/0")

SUGGESTION_STORE_PREFIX = os.environ.get("SUGGESTION_STORE_PREFIX", "closet")
# Bump to invalidate every stored suggestion batch
SUGGESTION_SCHEMA_VERSION = int(os.environ.get("SUGGESTION_SCHEMA_VERSION", "2"))
SUGGESTION_TTL = int(os.environ.get("SUGGESTION_TTL", "86400"))        # 24 hours
SUGGESTION_MAX_OTHER_ITEMS = int(os.environ.get("SUGGESTION_MAX_OTHER_ITEMS", "10"))

PLACEHOLDER_IMAGE_DOMAINS = _csv(os.environ.get(
    "PLACEHOLDER_IMAGE_DOMAINS",
    "via.placeholder.com,placeholder.com,placehold.it,placehold.co,dummyimage.com,picsum.photos",
))

# ============================================================================
# Business Logic Configuration
# ============================================================================
OUTFIT_SLOTS = ["top", "bottom", "shoes", "jacket", "hat", "accessories"]

# Upper bound of the random perturbation used to break ties in fallback scoring
FALLBACK_TIE_BREAK_JITTER = float(os.environ.get("FALLBACK_TIE_BREAK_JITTER", "1.0"))

# Similar-items pipeline
WARDROBE_ANALYSIS_ITEMS = 5
RECOMMENDATIONS_PER_ITEM = 3
MAX_WARDROBE_RECOMMENDATIONS = 12
