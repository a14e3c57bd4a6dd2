"""Product-wide constants."""

BRAND_NAME = "Viraly - Video Director Pro"
SHORT_BRAND_NAME = "Viraly"

SUPPORTED_LANGUAGES = ("he", "en")
DEFAULT_LANGUAGE = "he"

CONTACT_MIN_MESSAGE_LENGTH = 20
CONTACT_SUBJECT_PREFIX = "[Viraly Contact]"
CONTACT_DEFAULT_TO_EMAIL = "viralypro@gmail.com"
CONTACT_RATE_LIMIT_MAX_REQUESTS = 5
CONTACT_RATE_LIMIT_WINDOW_SECONDS = 600
CONTACT_TIMEZONE = "Asia/Jerusalem"

ORDER_REFERENCE_PREFIX = "VRL"
ORDER_REFERENCE_SUFFIX_LENGTH = 9
# A gateway success that arrives sooner than this after order creation is
# treated as a premature redirect, not a payment.
MIN_PAYMENT_SECONDS = 55
PENDING_ORDER_FALLBACK_SECONDS = 2 * 60 * 60
CURRENCY = "ILS"

ALL_TRACKS = ("actors", "musicians", "creators", "influencers")
DEFAULT_PRIMARY_TRACK = "actors"
ALL_TRACK_TIERS = ("pro", "coach", "coach-pro")

ANALYSIS_MODEL = "gemini-2.5-flash"
