"""
Project-wide constants for SchemaFlow
"""  # noqa: D200, D212, D415

# ==============================================================================
# Retry and Timeout Configuration
# ==============================================================================

MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0  # seconds
RETRY_MAX_BACKOFF_MULTIPLE = 30  # backoff never exceeds this multiple of base
BATCH_MAX_CONCURRENT = 10  # in-flight items per extract_batch call
DEFAULT_TIMEOUT = 30.0  # seconds

# Lower-cased substrings marking a transient backend fault
RETRYABLE_PATTERNS = (
    "rate limit",
    "timeout",
    "connection",
    "429",
    "503",
    "504",
    "temporary",
    "unavailable",
)

# ==============================================================================
# Model Parameters
# ==============================================================================

DEFAULT_PROVIDER = "openai"

MAX_TOKENS_SMART = 4000
MAX_TOKENS_FAST = 2000
MAX_TOKENS_QUICK = 1000

TEMPERATURE_STRICT = 0.1
TEMPERATURE_TRANSFORM = 0.3
TEMPERATURE_CREATIVE = 0.7

# ==============================================================================
# Parsing and Confidence Scoring
# ==============================================================================

CONFIDENCE_BASELINE = 0.5
CONFIDENCE_STRICT_BONUS = 0.3
CONFIDENCE_FIELD_WEIGHT = 0.2  # scaled by fill ratio
CONFIDENCE_MISSING_FIELD_PENALTY = 0.1  # per defaulted required field
CONFIDENCE_LENIENT_PENALTY = 0.15
CONFIDENCE_COERCION_PENALTY = 0.1
CONFIDENCE_RAW_FALLBACK_PENALTY = 0.3

DEFAULT_CONFIDENCE_THRESHOLD = 0.3
STRICT_FILL_THRESHOLD = 1.0
MAX_BLOCK_CANDIDATES = 64  # balanced fragments tried during lenient recovery

# ==============================================================================
# Prompting
# ==============================================================================

STEERING_HEADING = "Additional Context:"
MAX_GENERATE_PROMPT_CHARS = 10_000
MAX_SPAN_STEERING_CHARS = 200

# ==============================================================================
# Schema Analysis
# ==============================================================================

SCHEMA_MAX_DEPTH = 5
SCHEMA_MAX_FIELDS = 40

# ==============================================================================
# Cost Accounting
# ==============================================================================

HIGH_COST_THRESHOLD = 0.10  # USD, single operation
BUDGET_ALERT_RATIO = 0.8
TOKENS_PER_PRICING_UNIT = 1000

# ==============================================================================
# Telemetry
# ==============================================================================

MAX_RECORDED_SPANS = 10_000
