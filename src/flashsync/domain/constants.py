"""Centralized constants for flashsync.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- SM-2 ----------
MIN_EASINESS_FACTOR = 1.3
MAX_EASINESS_FACTOR = 2.5
DEFAULT_EASINESS_FACTOR = 2.5
CORRECT_QUALITY_THRESHOLD = 3
FIRST_INTERVAL = 1  # days
SECOND_INTERVAL = 6  # days

# ---------- Progress ----------
MASTERED_EASINESS_FACTOR = 2.5
MASTERED_INTERVAL = 21  # days
DIFFICULT_EASINESS_FACTOR = 1.8

# ---------- Review sessions ----------
REVIEW_SESSION_OPTIONS = (10, 20, 30)
DEFAULT_REVIEW_CARDS = 10

# ---------- Batch sync ----------
SYNC_INTERVAL = 30.0  # seconds (debounce)
SYNC_RETRY_DELAY = 5.0  # seconds
MAX_SYNC_RETRY_ATTEMPTS = 3

# ---------- Direct remote calls ----------
BACKOFF_BASE_DELAY = 1.0  # seconds
BACKOFF_MAX_DELAY = 8.0  # seconds
BACKOFF_MAX_ATTEMPTS = 3
REQUEST_TIMEOUT = 30.0

# ---------- Remote layout ----------
ACCOUNTS_COLLECTION = "accounts"
CARD_SETS_COLLECTION = "cardSets"
LEGACY_PROGRESS_COLLECTION = "cardSetProgress"
CURRENT_MIGRATION_VERSION = 1
