"""Named constants for Marquee. No magic numbers."""

# --- Application ---
APP_NAME = "Marquee"
APP_VERSION = "0.1.0"

# --- Supported Video Extensions ---
SUPPORTED_EXTENSIONS = frozenset({
    ".mp4",
    ".mkv",
    ".avi",
    ".mov",
    ".wmv",
    ".flv",
    ".webm",
    ".m4v",
    ".ts",
})

# Content types for the object store, keyed by extension
CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".wmv": "video/x-ms-wmv",
    ".flv": "video/x-flv",
    ".webm": "video/webm",
    ".ts": "video/mp2t",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# --- Sizes ---
BYTES_PER_MB = 1024 * 1024
DEFAULT_CHUNK_SIZE_MB = 50
DEFAULT_MAX_FILE_SIZE_MB = 100 * 1024  # 100 GiB

# --- Upload Retry / Timeout ---
DEFAULT_CHUNK_MAX_RETRIES = 3  # Retries after the first attempt
DEFAULT_CHUNK_RETRY_BACKOFF_SECONDS = 2.0  # Multiplied by attempt number
MAX_CHUNK_RETRY_BACKOFF_SECONDS = 30.0
DEFAULT_CHUNK_TIMEOUT_SECONDS = 300
DEFAULT_UPLOAD_MAX_WORKERS = 1  # 1 = sequential
MAX_UPLOAD_WORKERS = 8
UPLOAD_READ_BLOCK_SIZE = 64 * 1024  # Cancellation is checked between blocks
PROGRESS_RATE_WINDOW = 5  # Chunk completions in the moving-average window

# Status codes from the write target that are worth retrying
RETRYABLE_HTTP_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})

# --- Storage Keys ---
STORAGE_KEY_PREFIX = "uploads"
DEFAULT_CATEGORY = "movies"

# --- Confidence Thresholds (defaults, overridable in config) ---
DEFAULT_MATCH_THRESHOLD = 60
DEFAULT_REVIEW_THRESHOLD = 30

# --- Confidence Scoring Caps ---
YEAR_EXACT_POINTS = 40
YEAR_NEAR_POINTS = 20
YEAR_NEAR_TOLERANCE = 1
TITLE_EXACT_POINTS = 30
TITLE_SUBSTRING_POINTS = 20
TITLE_SIMILARITY_MAX_POINTS = 25
POPULARITY_POINTS = 10
POPULARITY_THRESHOLD = 50.0
VOTE_COUNT_POINTS = 10
VOTE_COUNT_THRESHOLD = 1000
MAX_CONFIDENCE = 100

# --- Title Similarity ---
SIMILARITY_JACCARD = "jaccard"
SIMILARITY_TOKEN_SORT = "token_sort"
SIMILARITY_STRATEGIES = frozenset({SIMILARITY_JACCARD, SIMILARITY_TOKEN_SORT})

# --- Catalog (TMDB v3) ---
CATALOG_BASE_URL = "https://api.themoviedb.org/3"
CATALOG_LANGUAGE = "en-US"
CATALOG_RATE_LIMIT = 0.25  # Seconds between catalog requests
CATALOG_MAX_RETRIES = 3
CATALOG_RETRY_BACKOFF_SECONDS = 1.0  # Base wait between retries (multiplied by attempt)
CATALOG_TIMEOUT_SECONDS = 10
CATALOG_SEARCH_LIMIT = 10
CATALOG_DETAILS_APPEND = "credits,videos"
CATALOG_API_KEY_ENV = "TMDB_API_KEY"

# --- Object Store Collaborator ---
STORAGE_TIMEOUT_SECONDS = 30

# --- Orchestrator ---
DEFAULT_RESOLUTION_WORKERS = 2
UNKNOWN_TITLE = "Unknown Title"

# --- Paths ---
DEFAULT_CONFIG_FILENAME = "config.yaml"
DEFAULT_LOG_FILENAME = "marquee.log"
DEFAULT_DB_FILENAME = "marquee.db"
