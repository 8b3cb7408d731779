"""
Shared constants for ClipCutter.
Imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "ClipCutter"
APP_BUNDLE_ID = "com.local.clipcutter"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

DEFAULT_OUTPUT_ROOT = HOME / "Downloads"
APP_SUPPORT_DIR = HOME / "Library" / "Application Support" / APP_NAME
APP_CACHE_DIR = HOME / "Library" / "Caches" / APP_NAME
CONTENT_CACHE_DIR = APP_SUPPORT_DIR / "cache"
DOWNLOAD_TEMP_DIR = APP_CACHE_DIR / "downloads"
BIN_DIR = APP_SUPPORT_DIR / "bin"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
SAFETY_STATE_PATH = APP_SUPPORT_DIR / "safety.json"
DEVICE_ID_PATH = APP_SUPPORT_DIR / "device_id"
LOG_DIR = HOME / "Library" / "Logs" / APP_NAME

# ── Keychain identifiers ─────────────────────────────────────────────
KEYCHAIN_SERVICE = "ClipCutter:License"
LICENSE_ACCOUNT = "license_key"

# ── Job status values (ordered) ──────────────────────────────────────
class JobStatus:
    PENDING = "pending"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}

# ── Stream modes for the process runner ──────────────────────────────
class StreamMode:
    MERGED = "merged"
    SEPARATE = "separate"

# ── Aspect-ratio modes ───────────────────────────────────────────────
class AspectMode:
    ORIGINAL = "original"
    VERTICAL = "vertical"     # 9:16
    SQUARE = "square"         # 1:1
    FOUR_THREE = "4:3"

# Crop width is derived from the source height, clamped so the window never
# exceeds the frame; ffmpeg centres the window when x/y are omitted.
CROP_FILTERS = {
    AspectMode.VERTICAL: r"crop=min(iw\,ih*9/16):min(ih\,iw*16/9)",
    AspectMode.SQUARE: r"crop=min(iw\,ih):min(iw\,ih)",
    AspectMode.FOUR_THREE: r"crop=min(iw\,ih*4/3):min(ih\,iw*3/4)",
}

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    INVALID_URL = "ERR_INVALID_URL"
    INVALID_INPUT = "ERR_INVALID_INPUT"
    LAUNCH_FAILED = "ERR_LAUNCH_FAILED"
    PROCESS_TIMEOUT = "ERR_PROCESS_TIMEOUT"
    TOOL_FAILED = "ERR_TOOL_FAILED"
    CANCELLED = "ERR_CANCELLED"
    NETWORK_PERMANENT = "ERR_NETWORK_PERMANENT"
    INSUFFICIENT_CREDITS = "ERR_INSUFFICIENT_CREDITS"
    LICENSE_INVALID = "ERR_LICENSE_INVALID"

    # Retryable
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"

RETRYABLE_ERRORS = {
    ErrorCode.NETWORK_TRANSIENT,
}

# ── Process runner defaults ──────────────────────────────────────────
DEFAULT_PROCESS_TIMEOUT = 120          # 2 minutes
DOWNLOAD_TIMEOUT = 900                 # 15 minutes
CLIP_TIMEOUT = 900
METADATA_TIMEOUT = 60
VERSION_CHECK_TIMEOUT = 10
KILL_GRACE_SEC = 5
SAFE_PROCESS_ENV = {"PATH": "/usr/bin:/bin"}

# ── Job progress ranges (fraction of the whole job) ──────────────────
PROGRESS_DOWNLOAD_START = 0.0
PROGRESS_DOWNLOAD_END = 0.5
PROGRESS_CLIP_START = 0.5
PROGRESS_CLIP_END = 1.0

# ── Downloader safety ────────────────────────────────────────────────
SAFETY_DELAY_RANGE = (3.0, 8.0)        # seconds before each download
SAFETY_SLEEP_INTERVAL = 3
SAFETY_MAX_SLEEP_INTERVAL = 8
SAFETY_REFERER = "https://www.youtube.com/"
SAFETY_COUNTER_THRESHOLD = 10
SAFETY_TIP_THRESHOLD = 30
USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]

# Download attempts for expired-fragment failures
MAX_DOWNLOAD_ATTEMPTS = 3
DOWNLOAD_RETRY_DELAY = 2.0

# ── Quality / format selection ───────────────────────────────────────
DEFAULT_QUALITY = "720p"
DEFAULT_HEIGHT = 720
QUALITY_OPTIONS = ["360p", "480p", "720p", "1080p", "1440p", "2160p", "best"]

# ── Account cache policy (seconds) ───────────────────────────────────
ACCOUNT_DEFAULT_MAX_AGE = 600
ACCOUNT_LICENSED_TTL = 600
ACCOUNT_UNLICENSED_TTL = 180
ACCOUNT_LAST_CREDIT_TTL = 30
ACCOUNT_CREDIT_UPDATE_TTL = 60
ACCOUNT_RECENT_WINDOW = 120
MAX_FREE_CREDITS = 3

# ── Content cache policy ─────────────────────────────────────────────
CONTENT_CACHE_TTL_SEC = 24 * 3600
CONTENT_CACHE_MAX_BYTES = 5 * 1024 * 1024 * 1024   # 5 GiB
CONTENT_CACHE_MAX_ENTRIES = 1000

# ── Temp download cleanup ────────────────────────────────────────────
TEMP_FILE_MAX_AGE_SEC = 2 * 3600

# ── Backend API ───────────────────────────────────────────────────────
DEFAULT_API_BASE_URL = "https://api.clipcutter.app/api"
API_BASE_URL_ENV = "CLIPCUTTER_API_BASE_URL"
API_REQUEST_TIMEOUT = 10
API_MAX_ATTEMPTS = 3
API_MAX_BACKOFF_SEC = 5.0

class Endpoints:
    CHECK_DEVICE = "/users/check-device"
    CREATE_DEVICE = "/users/create-device"
    UPDATE_DEVICE = "/users/update-device"
    DECREMENT_CREDITS = "/users/decrement-free-credits"
    VALIDATE_LICENSE = "/validate-license"

LICENSE_PREFIXES = ("PRO-", "ENTERPRISE-")

# ── URL admission ─────────────────────────────────────────────────────
MAX_URL_LENGTH = 2048
ALLOWED_SCHEMES = ("http", "https")
ALLOWED_VIDEO_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtu.be",
}
SUSPICIOUS_URL_PATTERNS = ["javascript:", "data:", "file:", "ftp:"]
YOUTUBE_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.|m\.|music\.)?youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?youtu\.be/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/embed/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/v/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.|m\.)?youtube\.com/shorts/([a-zA-Z0-9_-]{11})',
]

# Strict clip timestamp
TIME_PATTERN = r'^(\d{2}):([0-5]\d):([0-5]\d)$'
