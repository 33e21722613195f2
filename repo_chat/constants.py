"""Default configuration settings for the repo-chat package."""

from __future__ import annotations

# --- Model Configuration ---
DEFAULT_MODEL = "gemini-2.5-pro"
AVAILABLE_MODELS = {
    "Gemini 2.5 Pro": "gemini-2.5-pro",
    "Gemini 2.5 Flash": "gemini-2.5-flash",
}
# Gemini exposes an OpenAI-compatible endpoint next to its native API
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
NATIVE_API_URL = "https://generativelanguage.googleapis.com/v1beta"

# --- Token Accounting ---
TOKEN_ESTIMATE_FACTOR = 4  # 1 token ~= 4 characters
# Soft limit for usage display, not the model's real context window
CONTEXT_WINDOW_LIMIT = 1_000_000
# Prices per 1,000,000 tokens
INPUT_PRICE_PER_MILLION = 0.35
OUTPUT_PRICE_PER_MILLION = 0.70

# --- Sessions ---
DEFAULT_SESSION_TITLE = "New Chat"
TITLE_MAX_LENGTH = 30
# Auto-titling only happens while the log holds at most this many turns
TITLE_MAX_TURNS = 2

# --- Persistence ---
SESSIONS_KEY = "chat_sessions"
ACTIVE_SESSION_KEY = "active_session_id"
CREDENTIALS_KEY = "credentials"
SYSTEM_INSTRUCTION_KEY = "system_instruction"
SELECTED_MODEL_KEY = "selected_model"
PERSIST_DEBOUNCE_SECONDS = 0.5

# --- Repository Fetching ---
GITHUB_API_URL = "https://api.github.com"
DEFAULT_IGNORES = (".git", ".env", ".env.*", "node_modules")
BINARY_EXTENSIONS = frozenset(
    {
        # Images
        ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".ico", ".tif", ".tiff", ".svg",
        # Audio
        ".mp3", ".wav", ".ogg", ".flac", ".aac",
        # Video
        ".mp4", ".mov", ".avi", ".mkv", ".webm",
        # Archives
        ".zip", ".rar", ".7z", ".tar", ".gz",
        # Documents
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        # Fonts
        ".woff", ".woff2", ".ttf", ".otf", ".eot",
        # Other
        ".exe", ".dll", ".so", ".dmg", ".jar", ".pyc", ".bin", ".lock",
    },
)  # fmt: skip
SNAPSHOT_BATCH_SIZE = 20
SNAPSHOT_BATCH_DELAY = 1.0
DELTA_BATCH_SIZE = 10
DELTA_BATCH_DELAY = 0.5
UNDECODABLE_FILE_CONTENT = "Error: file content could not be read (probably not a text file)."
