# ============================================================
# config.py — Central Configuration & Gemini API Key Rotation
# ============================================================
# Tracker/overlay constants, Redis location and a round-robin
# key pool for the Gemini endpoint that answers pause/chat
# requests.
# ============================================================

import os
import time
import itertools
from dataclasses import dataclass, field
from threading import Lock
from google import genai
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# ── API Key Pool ──────────────────────────────────────────────
# Multiple free-tier keys to rotate through and avoid rate limits.
_keys_env = os.environ.get("GEMINI_API_KEYS", "")
GEMINI_API_KEYS = [k.strip() for k in _keys_env.split(",") if k.strip()]

if not GEMINI_API_KEYS:
    print("⚠️ WARNING: No GEMINI_API_KEYS found in environment. Please set them in .env")
    GEMINI_API_KEYS = ["dummy_key"]


@dataclass
class KeyRotator:
    """Thread-safe round-robin API key rotator."""
    keys: list[str] = field(default_factory=lambda: GEMINI_API_KEYS)
    _cycle: itertools.cycle = field(init=False, repr=False)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def __post_init__(self):
        self._cycle = itertools.cycle(self.keys)

    def next_key(self) -> str:
        with self._lock:
            return next(self._cycle)

    def get_client(self) -> genai.Client:
        """Returns a new Gemini client with the next rotated API key."""
        return genai.Client(api_key=self.next_key())

    def call_with_retry(self, model: str, contents, config=None, max_retries: int = 4):
        """
        Call Gemini with automatic key rotation on 429 errors.
        Blocking: run it in a worker thread from async code.
        """
        last_error = None
        for attempt in range(max_retries):
            client = self.get_client()
            try:
                return client.models.generate_content(
                    model=model,
                    contents=contents,
                    config=config,
                )
            except Exception as e:
                last_error = e
                if "429" in str(e) or "RESOURCE_EXHAUSTED" in str(e):
                    wait_time = 2 ** attempt  # 1, 2, 4, 8 seconds
                    print(f"  ⚠️ 429 rate limit hit, rotating key and waiting {wait_time}s (attempt {attempt+1}/{max_retries})")
                    time.sleep(wait_time)
                    continue
                raise
        raise last_error


# ── Singleton Rotator ─────────────────────────────────────────
key_rotator = KeyRotator()


# ── Model Configuration ───────────────────────────────────────
MODEL_FLASH = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
MODEL_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.7"))
MODEL_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "500"))
SYSTEM_INSTRUCTION = "You are a helpful educational assistant for people learning from YouTube videos."

# Deadline for a whole AI round trip, fallback channel included
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))

# ── Redis ─────────────────────────────────────────────────────
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# ── Backend ───────────────────────────────────────────────────
# Comma-separated; "*" allows all for dev
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# ── Behavior Tracking ─────────────────────────────────────────
WATCH_INTERVAL_SECONDS = float(os.getenv("WATCH_INTERVAL_SECONDS", "1.0"))
SEEK_THRESHOLD_SECONDS = 1.0      # smaller jumps are playback drift
# No playback signal for this long means the page went away; sampling stops
SIGNAL_STALE_SECONDS = float(os.getenv("SIGNAL_STALE_SECONDS", "5.0"))
PAUSE_SNIPPET_WINDOW = 20         # segments around a pause used as its topic
SNIPPET_WINDOW = 15
WATCH_EVENT_LIMIT = 1000
TOP_TOPICS_LIMIT = 4

# ── Transcript ────────────────────────────────────────────────
NAVIGATION_SETTLE_SECONDS = float(os.getenv("NAVIGATION_SETTLE_SECONDS", "2.0"))
EXTRACTION_RETRY_SECONDS = 1.5
CHAT_FULL_TRANSCRIPT_LIMIT = 200  # segments sent whole to the model
CHAT_CONTEXT_RADIUS = 50          # segments either side otherwise

# ── Overlay Geometry ──────────────────────────────────────────
OVERLAY_DEFAULT_TOP = 32
OVERLAY_DEFAULT_RIGHT = 32
OVERLAY_DEFAULT_WIDTH = 340
OVERLAY_AUTO_HEIGHT = 220         # rendered height while height is "auto"
OVERLAY_HEADER_HEIGHT = 44
OVERLAY_MIN_WIDTH = 240
OVERLAY_MIN_HEIGHT = 80
OVERLAY_HEADER_SLIVER = 40        # header left visible at the bottom edge
OVERLAY_RESIZE_MARGIN = 10
DEFAULT_VIEWPORT = (1280, 720)
