from __future__ import annotations

SDK_VERSION = "0.1.0"
API_KEY_PREFIX = "tsk_"

DEFAULT_BASE_URL = "https://api.trusera.io"
DEFAULT_BATCH_SIZE = 100
DEFAULT_FLUSH_INTERVAL_MS = 5000
DEFAULT_TIMEOUT_SECONDS = 10.0

REGISTER_PATH = "/api/v1/agents/register"
EVENTS_BATCH_PATH = "/api/v1/events/batch"

RESPONSE_HEADERS_TRACKED = ("content-type", "content-length")
