"""Constants used across clawboard.

Defaults for user-configurable values live in ``clawboard.config.DEFAULT_CONFIG``;
the values here are protocol facts of the gateway dashboard API.
"""

# Gateway dashboard API
DEFAULT_API_BASE_URL = "http://localhost:3001/api"
QUEUE_PATH = "/gateway/queue"
HISTORY_PATH = "/gateway/history"
ARCHIVE_PATH = "/gateway/sessions/archive"
SESSION_TOOLS_PATH = "/gateway/session/{session_id}/tools"
SESSION_MESSAGES_PATH = "/gateway/session/{session_id}/messages"
SESSION_ABORT_PATH = "/gateway/session/{session_id}/abort"

# Push topic carrying full queue snapshots
QUEUE_UPDATE_TOPIC = "gateway:queue-update"

# Queue view timing
POLL_INTERVAL_S = 30.0  # Fallback poll; push is the primary feed
VISIBILITY_WINDOW_S = 30 * 60  # Idle sessions stay listed this long after last activity
FLASH_DURATION_MS = 600
UI_TICK_INTERVAL_S = 10.0  # Re-render time-ago labels and re-check visibility
DETAIL_REFRESH_S = 5.0  # Reload an expanded transcript while its session is active

# Display
PREVIEW_CHARS = 50
ARCHIVE_PAGE_SIZE = 20
ARCHIVE_PAGE_MAX = 100
RECENT_MESSAGES_LIMIT = 5
EXPANDED_MESSAGES_LIMIT = 20
TOOLS_COMPACT_LIMIT = 3
