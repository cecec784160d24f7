"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Retry countdown
# ------------------------------------------------------------------

#: Tick granularity of the reconnect countdown (milliseconds).
RETRY_INTERVAL_MS = 1000

#: Cap the retry timeout at 2 minutes.
MAX_RETRY_TIMEOUT_MS = 120_000

DEFAULT_THREAD_NAME = "vpnstate-dispatcher"
