"""Defaults for the session permission cache and the profile fetch around it.
Each value can be overridden through the matching environment variable read in create_app.
"""

# PERMISSION_CACHE_TTL_MINUTES
DEFAULT_TTL_MINUTES = 15
# PERMISSION_CACHE_RETENTION_MINUTES: storage expiry of every session key, refreshed on write.
# Never shorter than the TTL; abandoned sessions (no logout) age out after it.
DEFAULT_RETENTION_MINUTES = 60
# MemoryStorage drops expired keys at most this often
MEMORY_SWEEP_INTERVAL_SECONDS = 60
# PERMISSION_FETCH_RETRIES / PERMISSION_FETCH_BASE_DELAY (seconds)
DEFAULT_FETCH_RETRIES = 3
DEFAULT_FETCH_BASE_DELAY = 0.5
DEFAULT_FETCH_MAX_DELAY = 10.0

# Breaker guarding the profile fetch used by the route gate
FETCH_FAILURE_THRESHOLD = 3
FETCH_RESET_TIMEOUT_SECONDS = 30

CACHE_KEY_PREFIX = 'perm-cache'
# Key names written by earlier client builds; removed on every teardown
LEGACY_KEYS = ('user-storage', 'user-store')
