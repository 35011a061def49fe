"""
Configuration for Scale Practice Log
"""

# Storage locations
DATABASE_PATH = 'data/scales.db'
LOCAL_CACHE_PATH = '~/.scalelog/local_cache.json'

# Web server configuration
WEB_HOST = '0.0.0.0'
WEB_PORT = 5000
SERVER_URL = 'http://localhost:5000'

# Client request handling
REQUEST_TIMEOUT = 10.0  # Seconds before an in-flight request is cancelled
POLL_INTERVAL = 30.0  # Seconds between background refreshes of recent sessions

# Session queries
RECENT_SESSIONS_LIMIT = 10
VIEW_ALL_SESSIONS_LIMIT = 20
ALL_SESSIONS_CAP = 50  # Hard ceiling for "all sessions" responses
LAST_FOR_SCALE_LIMIT = 2

# Practice timer
MIN_RECORDED_DURATION = 10  # Seconds an attempt must last to be stored as a session
MIN_BPM = 40
MAX_BPM = 200
DEFAULT_BPM = 80
TICK_INTERVAL = 1.0  # Seconds between daily-total saves while practicing
ROLLOVER_CHECK_INTERVAL = 60.0  # Seconds between calendar-day checks

# Migration
MIGRATION_DEFAULT_DURATION = 60  # Seconds assumed for legacy sessions without a duration
