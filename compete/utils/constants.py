"""
Constants used across the competition data layer.
"""

# Match scoring (standings and team records)
POINTS_FOR_WIN = 3
POINTS_FOR_DRAW = 1
POINTS_FOR_LOSS = 0

# Jersey numbers available on a roster
MIN_JERSEY_NUMBER = 1
MAX_JERSEY_NUMBER = 99

# Round-robin fixtures are spaced this many days apart
ROUND_ROBIN_SPACING_DAYS = 7

# Pagination defaults for public competition browsing
DEFAULT_PAGE_SIZE = 12

# Result cap for each collection in the global search
GLOBAL_SEARCH_LIMIT = 10

# Stats windows
RECENT_USERS_DAYS = 30
RECENT_APPLICATIONS_DAYS = 7

# Read notifications older than this are purged by cleanup
NOTIFICATION_RETENTION_DAYS = 30

# Invitation codes
UNIQUE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I, O, 0, 1
UNIQUE_CODE_LENGTH = 6
UNIQUE_CODE_MAX_ATTEMPTS = 5

# Password hashing cost factor
BCRYPT_ROUNDS = 12
