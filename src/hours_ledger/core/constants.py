"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DEFAULT_HISTORY_PAGE_SIZE = 50
MAX_HISTORY_PAGE_SIZE = 500
DEFAULT_FLAG_TOLERANCE_MINUTES = 15
MIN_VOID_REASON_LENGTH = 5
MAX_OVERRIDE_HOURS = 1000
HOURS_PRECISION = "0.01"
CHECKSUM_LENGTH = 6
TOKEN_SEPARATOR = "|"
DEFAULT_BULK_CLOSE_REASON = "End of day bulk checkout"
