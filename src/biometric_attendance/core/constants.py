"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DEFAULT_MATCH_THRESHOLD = 0.6
DEFAULT_EMBEDDING_DIMENSION = 128

# Confidence recorded for credential-based entries.
CERTAIN_CONFIDENCE = 1.0

CHALLENGE_BYTES = 32
CREDENTIAL_ID_MIN_BYTES = 16
CREDENTIAL_ID_MAX_BYTES = 1024
WEBAUTHN_GET_TYPE = "webauthn.get"

DEFAULT_LOCATION = "Main Campus"
MAX_LOCATION_LENGTH = 100
MAX_NOTES_LENGTH = 500
MAX_USER_AGENT_LENGTH = 500

DEFAULT_HISTORY_LIMIT = 30
DEFAULT_TREND_DAYS = 7
DEFAULT_MIN_FACE_SIZE = 100
DEFAULT_COUNTRY_CODE = "+91"
DEFAULT_IDENTITY_ID_PREFIX = "MCA"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_CALENDAR_DAYS = 366
