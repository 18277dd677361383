"""Internal constants shared across the library."""

AUTH_BASE_URL = "https://identitytoolkit.googleapis.com/v1"
TOKEN_BASE_URL = "https://securetoken.googleapis.com/v1"
FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"
USER_AGENT = "fleettraq/1.0"

# ------------------------------------------------------------------
# Collections
# ------------------------------------------------------------------

TRACKING_COLLECTION = "tracking"
SESSIONS_COLLECTION = "sessions"
DELETION_REQUESTS_COLLECTION = "deletionRequests"

ACCOUNT_COLLECTIONS: tuple[str, ...] = (
    "vehicles",
    "drivers",
    "reports",
    TRACKING_COLLECTION,
    SESSIONS_COLLECTION,
    DELETION_REQUESTS_COLLECTION,
)

# ------------------------------------------------------------------
# Tracking defaults
# ------------------------------------------------------------------

#: Map center used when nothing has been tracked yet (Nairobi CBD).
DEFAULT_CENTER: tuple[float, float] = (-1.2864, 36.8172)
FALLBACK_ACCOUNT_ID = "YOUR_ACCOUNT_ID"
MANUAL_LOCATION_NAME = "Manual Location"
GPS_LOCATION_NAME = "Current Location"

# ------------------------------------------------------------------
# Firebase Auth error codes
# ------------------------------------------------------------------

REAUTH_REQUIRED_CODES: frozenset[str] = frozenset({"CREDENTIAL_TOO_OLD_LOGIN_AGAIN", "TOKEN_EXPIRED"})
ACCOUNT_GONE_CODES: frozenset[str] = frozenset({"USER_NOT_FOUND"})
BAD_CREDENTIAL_CODES: frozenset[str] = frozenset(
    {"INVALID_PASSWORD", "EMAIL_NOT_FOUND", "INVALID_LOGIN_CREDENTIALS", "USER_DISABLED"}
)
