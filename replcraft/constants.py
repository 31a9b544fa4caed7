# =============================================================================
# ReplCraft Python Client -- Protocol Constants
# =============================================================================

# -- Endpoint ------------------------------------------------------------------

GATEWAY_SCHEME = "ws"
GATEWAY_PATH = "/gateway"

# -- Timing (seconds) --------------------------------------------------------

CONNECTION_TIMEOUT = 10.0
RETRY_DELAY = 0.5  # out-of-fuel failure -> retry queue

# -- Messages ------------------------------------------------------------------

MAX_MESSAGE_SIZE = 1_048_576  # 1 MB

# -- Actions -------------------------------------------------------------------

ACTION_AUTHENTICATE = "authenticate"
ACTION_RESPOND = "respond"

# -- Error kinds (server classification + client-local) -----------------------

ERROR_CONNECTION_CLOSED = "connection closed"
ERROR_UNAUTHENTICATED = "unauthenticated"
ERROR_INVALID_OPERATION = "invalid operation"
ERROR_BAD_REQUEST = "bad request"
ERROR_OUT_OF_FUEL = "out of fuel"
ERROR_OFFLINE = "offline"
ERROR_INVALID_CREDENTIAL = "invalid credential"
ERROR_PROTOCOL = "protocol error"

# -- Push types ----------------------------------------------------------------

PUSH_BLOCK_UPDATE = "block update"
PUSH_TRANSACT = "transact"

# -- Client-local notifications -----------------------------------------------

EVENT_OPEN = "open"
EVENT_CLOSE = "close"
EVENT_ERROR = "error"
EVENT_OUT_OF_FUEL = "out_of_fuel"

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
