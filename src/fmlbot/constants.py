from __future__ import annotations

LOGIN_WRAPPER_CHANNEL = "fml:loginwrapper"
HANDSHAKE_CHANNEL = "fml:handshake"

# appended to the handshake's server address to announce an FML3 client
FML3_MARKER = "\0FML3\0"

# collaborator packet/event names
HANDSHAKE_PACKET = "set_protocol"
SERVER_HOST_FIELD = "serverHost"
LOGIN_PLUGIN_REQUEST = "login_plugin_request"
LOGIN_PLUGIN_RESPONSE = "login_plugin_response"
MESSAGE_ID_FIELD = "messageId"
CHANNEL_FIELD = "channel"
DATA_FIELD = "data"

EVENT_SPAWN = "spawn"
EVENT_ERROR = "error"
EVENT_END = "end"
EVENT_KICKED = "kicked"

# Forge 47.x (1.20.1) handshake discriminators
DISC_MOD_LIST = 5
DISC_MOD_LIST_REPLY = 6
DISC_CHANNEL_DATA = 7
DISC_CHANNEL_DATA_REPLY = 8

FALLBACK_FRAME = b"\x01\x00\x00"

VARINT_MAX_BYTES = 5

DEFAULT_PORT = 25565
DEFAULT_USERNAME = "GardenBot"
DEFAULT_VERSION = "1.20.1"
DEFAULT_AUTH = "offline"
DEFAULT_RECONNECT_DELAY_S = 30.0
