"""WS protocol contracts — version registry."""

WS_PROTOCOL_VERSION = "v1"

# All supported message types for v1
SUPPORTED_CLIENT_MESSAGES = {
    "auth", "join_room", "leave_room", "send_message",
}

SUPPORTED_SERVER_MESSAGES = {
    "auth_ok", "auth_fail", "joined", "left",
    "receive_message", "error",
}
