"""Hub event names used by the gateway."""

SOURCE = "gateway"

# Commands the gateway listens for
USE = "gateway.use"
CRUD = "gateway.crud"
START = "gateway.start"
STOP = "gateway.stop"

# Notifications the gateway publishes
PRE_START = "gateway.pre-start"
ROUTER = "gateway.router"
LISTENING = "gateway.listening"
WEBSOCKET = "gateway.websocket"
WEBSOCKET_CONNECTION = "gateway.websocket.connection"
WEBSOCKET_MESSAGE = "gateway.websocket.message"
