"""Wire and topology constants."""

from __future__ import annotations

from typing import Literal

ByteOrder = Literal["little", "big", "native"]
BYTE_ORDERS: tuple[ByteOrder, ...] = ("little", "big", "native")

# Length prefix of one native-messaging frame
LENGTH_PREFIX_SIZE = 4

DEFAULT_BROKER_URL = "amqp://127.0.0.1:5672/%2f"
DEFAULT_SERVICE_NAME = "chrome-ext"
DEFAULT_EXCHANGE = "chrome-ext"

# Publish header carrying the origin identity
FROM_ID_HEADER = "from-id"
# Binding headers (headers exchange, match-all)
SERVICE_HEADER = "service"
ID_HEADER = "id"
MATCH_HEADER = "x-match"
MATCH_ALL = "all"
