"""Bus session: one AMQP connection, channel, headers exchange, exclusive queue and consumer."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractExchange,
    AbstractQueue,
    AbstractQueueIterator,
)
from aio_pika.exceptions import (
    AMQPError,
    ChannelClosed,
    ChannelInvalidStateError,
    ConnectionClosed,
)
from loguru import logger

from busrelay.core.constants import (
    DEFAULT_EXCHANGE,
    FROM_ID_HEADER,
    ID_HEADER,
    MATCH_ALL,
    MATCH_HEADER,
    SERVICE_HEADER,
)
from busrelay.core.errors import (
    BusConnectFailed,
    BusDeliveryError,
    BusPublishFailed,
    BusSubscribeFailed,
    BusTopologyFailed,
)

# Errors raised by the broker client or the socket underneath it
_BROKER_ERRORS: tuple[type[BaseException], ...] = (AMQPError, ChannelInvalidStateError, OSError)
# Errors meaning the consumer went away rather than failed
_CLOSED_ERRORS: tuple[type[BaseException], ...] = (ChannelClosed, ConnectionClosed, ChannelInvalidStateError)


def binding_arguments(service_name: str, identity: str) -> dict[str, str]:
    """Headers-exchange binding: match-all on service and id."""
    return {
        SERVICE_HEADER: service_name,
        ID_HEADER: identity,
        MATCH_HEADER: MATCH_ALL,
    }


class BusSession:
    """Established bus connection with a pre-bound queue and active consumer.

    Build with ``await BusSession.connect(...)``. The queue is exclusive and
    auto-delete, so the broker removes it when the connection closes.
    """

    def __init__(
        self,
        connection: AbstractConnection,
        *,
        service_name: str,
        identity: str,
        exchange_name: str = DEFAULT_EXCHANGE,
        tag_publishes: bool = True,
    ) -> None:
        self._connection = connection
        self._service_name = service_name
        self._identity = identity
        self._exchange_name = exchange_name
        self._tag_publishes = tag_publishes
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._queue: AbstractQueue | None = None
        self._consumer: AbstractQueueIterator | None = None
        self._closed = False

    @classmethod
    async def connect(
        cls,
        address: str,
        service_name: str,
        identity: str,
        *,
        exchange_name: str = DEFAULT_EXCHANGE,
        tag_publishes: bool = True,
        consumer_tag: str | None = None,
    ) -> BusSession:
        """Open connection and channel, declare topology and start consuming.

        Raises BusConnectFailed, BusTopologyFailed or BusSubscribeFailed. On
        failure everything opened so far is closed; no partial session escapes.
        """
        logger.info("Connecting to bus at {}", _redact(address))
        try:
            connection = await aio_pika.connect(address)
        except (*_BROKER_ERRORS, ValueError) as exc:
            raise BusConnectFailed(
                f"Failed to connect to bus: {exc}",
                code="connect_failed",
                details={"address": _redact(address)},
                original_error=exc,
            ) from exc

        session = cls(
            connection,
            service_name=service_name,
            identity=identity,
            exchange_name=exchange_name,
            tag_publishes=tag_publishes,
        )
        try:
            await session._establish(consumer_tag)
        except BaseException:
            await session.close()
            raise
        return session

    async def _establish(self, consumer_tag: str | None) -> None:
        try:
            self._channel = await self._connection.channel()
        except _BROKER_ERRORS as exc:
            raise BusConnectFailed(
                f"Failed to open bus channel: {exc}", code="channel_failed", original_error=exc
            ) from exc

        try:
            self._exchange = await self._channel.declare_exchange(
                self._exchange_name,
                aio_pika.ExchangeType.HEADERS,
                durable=False,
                auto_delete=True,
            )
            self._queue = await self._channel.declare_queue(
                self._identity,
                durable=False,
                exclusive=True,
                auto_delete=True,
            )
            await self._queue.bind(
                self._exchange,
                routing_key="",
                arguments=binding_arguments(self._service_name, self._identity),
            )
        except _BROKER_ERRORS as exc:
            raise BusTopologyFailed(
                f"Failed to declare bus topology: {exc}",
                code="topology_failed",
                details={"exchange": self._exchange_name, "queue": self._identity},
                original_error=exc,
            ) from exc
        logger.debug(
            "Bound queue {} to exchange {} (service={}, id={})",
            self._identity,
            self._exchange_name,
            self._service_name,
            self._identity,
        )

        consume_kwargs: dict[str, Any] = {"no_ack": True}
        if consumer_tag:
            consume_kwargs["consumer_tag"] = consumer_tag
        try:
            consumer = self._queue.iterator(**consume_kwargs)
            await consumer.consume()
        except _BROKER_ERRORS as exc:
            raise BusSubscribeFailed(
                f"Failed to create bus consumer: {exc}",
                code="subscribe_failed",
                details={"queue": self._identity},
                original_error=exc,
            ) from exc
        self._consumer = consumer
        logger.info("Bus session ready: queue={} exchange={}", self._identity, self._exchange_name)

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def exchange_name(self) -> str:
        return self._exchange_name

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def publish(self, payload: bytes) -> None:
        """Publish payload to the exchange with an empty routing key."""
        if self._exchange is None or self._closed:
            raise BusPublishFailed("Bus session is not open", code="not_open")
        headers = {FROM_ID_HEADER: self._identity} if self._tag_publishes else None
        message = aio_pika.Message(body=bytes(payload), headers=headers)
        try:
            await self._exchange.publish(message, routing_key="")
        except _BROKER_ERRORS as exc:
            raise BusPublishFailed(
                f"Error publishing to bus: {exc}",
                code="publish_failed",
                details={"length": len(payload)},
                original_error=exc,
            ) from exc

    async def deliveries(self) -> AsyncIterator[bytes]:
        """Yield delivered payloads until the subscription or its channel closes.

        Raises BusDeliveryError when the broker reports a consumer-level error.
        """
        if self._consumer is None:
            return
        try:
            async for message in self._consumer:
                yield message.body
        except _CLOSED_ERRORS as exc:
            logger.info("Bus subscription closed: {}", exc)
            return
        except AMQPError as exc:
            raise BusDeliveryError(
                f"Bus consumer error: {exc}",
                code="delivery_error",
                details={"queue": self._identity},
                original_error=exc,
            ) from exc
        logger.info("Bus subscription closed")

    async def close(self) -> None:
        """Close channel then connection. Runs once; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._channel is not None:
                try:
                    await self._channel.close()
                except Exception as exc:
                    logger.warning("Error closing bus channel: {}", exc)
        finally:
            # Also reached when cancelled while the channel is closing
            try:
                await self._connection.close()
            except Exception as exc:
                logger.warning("Error closing bus connection: {}", exc)
        logger.debug("Bus session closed (queue={})", self._identity)


def _redact(address: str) -> str:
    """Hide the password part of an amqp:// URL for logging."""
    scheme, sep, rest = address.partition("://")
    if not sep or "@" not in rest:
        return address
    creds, _, host = rest.rpartition("@")
    user = creds.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
