"""
Block Feed - New block heads over a WebSocket subscription

Maintains a newHeads subscription with automatic reconnection and failover
to a backup endpoint. Parsed notifications are pushed onto an asyncio queue
and consumed in order through async iteration.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any

from websockets import connect, ConnectionClosed

from .types import BlockNotification, RPCError

logger = logging.getLogger(__name__)


def _parse_quantity(value: Any) -> Optional[int]:
    """JSON-RPC quantity (hex string or int) to int"""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith('0x') else int(value)


def parse_new_head(data: Dict[str, Any]) -> Optional[BlockNotification]:
    """
    Extract a BlockNotification from an eth_subscription message.

    Returns None for anything that is not a new head notification.
    """
    if data.get("method") != "eth_subscription":
        return None

    result = data.get("params", {}).get("result", {})
    if not isinstance(result, dict) or "number" not in result:
        return None

    return BlockNotification(
        block_number=_parse_quantity(result["number"]),
        network_gas_price=_parse_quantity(result.get("baseFeePerGas")),
        block_hash=result.get("hash")
    )


class WebSocketBlockFeed:
    """Restartable newHeads subscription exposed as an async iterator"""

    def __init__(
        self,
        primary_ws_url: str,
        backup_ws_url: Optional[str] = None,
        queue_size: int = 1000
    ):
        self.primary_ws_url = primary_ws_url
        self.backup_ws_url = backup_ws_url
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        self.ws = None
        self.is_primary = True
        self.is_connected = False
        self.reconnect_attempts = 0
        self.max_reconnect_attempts = 10
        self.base_backoff = 1.0  # seconds
        self.max_backoff = 60.0  # seconds

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def current_url(self) -> str:
        if self.is_primary or not self.backup_ws_url:
            return self.primary_ws_url
        return self.backup_ws_url

    async def connect(self):
        """Establish WebSocket connection and subscribe"""
        url = self.current_url
        provider_name = "primary" if self.is_primary else "backup"

        try:
            logger.info(f"Connecting to {provider_name} WebSocket: {url}")
            self.ws = await connect(url, ping_interval=20, ping_timeout=10)
            self.is_connected = True
            self.reconnect_attempts = 0
            logger.info(f"Connected to {provider_name} WebSocket")

            await self.subscribe_new_heads()

        except Exception as e:
            logger.error(f"Failed to connect to {provider_name} WebSocket: {e}")
            self.is_connected = False
            raise RPCError(f"WebSocket connection failed: {e}") from e

    async def subscribe_new_heads(self):
        """Subscribe to newHeads for real-time block monitoring"""
        if not self.ws:
            raise RPCError("WebSocket not connected")

        subscription_request = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_subscribe",
            "params": ["newHeads"]
        }

        await self.ws.send(json.dumps(subscription_request))
        logger.info("Subscribing to new block notifications...")

    async def disconnect(self):
        """Close WebSocket connection"""
        if self.ws:
            await self.ws.close()
            self.ws = None
            self.is_connected = False
            logger.info("WebSocket disconnected")

    async def reconnect(self):
        """Reconnect with exponential backoff, failing over once to the backup"""
        while self._running:
            if self.reconnect_attempts >= self.max_reconnect_attempts:
                logger.error("Max reconnection attempts reached")
                if self.is_primary and self.backup_ws_url:
                    logger.info("Failing over to backup WebSocket")
                    self.is_primary = False
                    self.reconnect_attempts = 0
                else:
                    raise RPCError("All WebSocket providers failed")

            backoff = min(
                self.base_backoff * (2 ** self.reconnect_attempts),
                self.max_backoff
            )
            logger.info(f"Reconnecting in {backoff:.1f} seconds (attempt {self.reconnect_attempts + 1})")
            await asyncio.sleep(backoff)

            self.reconnect_attempts += 1

            try:
                await self.disconnect()
                await self.connect()
                return
            except Exception as e:
                logger.error(f"Reconnection failed: {e}")

    async def handle_message(self, data: Dict[str, Any]):
        """Route one decoded JSON-RPC message"""
        notification = parse_new_head(data)
        if notification is not None:
            logger.info(f"New block received: {notification.block_number}")
            await self.queue.put(notification)
        elif "error" in data:
            logger.error(f"WebSocket JSON-RPC error: {data['error']}")
        elif "result" in data and "id" in data:
            logger.info("WebSocket subscription confirmed")

    async def _listen(self):
        """Connection loop; runs until stop() or all providers fail"""
        while self._running:
            try:
                if not self.is_connected:
                    await self.connect()

                async for message in self.ws:
                    try:
                        await self.handle_message(json.loads(message))
                    except json.JSONDecodeError as e:
                        logger.error(f"Failed to parse WebSocket message: {e}")
                    except Exception as e:
                        logger.error(f"Error processing message: {e}")

                logger.warning("WebSocket connection closed by server")
                self.is_connected = False
                await self.reconnect()

            except ConnectionClosed as e:
                logger.warning(f"WebSocket connection closed: {e}")
                self.is_connected = False
                await self.reconnect()

            except RPCError as e:
                logger.warning(f"Block feed connection error: {e}")
                self.is_connected = False
                await self.reconnect()

    async def start(self):
        """Start the background connection task"""
        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("Block feed started")

    async def stop(self):
        """Stop listening and disconnect"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except RPCError as e:
                logger.warning(f"Block feed task ended with error: {e}")
            self._task = None
        await self.disconnect()
        logger.info("Block feed stopped")

    def __aiter__(self):
        return self

    async def __anext__(self) -> BlockNotification:
        if not self.queue.empty() or self._task is None:
            return await self.queue.get()

        getter = asyncio.ensure_future(self.queue.get())
        done, _ = await asyncio.wait({getter, self._task}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            return getter.result()

        # Transport task ended; surface its failure to the consumer
        getter.cancel()
        if not self._task.cancelled() and self._task.exception() is not None:
            raise self._task.exception()
        raise StopAsyncIteration
