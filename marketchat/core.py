import os
import asyncio
from prometheus_client import Counter, Gauge, start_http_server
import logging

logger = logging.getLogger(__name__)

REDIS = None

MESSAGES_SENT = Counter('chat_messages_sent_total', 'Messages stored by the chat service')
CHATS_CREATED = Counter('chat_chats_created_total', 'Conversations opened by customers')
EVENTS_EMITTED = Counter('chat_ws_events_emitted_total', 'Websocket events emitted', ['event'])
EMIT_FAILURES = Counter('chat_ws_emit_failures_total', 'Websocket events that could not be emitted', ['event'])
CONNECTED_SOCKETS = Gauge('chat_ws_connected_sockets', 'Websockets connected to this instance')


def init_metrics(port: int = None):
    """Initialize Prometheus metrics server"""
    port = port or int(os.getenv('METRICS_PORT', '8001'))
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except Exception as e:
        logger.warning(f'Prometheus start failed: {e}')


async def redis_startup():
    """Start Redis connection with retries; the app keeps working without it"""
    global REDIS

    import redis.asyncio as aioredis

    redis_url = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    max_retries = 3
    retry_delay = 3  # seconds

    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting to connect to Redis: {redis_url} (attempt {attempt + 1}/{max_retries})")

            REDIS = aioredis.from_url(
                redis_url,
                decode_responses=False,
                max_connections=20,
                health_check_interval=30,
                socket_connect_timeout=5,
            )

            await REDIS.ping()

            logger.info("Redis connected successfully")
            break

        except Exception as e:
            logger.warning(f'Redis startup attempt {attempt + 1} failed: {e}')
            if REDIS:
                try:
                    await REDIS.aclose()
                except Exception:
                    pass
                REDIS = None

            if attempt < max_retries - 1:
                logger.info(f"Retrying Redis connection in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error("Failed to connect to Redis after all retries")


async def shutdown_connections():
    """Gracefully shutdown all connections"""
    global REDIS
    logger.info("Shutting down connections...")

    if REDIS:
        try:
            await REDIS.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
        REDIS = None
