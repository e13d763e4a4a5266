# Kafka publisher for request sync events
import asyncio
import logging
from confluent_kafka import Producer
from pydantic import BaseModel
from typing import Optional, Callable, Any, List, Tuple

from rental_request_service.app.config import settings
from rental_request_service.app.observability import inject_trace_context_into_kafka_headers
from rental_request_service.app.service.exceptions import KafkaProducerError

logger = logging.getLogger(__name__)

class KafkaProducerService:
    """
    Thin wrapper over confluent_kafka.Producer.

    Messages are enqueued without blocking; delivery reports are drained by a
    background poll loop started with the application.
    """

    def __init__(self, bootstrap_servers: str):
        self.producer_config = {
            'bootstrap.servers': bootstrap_servers,
            'acks': 'all',
        }
        self.producer = Producer(self.producer_config)
        self._cancelled = False
        self._poll_loop_task: Optional[asyncio.Task] = None
        self.delivery_failures = 0
        logger.info(f"KafkaProducer initialized with servers: {bootstrap_servers}")

    def _delivery_report(self, err, msg):
        if err is not None:
            self.delivery_failures += 1
            logger.error(f'Sync event delivery failed: Topic {msg.topic()} Key {msg.key()}: {err}')
        else:
            logger.debug(f'Sync event delivered: Topic {msg.topic()} Key {msg.key()} Partition [{msg.partition()}] @ Offset {msg.offset()}')

    async def _poll_loop(self):
        while not self._cancelled:
            self.producer.poll(0.1)
            await asyncio.sleep(0.1)
        logger.info("KafkaProducer poll loop stopped.")

    def produce_message(
        self,
        topic: str,
        message: BaseModel,
        key: Optional[str] = None,
        callback: Optional[Callable[[Any, Any], None]] = None
    ):
        """
        Enqueues a Pydantic model as JSON, keyed by request id so every event of
        a request lands on the same partition in commit order. The active trace
        context travels in the message headers.

        Raises:
            KafkaProducerError: if the local queue is full or the client rejects the message.
        """
        if self._cancelled:
            logger.warning(f"Producer is stopping; sync event for key {key} not sent to {topic}.")
            return

        headers: List[Tuple[str, bytes]] = inject_trace_context_into_kafka_headers()
        try:
            value_json = message.model_dump_json()
            self.producer.produce(
                topic,
                value=value_json.encode('utf-8'),
                key=key.encode('utf-8') if key else None,
                headers=headers or None,
                callback=callback or self._delivery_report,
            )
            logger.debug(f"Sync event enqueued to {topic} (key: {key}): {value_json}")
        except BufferError as e:
            logger.error(f"Kafka producer queue full; sync event for key {key} dropped. Error: {e}")
            raise KafkaProducerError(f"Kafka producer queue full for topic {topic}.") from e
        except Exception as e:
            logger.error(f"Error producing sync event to Kafka topic {topic}: {e}", exc_info=True)
            raise KafkaProducerError(f"Failed to produce message to {topic}: {e}") from e

    async def start_polling(self):
        if self._poll_loop_task is None or self._poll_loop_task.done():
            self._cancelled = False
            self._poll_loop_task = asyncio.create_task(self._poll_loop())
            logger.info("KafkaProducer polling started.")

    async def stop_polling(self):
        if self._poll_loop_task and not self._cancelled:
            self._cancelled = True
            try:
                await asyncio.wait_for(self._poll_loop_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("KafkaProducer poll loop did not stop in time.")
            self._poll_loop_task = None

    def flush(self, timeout: float = 10.0) -> int:
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} sync event(s) still queued after flush timeout; they are lost on shutdown.")
        else:
            logger.info("All sync events flushed.")
        return remaining

_kafka_producer_instance: Optional[KafkaProducerService] = None

def get_kafka_producer() -> Optional[KafkaProducerService]:
    """Shared producer, or None when Kafka is not configured (sync events are then not published)."""
    global _kafka_producer_instance
    if _kafka_producer_instance is None:
        if not settings.KAFKA_BOOTSTRAP_SERVERS:
            logger.warning("KAFKA_BOOTSTRAP_SERVERS not configured. Sync events will not be published.")
            return None
        _kafka_producer_instance = KafkaProducerService(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS
        )
    return _kafka_producer_instance

def kafka_status() -> str:
    """Health view of the publisher: disabled, connected or degraded (some deliveries failed)."""
    if _kafka_producer_instance is None:
        return "disabled"
    return "degraded" if _kafka_producer_instance.delivery_failures else "connected"

async def startup_kafka_producer():
    producer = get_kafka_producer()
    if producer:
        await producer.start_polling()

async def shutdown_kafka_producer():
    global _kafka_producer_instance
    if _kafka_producer_instance:
        logger.info("Flushing Kafka producer before shutdown...")
        _kafka_producer_instance.flush()
        await _kafka_producer_instance.stop_polling()
        _kafka_producer_instance = None
        logger.info("Kafka producer shutdown complete.")
    else:
        logger.info("Kafka producer was not initialized, skipping shutdown steps.")
