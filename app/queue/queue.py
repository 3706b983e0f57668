from __future__ import annotations

import json
import logging
import threading
import time
from queue import Queue
from typing import Any, Callable, Optional
from uuid import UUID

try:
    from kafka import KafkaConsumer, KafkaProducer
except ImportError:  # pragma: no cover - optional dependency
    KafkaConsumer = None  # type: ignore
    KafkaProducer = None  # type: ignore

log = logging.getLogger(__name__)

# Receives the id of a generation request, audio artifact, video artifact or
# content (thumbnail) and runs the matching job.
JobProcessor = Callable[[UUID], None]


class BaseQueue:
    def enqueue(self, job_id: UUID) -> None: ...  # pragma: no cover


class LocalQueue(BaseQueue):
    """In-process queue drained by one daemon thread, for single-node runs and tests."""

    def __init__(self, processor: JobProcessor, name: str = "bgm-jobs") -> None:
        self._processor = processor
        self._queue: Queue[Optional[UUID]] = Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def enqueue(self, job_id: UUID) -> None:
        self._queue.put(job_id)

    def join(self) -> None:
        """Block until every job enqueued so far has been processed."""
        self._queue.join()

    def close(self) -> None:
        self._queue.put(None)
        self._thread.join()

    def _run(self) -> None:
        while True:
            job_id = self._queue.get()
            try:
                if job_id is None:
                    return
                started = time.monotonic()
                self._processor(job_id)
                log.debug(
                    "job finished",
                    extra={"job_id": str(job_id), "elapsed": round(time.monotonic() - started, 3)},
                )
            except Exception:
                log.exception("job failed", extra={"job_id": str(job_id)})
            finally:
                self._queue.task_done()


class KafkaQueue(BaseQueue):
    """Publishes job ids to a topic and consumes them on a background thread.

    Delivery is at least once; processors skip entities that are no longer
    pending, so redelivered ids are harmless.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        processor: JobProcessor,
    ) -> None:
        if KafkaProducer is None or KafkaConsumer is None:
            raise RuntimeError("kafka-python is not installed; install the 'kafka' extra")
        self._topic = topic
        self._processor = processor
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            key_serializer=lambda key: key.encode("utf-8"),
            value_serializer=lambda value: json.dumps(value).encode("utf-8"),
        )
        self._consumer = KafkaConsumer(
            topic,
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=True,
            value_deserializer=lambda value: json.loads(value.decode("utf-8")),
        )
        self._thread = threading.Thread(target=self._consume, name=f"kafka-{topic}", daemon=True)
        self._thread.start()

    def enqueue(self, job_id: UUID) -> None:
        payload = {"job_id": str(job_id), "enqueued_at": time.time()}
        self._producer.send(self._topic, key=str(job_id), value=payload)
        self._producer.flush()

    def _consume(self) -> None:
        for message in self._consumer:
            job_id = parse_job_message(message.value)
            if job_id is None:
                log.warning("dropping malformed job message", extra={"offset": message.offset})
                continue
            try:
                self._processor(job_id)
            except Exception:  # pragma: no cover - best effort logging
                log.exception("kafka job failed", extra={"job_id": str(job_id)})


def parse_job_message(value: Any) -> Optional[UUID]:
    if not isinstance(value, dict):
        return None
    try:
        return UUID(str(value["job_id"]))
    except (KeyError, ValueError):
        return None
