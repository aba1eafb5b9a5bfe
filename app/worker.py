"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command:
  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

Polls every registered queue in turn, hands each task to its handler and
logs the outcome.  A failing handler is logged and the loop moves on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.core.metrics import QUEUE_DEPTH
from app.services.task_queue import TaskQueue, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(SETTINGS.results_queue)
async def handle_exam_result(payload: dict) -> None:
    """Deliver a participant's result.

    Delivery itself (mail, push) belongs to the notification provider;
    here the result is recorded in the log with its ids as context.
    """
    if "attempt_id" not in payload or "participant_id" not in payload:
        raise ValueError(f"malformed result payload: {sorted(payload)}")
    logger.info(
        "Result ready for participant=%s assessment=%s score=%s",
        payload["participant_id"],
        payload.get("assessment_id"),
        payload.get("score"),
        extra={
            "attempt_id": payload["attempt_id"],
            "assessment_id": payload.get("assessment_id"),
        },
    )


async def process_one(queue: TaskQueue, queue_name: str, timeout: int = 1) -> bool:
    """Dequeue and handle at most one task.  False when the queue was empty."""
    task = await queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    QUEUE_DEPTH.labels(queue_name=queue_name).set(await queue.queue_length(queue_name))
    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        handled = False
        for queue_name in queues:
            handled = await process_one(task_queue, queue_name) or handled
        if not handled:
            # the in-memory queue does not block on an empty pop
            await asyncio.sleep(0.5)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
