"""Background workers."""

from .webhook_queue import WebhookQueueStats, WebhookTaskQueue

__all__ = ["WebhookQueueStats", "WebhookTaskQueue"]
