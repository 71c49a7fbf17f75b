"""Background handlers for duckling.

Handlers subscribe to bus events during __init__ and run their own asyncio
tasks between start() and stop().
"""

from duckling.handlers.task_scheduler import TaskScheduler

__all__ = ["TaskScheduler"]
