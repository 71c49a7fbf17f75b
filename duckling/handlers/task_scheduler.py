"""Task Scheduler -- drives the pet's three periodic activities.

Runs three independent asyncio tasks on the same event loop:
1. Status tick: every status_tick_interval seconds, advance the lifecycle
   (decay + death check). A death pauses auto-comments.
2. Auto-comment: a self-rescheduling one-shot timer. Each cycle draws a fresh
   uniform delay, sleeps, fires, then draws again, so intervals are
   independent and drift never accumulates.
3. Cleanup: every cleanup_interval seconds, purge archived screenshots older
   than the retention window.

Auto-comments can be paused and resumed without touching the other two.
stop() cancels everything; nothing fires after it returns.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import timedelta

from duckling.capture import ScreenshotArchive
from duckling.chat.gateway import AIGateway
from duckling.config import Settings
from duckling.events import AUTO_COMMENT, PET_REVIVED, Event, EventBus
from duckling.pet.lifecycle import LifecycleController

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Cooperative scheduler for the status tick, auto-comments and cleanup."""

    def __init__(
        self,
        lifecycle: LifecycleController,
        gateway: AIGateway,
        bus: EventBus,
        settings: Settings,
        *,
        archive: ScreenshotArchive | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._gateway = gateway
        self._bus = bus
        self._settings = settings
        self._archive = archive
        self._rng = rng or random.Random()

        self._running = False
        self._disposed = False
        self._comments_paused = False
        self._paused_due_to_death = False

        self._status_task: asyncio.Task | None = None
        self._comment_task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._next_comment_at: float | None = None

        bus.on(PET_REVIVED, self._on_revived)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all three activities."""
        if self._running:
            return
        self._running = True
        self._disposed = False
        self._paused_due_to_death = self._lifecycle.status.is_dead

        self._status_task = self._spawn(self._status_loop(), "status-tick")
        self._cleanup_task = self._spawn(self._cleanup_loop(), "screenshot-cleanup")
        self._start_comment_timer()
        logger.info(
            "Task scheduler started (tick=%.0fs, comments=%.0f-%.0fs, cleanup=%.0fs)",
            self._settings.status_tick_interval,
            self._settings.auto_comment_min_delay,
            self._settings.auto_comment_max_delay,
            self._settings.cleanup_interval,
        )

    async def stop(self) -> None:
        """Cancel every pending timer and wait for the tasks to finish."""
        self._running = False
        self._disposed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._status_task = self._comment_task = self._cleanup_task = None
        self._next_comment_at = None
        logger.info("Task scheduler stopped")

    # ------------------------------------------------------------------
    # Auto-comment pause/resume
    # ------------------------------------------------------------------

    def pause_auto_comments(self) -> bool:
        """Cancel the pending comment timer. Refused while paused by death."""
        if self._paused_due_to_death:
            logger.debug("Auto-comments already paused: pet is dead")
            return False
        self._comments_paused = True
        self._cancel_comment_timer()
        logger.info("Auto-comments paused")
        return True

    def resume_auto_comments(self) -> bool:
        """Schedule a fresh comment timer. Refused while the pet is dead."""
        if self._paused_due_to_death:
            logger.debug("Cannot resume auto-comments: pet is dead")
            return False
        self._comments_paused = False
        self._start_comment_timer()
        logger.info("Auto-comments resumed")
        return True

    @property
    def auto_comments_active(self) -> bool:
        return self._comment_task is not None and not self._comment_task.done()

    @property
    def paused_due_to_death(self) -> bool:
        return self._paused_due_to_death

    def time_until_next_comment(self) -> timedelta | None:
        if not self.auto_comments_active or self._next_comment_at is None:
            return None
        remaining = self._next_comment_at - asyncio.get_running_loop().time()
        return timedelta(seconds=max(remaining, 0.0))

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    async def force_status_update(self) -> bool:
        """Run one status tick now. Returns True if the pet died during it."""
        died = await self._lifecycle.advance()
        if died:
            self._pause_for_death()
        return died

    async def force_auto_comment(self) -> str | None:
        """Produce one comment now. Returns the emitted text, or None if skipped."""
        if self._lifecycle.status.is_dead or self._paused_due_to_death:
            logger.debug("Auto-comment skipped: pet is dead")
            return None
        if not self._gateway.has_credential():
            logger.debug("Auto-comment skipped: no API key")
            return None

        need_line = self._lifecycle.attention_message()
        if need_line is not None:
            await self._emit_comment(need_line, source="need")
            return need_line

        intro = self._gateway.localizer.get("auto_comment_intro")
        comment = await self._gateway.send_message(intro, attach_context=True)

        # The pet may have died, or we may have been stopped, while waiting
        if self._disposed or self._lifecycle.status.is_dead:
            logger.info("Discarding auto-comment: scheduler stopped or pet died meanwhile")
            return None
        await self._emit_comment(comment, source="ai")
        return comment

    async def run_cleanup(self) -> int:
        """Purge archived screenshots past the retention window."""
        if self._archive is None:
            return 0
        removed = await self._archive.purge(timedelta(seconds=self._settings.screenshot_retention))
        logger.info("Cleanup completed: %d old screenshot(s) removed", removed)
        return removed

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _status_loop(self) -> None:
        """Periodic loop: sleep -> tick -> repeat."""
        while self._running:
            try:
                await asyncio.sleep(self._settings.status_tick_interval)
                await self.force_status_update()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Status tick failed")

    async def _comment_loop(self) -> None:
        """Self-rescheduling one-shot: draw a delay, sleep, fire, draw again."""
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                delay = self._rng.uniform(
                    self._settings.auto_comment_min_delay,
                    self._settings.auto_comment_max_delay,
                )
                self._next_comment_at = loop.time() + delay
                logger.debug("Next auto-comment in %.0fs", delay)
                await asyncio.sleep(delay)
                self._next_comment_at = None
                await self.force_auto_comment()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Auto-comment failed")

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._settings.cleanup_interval)
                await self.run_cleanup()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Cleanup failed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _on_revived(self, event: Event) -> None:
        if not self._running or not self._paused_due_to_death:
            return
        logger.info("Pet revived, resuming auto-comments")
        self._paused_due_to_death = False
        if not self._comments_paused:
            self._start_comment_timer()

    def _pause_for_death(self) -> None:
        if self._paused_due_to_death:
            return
        logger.info("Pausing auto-comments: pet died")
        self._paused_due_to_death = True
        self._cancel_comment_timer()

    def _start_comment_timer(self) -> None:
        if not self._running or self._paused_due_to_death or self._comments_paused:
            return
        self._cancel_comment_timer()
        self._comment_task = self._spawn(self._comment_loop(), "auto-comment")

    def _cancel_comment_timer(self) -> None:
        if self._comment_task is not None:
            self._comment_task.cancel()
            self._comment_task = None
        self._next_comment_at = None

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _emit_comment(self, text: str, source: str) -> None:
        await self._bus.emit(Event(type=AUTO_COMMENT, data={"message": text, "source": source}))
