import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from bitbybit.core.config import TrackingConfig, TrackingMode
from bitbybit.core.database import atomic
from bitbybit.repositories.section_repository import SectionRepository

logger = logging.getLogger(__name__)

MarkRead = Callable[[int], Awaitable[None]]
Scheduler = Callable[[float, Callable[[], None]], "asyncio.TimerHandle"]


@dataclass(frozen=True)
class Viewport:
    """Scroll metrics of the view hosting a section, in the view's own units."""

    scroll_top: float
    client_height: float
    scroll_height: float

    def distance_to_end(self) -> float:
        return self.scroll_height - (self.scroll_top + self.client_height)

    def progress(self) -> float:
        scrollable = self.scroll_height - self.client_height
        if scrollable <= 0:
            return 100.0
        return min(max(self.scroll_top / scrollable * 100, 0.0), 100.0)


class Subscription:
    """Handle returned by ReadStateTracker.activate; dispose() is idempotent."""

    def __init__(self, on_dispose: Optional[Callable[[], None]] = None) -> None:
        self._on_dispose = on_dispose
        self.disposed = on_dispose is None

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._on_dispose()


class _Activation:
    def __init__(self, section_id: int) -> None:
        self.section_id = section_id
        self.fired = False
        self.listening = False
        self.timer = None
        self.subscription: Optional[Subscription] = None


class ReadStateTracker:
    """
    Auto-marks the active section read, under one of two policies:

    dwell   a single timer starts when an unread section becomes active and marks it
            read after config.dwell_seconds
    scroll  the section is marked read the first time the viewport gets within
            config.scroll_proximity of the end of the content; the listener detaches
            after firing

    Only one section is active at a time. Activating another section, activating a read
    section, or deactivate() disposes the current timer/listener. A failed write is
    retried, then reported to on_error.
    """

    def __init__(
        self,
        config: TrackingConfig,
        mark_read: MarkRead,
        on_marked: Optional[Callable[[int], None]] = None,
        on_error: Optional[Callable[[int, Exception], None]] = None,
        schedule: Optional[Scheduler] = None,
    ) -> None:
        self.config = config
        self.mark_read = mark_read
        self.on_marked = on_marked
        self.on_error = on_error
        self._schedule = schedule
        self._active: Optional[_Activation] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def active_section_id(self) -> Optional[int]:
        return self._active.section_id if self._active is not None else None

    def activate(self, section_id: int, is_read: bool, viewport: Optional[Viewport] = None) -> Subscription:
        self.deactivate()
        if is_read:
            return Subscription()

        activation = _Activation(section_id)
        activation.subscription = Subscription(lambda: self._dispose(activation))
        self._active = activation

        if self.config.mode == TrackingMode.DWELL:
            schedule = self._schedule or asyncio.get_running_loop().call_later
            activation.timer = schedule(self.config.dwell_seconds, lambda: self._fire(activation))
        else:
            activation.listening = True
            # Content shorter than the viewport never scrolls, so check right away.
            if viewport is not None:
                self.report_scroll(section_id, viewport)

        logger.debug("Tracking section %s (%s)", section_id, self.config.mode.value)
        return activation.subscription

    def report_scroll(self, section_id: int, viewport: Viewport) -> bool:
        """Feed a scroll position; True when it caused the section to be marked read."""
        activation = self._active
        if activation is None or activation.section_id != section_id or not activation.listening:
            return False
        if viewport.distance_to_end() > self.config.scroll_proximity:
            return False
        activation.listening = False
        self._fire(activation)
        return True

    def deactivate(self) -> None:
        if self._active is not None:
            self._active.subscription.dispose()

    async def drain(self) -> None:
        """Wait for in-flight read writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _dispose(self, activation: _Activation) -> None:
        if activation.timer is not None:
            activation.timer.cancel()
            activation.timer = None
        activation.listening = False
        if self._active is activation:
            self._active = None

    def _fire(self, activation: _Activation) -> None:
        if activation.fired or (activation.subscription is not None and activation.subscription.disposed):
            return
        activation.fired = True
        activation.timer = None
        activation.listening = False
        task = asyncio.ensure_future(self._persist(activation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, activation: _Activation) -> None:
        section_id = activation.section_id
        attempts = self.config.retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self.mark_read(section_id)
                break
            except Exception as e:
                if attempt < attempts:
                    logger.warning("Marking section %s read failed (attempt %s/%s): %s", section_id, attempt, attempts, e)
                    await asyncio.sleep(self.config.retry_delay_seconds)
                    continue
                logger.exception("Could not mark section %s read", section_id)
                if self.on_error is None:
                    raise
                self.on_error(section_id, e)
                return

        logger.info("Section %s marked read", section_id)
        if activation.subscription is not None:
            activation.subscription.dispose()
        if self.on_marked is not None:
            self.on_marked(section_id)


def session_mark_read(session_factory: Callable) -> MarkRead:
    """Build a mark_read callback that writes through a fresh session per event."""

    async def mark(section_id: int) -> None:
        db = session_factory()
        try:
            with atomic(db):
                SectionRepository(db).mark_as_read(section_id)
        finally:
            db.close()

    return mark
