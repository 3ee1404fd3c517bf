import asyncio
from typing import Dict, Optional
from core.logger import logger
from services.exam_tracker import ExamTracker

class CountdownTimer:
    """
    Drives ExamTracker.tick() once per interval until the clock runs out or it is cancelled.

    Used for trackers held in process, such as a client or kiosk embedding the
    tracker directly. Server-held sessions have no running task; they catch up
    with wall-clock time on each request in ExamSessionService._sync.
    """

    def __init__(self, tracker: ExamTracker, interval: float = 1.0):
        self.tracker = tracker
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._run())
        return self._task

    async def _run(self):
        while not self.tracker.expired and not self.tracker.finished:
            await asyncio.sleep(self.interval)
            if self.tracker.finished:
                break
            self.tracker.tick()
        logger.debug("Countdown stopped", remaining=self.tracker.remaining)

    def cancel(self):
        if self.running:
            self._task.cancel()
        self._task = None


class TimerRegistry:
    """One countdown per session key; registering a new one cancels the old."""

    def __init__(self):
        self._timers: Dict[str, CountdownTimer] = {}

    def register(self, key: str, timer: CountdownTimer) -> CountdownTimer:
        self.cancel(key)
        self._timers[key] = timer
        task = timer.start()
        logger.debug(f"Registered countdown for session {key}")

        # Forget the timer once its task is done
        task.add_done_callback(lambda t: self._cleanup(key, timer))
        return timer

    def get(self, key: str) -> Optional[CountdownTimer]:
        return self._timers.get(key)

    def cancel(self, key: str):
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()
            logger.debug(f"Cancelled countdown for session {key}")

    def _cleanup(self, key: str, timer: CountdownTimer):
        if self._timers.get(key) is timer:
            del self._timers[key]

    def __len__(self) -> int:
        return len(self._timers)
