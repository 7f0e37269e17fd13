"""Frame rate measurement averaged over short time windows."""

from __future__ import annotations

import sys
import time
from typing import Callable, TextIO


class FrameRate:
    """Count frames and periodically recompute the average frame rate.

    Times are kept in whole milliseconds since construction; each time at
    least ``step_ms`` has passed since the last recalculation the rate is
    updated and the detailed summary is printed to ``out``.
    """

    def __init__(
        self,
        step_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
        out: TextIO | None = None,
    ) -> None:
        self._clock = clock
        self._start = clock()
        self._step = step_ms
        self._out = out
        self.total_frames = 0
        self.frame_rate = 0.0
        self.frame_time = 0.0
        self._last_calc = 0
        self._buffer: list[int] = []

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self._start) * 1000)

    def tick(self) -> "FrameRate":
        """Record one redraw."""
        self.total_frames += 1
        self._buffer.append(self._elapsed_ms())
        if len(self._buffer) >= 2 and self._buffer[-1] - self._last_calc >= self._step:
            self._last_calc = self._buffer[-1]
            self.frame_time = (self._buffer[-1] - self._buffer[0]) / (
                1000.0 * (len(self._buffer) - 1)
            )
            self.frame_rate = 1.0 / self.frame_time if self.frame_time else 0.0
            self._buffer.clear()
            print(self.detailed(), file=self._out if self._out is not None else sys.stdout)
        return self

    def elapsed_time(self) -> float:
        """Seconds since construction."""
        return self._elapsed_ms() / 1000.0

    def summary(self) -> str:
        return "%3.0f fps" % self.frame_rate

    def detailed(self) -> str:
        return "%5.3f sec %3.0f fps" % (self.frame_time, self.frame_rate)