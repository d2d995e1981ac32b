"""
Merge of one step event into a tracker's document.

Rules:
- `data` is shallow-merged, the event's keys win.
- A step name is recorded the first time it is seen; later events for the
  same step name do not move its time.
- Every event is appended to `step_logs` as it arrived, including ones
  without a step, repeats of a known step and steps whose date does not
  parse (those are logged but get no timing).
- `updated_at` moves to now, `synced` goes back to False and the step
  timings are recomputed from the whole step set.
"""

from datetime import datetime
from typing import Callable

from models import EventIn, StepTiming, TrackedDocument, utcnow
from step_times import process_step_times


class DocumentAggregator:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def merge(self, document: TrackedDocument, event: EventIn) -> TrackedDocument:
        """Apply `event` to `document` in place and return it."""

        if event.data:
            document.data = {**document.data, **event.data}

        step = event.timed_step()
        if step is not None and step.name not in document.steps:
            document.steps[step.name] = StepTiming(time=step.date)

        document.step_logs.append(dict(event.step) if event.step is not None else None)

        document.updated_at = self.clock()
        document.synced = False
        document.steps = process_step_times(document.steps)
        return document
