"""
Step timing derivation.

Steps reach a tracker in arrival order, which is not the order they
happened in. Timings are therefore always recomputed from the full step
set, sorted by the step time itself:

- the earliest step gets `from_start = 0` and `from_prev = 0`;
- every later step gets the milliseconds elapsed since the earliest step
  (`from_start`) and since the step right before it (`from_prev`).

Steps sharing a timestamp are ordered by name so the result does not
depend on arrival order.
"""

from datetime import timedelta
from typing import Dict

from models import StepTiming

_MS = timedelta(milliseconds=1)


def process_step_times(steps: Dict[str, StepTiming]) -> Dict[str, StepTiming]:
    """Return a new step mapping, ordered by time, with timings filled in."""

    ordered = sorted(steps.items(), key=lambda item: (item[1].time, item[0]))

    out: Dict[str, StepTiming] = {}
    start_time = None
    prev_time = None
    for name, step in ordered:
        current = step.time
        if start_time is None:
            start_time = prev_time = current
        out[name] = StepTiming(
            time=current,
            from_start=(current - start_time) // _MS,
            from_prev=(current - prev_time) // _MS,
        )
        prev_time = current
    return out
