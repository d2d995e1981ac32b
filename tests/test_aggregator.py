from datetime import timedelta

from aggregator import DocumentAggregator
from models import EventIn, TrackedDocument

from conftest import T0, tracker


def event(**fields):
    fields.setdefault("application", "shop")
    fields.setdefault("tracker_id", tracker(1))
    return EventIn.model_validate(fields)


def step(name, seconds):
    return {"name": name, "date": (T0 + timedelta(seconds=seconds)).isoformat()}


def test_data_merge_later_keys_win(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument()

    agg.merge(doc, event(data={"x": 1}))
    agg.merge(doc, event(data={"x": 2, "y": 3}))

    assert doc.data == {"x": 2, "y": 3}


def test_data_keys_not_in_event_are_kept(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument(data={"kept": True})

    agg.merge(doc, event(data={"new": 1}))

    assert doc.data == {"kept": True, "new": 1}


def test_first_seen_step_time_wins(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument()

    agg.merge(doc, event(step=step("cart", 0)))
    agg.merge(doc, event(step=step("cart", 30)))

    assert doc.steps["cart"].time == T0
    assert len(doc.step_logs) == 2
    assert doc.step_logs[1]["name"] == "cart"


def test_event_without_step_is_still_logged(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument()

    agg.merge(doc, event(data={"a": 1}))

    assert doc.steps == {}
    assert doc.step_logs == [None]


def test_merge_touches_updated_at_and_resets_synced(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument(synced=True, updated_at=T0)
    clock.advance(seconds=5)

    returned = agg.merge(doc, event(step=step("start", 0)))

    assert returned is doc
    assert doc.updated_at == clock.now
    assert doc.synced is False


def test_timings_recomputed_when_earlier_step_arrives_late(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument()

    agg.merge(doc, event(step=step("pay", 2)))
    assert doc.steps["pay"].from_start == 0

    agg.merge(doc, event(step=step("cart", 0)))

    assert doc.steps["cart"].from_start == 0
    assert doc.steps["pay"].from_start == 2000
    assert doc.steps["pay"].from_prev == 2000


def test_step_log_keeps_the_step_as_sent(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument()
    sent = {"name": "start", "date": "2018-06-11T21:43:42.455+02:00"}

    agg.merge(doc, event(step=sent))

    assert doc.step_logs == [sent]
    assert doc.steps["start"].time == T0


def test_unparseable_step_is_logged_without_timing(clock):
    agg = DocumentAggregator(clock=clock)
    doc = TrackedDocument()
    sent = {"name": "x", "date": "not a date"}

    agg.merge(doc, event(data={"plan": "pro"}, step=sent))

    assert doc.steps == {}
    assert doc.step_logs == [sent]
    assert doc.data == {"plan": "pro"}
