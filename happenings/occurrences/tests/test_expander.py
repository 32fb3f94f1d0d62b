from datetime import time

from happenings.occurrences.expander import EventDefinition, ExpansionCaps, expand_events

THURSDAY = 4


def make_event(event_id, **kwargs):
    kwargs.setdefault("title", f"Event {event_id}")
    return EventDefinition(id=event_id, **kwargs)


def test_ordinal_series_in_february():
    event = make_event("song-circle", day_of_week=THURSDAY, recurrence_rule="1st/3rd")
    result = expand_events([event], "2026-02-01", "2026-02-28")
    assert list(result.groups) == ["2026-02-05", "2026-02-19"]
    assert result.metrics.events_processed == 1
    assert result.metrics.total_occurrences == 2
    assert not result.metrics.was_capped


def test_single_day_window_returns_occurrences_anchored_on_that_day():
    weekly = make_event("weekly", day_of_week=THURSDAY, recurrence_rule="weekly")
    one_off = make_event("one-off", event_date="2026-02-05")
    other_day = make_event("other", event_date="2026-02-06")
    result = expand_events([weekly, one_off, other_day], "2026-02-05", "2026-02-05")
    assert list(result.groups) == ["2026-02-05"]
    assert {entry.event_id for entry in result.groups["2026-02-05"]} == {"weekly", "one-off"}

    again = expand_events([weekly, one_off, other_day], "2026-02-05", "2026-02-05")
    assert again.groups == result.groups


def test_one_off_outside_window_is_not_emitted():
    event = make_event("past", event_date="2026-01-15")
    result = expand_events([event], "2026-02-01", "2026-02-28")
    assert result.groups == {}
    assert result.unknown_events == []


def test_bucket_order_is_deterministic():
    late = make_event("a", title="Zydeco", event_date="2026-02-05", start_time=time(20, 0))
    early = make_event("b", title="Open Mic", event_date="2026-02-05", start_time=time(18, 30))
    no_time = make_event("c", title="Album Club", event_date="2026-02-05")
    same_time = make_event("d", title="Blues Jam", event_date="2026-02-05", start_time=time(20, 0))

    forward = expand_events([late, early, no_time, same_time], "2026-02-01", "2026-02-28")
    backward = expand_events([same_time, no_time, early, late], "2026-02-01", "2026-02-28")

    order = [entry.event_id for entry in forward.groups["2026-02-05"]]
    assert order == ["b", "d", "a", "c"]
    assert [entry.event_id for entry in backward.groups["2026-02-05"]] == order


def test_malformed_event_does_not_break_the_batch(caplog):
    bad = make_event("bad", recurrence_rule="1st/3rd")
    good = make_event("good", day_of_week=THURSDAY, recurrence_rule="weekly")
    result = expand_events([bad, good], "2026-02-01", "2026-02-28")

    assert [event.id for event in result.unknown_events] == ["bad"]
    assert result.metrics.total_occurrences == 4
    assert all(entry.event_id == "good" for entry in result.entries())
    assert "bad" in caplog.text


def test_event_cap():
    events = [make_event(f"event-{i}", event_date="2026-02-15") for i in range(50)]
    result = expand_events(events, "2026-02-01", "2026-02-28", ExpansionCaps(max_events=10))
    assert result.metrics.events_processed == 10
    assert result.metrics.events_skipped == 40
    assert result.metrics.was_capped


def test_total_occurrence_cap(caplog):
    events = [
        make_event(f"weekly-{i}", day_of_week=i % 7, recurrence_rule="weekly") for i in range(10)
    ]
    result = expand_events(
        events, "2026-01-01", "2026-03-31", ExpansionCaps(max_total_occurrences=20)
    )
    assert result.metrics.total_occurrences == 20
    assert len(result.entries()) == 20
    assert result.metrics.was_capped
    assert result.metrics.events_skipped > 0
    assert "capped" in caplog.text


def test_per_event_cap():
    event = make_event("dense", day_of_week=THURSDAY, recurrence_rule="weekly")
    result = expand_events(
        [event], "2026-01-01", "2026-12-31", ExpansionCaps(max_occurrences_per_event=5)
    )
    assert result.metrics.total_occurrences == 5
    assert result.metrics.was_capped


def test_no_cap_under_limits():
    events = [make_event(f"event-{i}", event_date="2026-02-15") for i in range(10)]
    result = expand_events(events, "2026-02-01", "2026-02-28")
    assert result.metrics.events_processed == 10
    assert result.metrics.events_skipped == 0
    assert not result.metrics.was_capped


def test_low_confidence_is_carried_to_entries():
    event = make_event("capped", day_of_week=THURSDAY, recurrence_rule="weekly", max_occurrences=3)
    result = expand_events([event], "2026-02-01", "2026-02-28")
    assert result.entries()
    assert not any(entry.is_confident for entry in result.entries())
