"""Tests for rescheduling plans and their execution."""

import asyncio
from datetime import timedelta

import pytest
from conftest import FakeCalendarProvider, at, make_event, span

from cruso.calendar.events import InstanceScope, SeriesScope, ThisAndFutureScope
from cruso.calendar.rescheduling import (
    REASON_ALL_DAY,
    REASON_NO_SLOT,
    apply_plan,
    plan_rescheduling,
)
from cruso.core.errors import InvalidInput, ProviderPermanent, ProviderTransient

HORIZON = timedelta(hours=4)


class TestPlanRescheduling:
    def test_conflicting_event_moves_forward_to_nearest_gap(self):
        standup = make_event("standup", span(10, (10, 30)))
        plan = plan_rescheduling(span(10, 11), [standup], HORIZON)

        assert [m.event_id for m in plan.moved] == ["standup"]
        assert plan.moved[0].new_range == span(11, (11, 30))
        assert plan.unresolved == []
        assert plan.fully_resolved

    def test_searches_backward_when_forward_is_blocked(self):
        review = make_event("review", span((10, 30), 11))
        afternoon = make_event("offsite", span(11, 18))
        plan = plan_rescheduling(span(10, 11), [review, afternoon], HORIZON)

        assert plan.moved[0].new_range == span((9, 30), 10)

    def test_no_slot_within_horizon_is_unresolved(self):
        blocked = make_event("blocked", span(10, 11))
        morning = make_event("morning", span(6, 10))
        evening = make_event("evening", span(11, 16))
        plan = plan_rescheduling(span(10, 11), [blocked, morning, evening], HORIZON)

        assert plan.moved == []
        assert [(u.event_id, u.reason) for u in plan.unresolved] == [("blocked", REASON_NO_SLOT)]

    def test_non_conflicting_events_are_untouched(self):
        conflict = make_event("conflict", span(10, 11))
        lunch = make_event("lunch", span(12, 13))
        plan = plan_rescheduling(span(10, 11), [conflict, lunch], HORIZON)

        ids = {m.event_id for m in plan.moved} | {u.event_id for u in plan.unresolved}
        assert ids == {"conflict"}
        assert plan.moved[0].new_range == span(11, 12)
        assert lunch.range == span(12, 13)

    def test_moved_events_do_not_collide(self):
        first = make_event("first", span(10, (10, 30)))
        second = make_event("second", span((10, 30), 11))
        plan = plan_rescheduling(span(10, 11), [first, second], HORIZON)

        targets = sorted((m.new_range for m in plan.moved), key=lambda r: r.start)
        assert targets == [span(11, (11, 30)), span((11, 30), 12)]

    def test_all_day_events_are_reported(self):
        holiday = make_event("holiday", span(0, 23), all_day=True)
        plan = plan_rescheduling(span(10, 11), [holiday], HORIZON)
        assert [(u.event_id, u.reason) for u in plan.unresolved] == [("holiday", REASON_ALL_DAY)]

    def test_free_and_cancelled_events_are_ignored(self):
        tentative = make_event("free", span(10, 11), transparent=True)
        cancelled = make_event("gone", span(10, 11), status="cancelled")
        plan = plan_rescheduling(span(10, 11), [tentative, cancelled], HORIZON)
        assert plan.moved == [] and plan.unresolved == []

    def test_never_moves_before_not_before(self):
        call = make_event("call", span((10, 30), 11))
        late = make_event("late", span(11, 20))
        plan = plan_rescheduling(span(10, 11), [call, late], HORIZON, not_before=at(9, 45))
        assert plan.unresolved[0].reason == REASON_NO_SLOT

    def test_extra_busy_time_is_respected(self):
        standup = make_event("standup", span(10, (10, 30)))
        plan = plan_rescheduling(span(10, 11), [standup], HORIZON, busy=[span(11, 12)])
        assert plan.moved[0].new_range == span(12, (12, 30))

    def test_recurring_instance_gets_instance_scope(self):
        weekly = make_event(
            "weekly_20250106T100000Z",
            span(10, (10, 30)),
            recurring_event_id="weekly",
            original_start=at(10),
        )
        plan = plan_rescheduling(span(10, 11), [weekly], HORIZON)
        assert plan.moved[0].scope == InstanceScope(at(10))

    @pytest.mark.parametrize(
        ("kind", "expected"),
        [("series", SeriesScope()), ("thisAndFuture", ThisAndFutureScope(at(10)))],
    )
    def test_recurring_scope_is_applied_to_recurring_events(self, kind, expected):
        weekly = make_event(
            "weekly_20250106T100000Z",
            span(10, (10, 30)),
            recurring_event_id="weekly",
            original_start=at(10),
        )
        one_off = make_event("one-off", span((10, 30), 11))

        plan = plan_rescheduling(
            span(10, 11), [weekly, one_off], HORIZON, recurring_scope=kind
        )

        scopes = {m.event_id: m.scope for m in plan.moved}
        assert scopes == {"weekly_20250106T100000Z": expected, "one-off": None}

    def test_rejects_unknown_recurring_scope(self):
        with pytest.raises(InvalidInput, match="Unknown edit scope"):
            plan_rescheduling(span(10, 11), [], HORIZON, recurring_scope="all")

    def test_zero_horizon_cannot_move_anything(self):
        meeting = make_event("m", span(10, 11))
        plan = plan_rescheduling(span(10, 11), [meeting], timedelta(0))
        assert plan.unresolved[0].reason == REASON_NO_SLOT

    def test_rejects_negative_horizon(self):
        with pytest.raises(InvalidInput):
            plan_rescheduling(span(10, 11), [], timedelta(hours=-1))

    def test_rejects_non_events(self):
        with pytest.raises(InvalidInput):
            plan_rescheduling(span(10, 11), [span(10, 11)], HORIZON)

    def test_plan_serializes(self):
        plan = plan_rescheduling(span(10, 11), [make_event("a", span(10, (10, 30)))], HORIZON)
        data = plan.to_dict()
        assert data["moved"][0]["new_range"]["start"] == at(11).isoformat()
        assert data["moved"][0]["scope"] is None


class TestApplyPlan:
    async def test_moves_are_applied(self):
        standup = make_event("standup", span(10, (10, 30)))
        provider = FakeCalendarProvider([standup])
        plan = plan_rescheduling(span(10, 11), [standup], HORIZON)

        outcome = await apply_plan(plan, provider, concurrency_limit=2)

        assert outcome.fully_resolved
        assert provider.moves == [("standup", span(11, (11, 30)), None)]

    async def test_provider_failure_is_partial(self):
        ok = make_event("ok", span(10, (10, 30)))
        broken = make_event("broken", span((10, 30), 11))
        provider = FakeCalendarProvider([ok, broken])
        provider.failures["broken"] = ProviderPermanent("forbidden", status_code=403)
        plan = plan_rescheduling(span(10, 11), [ok, broken], HORIZON)

        outcome = await apply_plan(plan, provider, concurrency_limit=4)

        assert [m.event_id for m in outcome.moved] == ["ok"]
        assert outcome.unresolved[0].event_id == "broken"
        assert outcome.unresolved[0].reason.startswith("provider_permanent")
        assert not outcome.fully_resolved

    async def test_transient_failure_reason(self):
        event = make_event("e", span(10, (10, 30)))
        provider = FakeCalendarProvider([event])
        provider.failures["e"] = ProviderTransient("503")
        plan = plan_rescheduling(span(10, 11), [event], HORIZON)

        outcome = await apply_plan(plan, provider, concurrency_limit=1)
        assert outcome.unresolved[0].reason.startswith("provider_transient")

    async def test_planning_failures_are_kept(self):
        holiday = make_event("holiday", span(0, 23), all_day=True)
        plan = plan_rescheduling(span(10, 11), [holiday], HORIZON)
        outcome = await apply_plan(plan, FakeCalendarProvider(), concurrency_limit=1)
        assert [u.event_id for u in outcome.unresolved] == ["holiday"]

    async def test_concurrency_is_bounded(self):
        active = 0
        peak = 0

        class SlowProvider(FakeCalendarProvider):
            async def move_event(self, event, new_range, scope):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return event

        events = [make_event(f"e{i}", span((10, i * 5), (10, i * 5 + 5))) for i in range(6)]
        plan = plan_rescheduling(span(10, 11), events, timedelta(hours=8))
        assert len(plan.moved) == 6

        await apply_plan(plan, SlowProvider(events), concurrency_limit=2)
        assert peak == 2

    @pytest.mark.parametrize("limit", [0, -1, 1.5, True])
    async def test_rejects_bad_concurrency_limit(self, limit):
        plan = plan_rescheduling(span(10, 11), [], HORIZON)
        with pytest.raises(InvalidInput):
            await apply_plan(plan, FakeCalendarProvider(), concurrency_limit=limit)
