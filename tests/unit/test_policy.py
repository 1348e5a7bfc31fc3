"""
Unit and property tests for the latest-location policy.
"""
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st

from domain.errors import TelemetryValidationError
from domain.policy import create_snapshot, fix_order_key, is_newer, should_replace
from support import NOW, TENANT_ID, VEHICLE_A, make_fix, utc

BASE = datetime(2026, 1, 30, tzinfo=timezone.utc)

fix_params = st.tuples(
    st.integers(min_value=0, max_value=3600),
    st.one_of(st.none(), st.integers(min_value=0, max_value=5)),
    st.integers(min_value=0, max_value=10),
)


def fix_from(params, index=0):
    seconds, sequence, received = params
    return make_fix(
        VEHICLE_A,
        BASE + timedelta(seconds=seconds),
        sequence=sequence,
        received_at=BASE + timedelta(hours=2, seconds=received),
        fix_id=f"fix-{index}",
    )


def snapshot_of(fix, route_schedule_id=None):
    return create_snapshot(TENANT_ID, VEHICLE_A, fix, route_schedule_id, NOW)


class TestShouldReplace:

    def test_no_current_snapshot_always_replaces(self):
        assert should_replace(None, make_fix(VEHICLE_A, utc(12)))

    def test_later_device_time_wins(self):
        current = snapshot_of(make_fix(VEHICLE_A, utc(12)))
        assert should_replace(current, make_fix(VEHICLE_A, utc(12, 0, 1)))
        assert not should_replace(current, make_fix(VEHICLE_A, utc(11, 59)))

    def test_sequence_breaks_device_time_ties(self):
        current = snapshot_of(make_fix(VEHICLE_A, utc(12), sequence=5))
        assert should_replace(current, make_fix(VEHICLE_A, utc(12), sequence=6))
        assert not should_replace(current, make_fix(VEHICLE_A, utc(12), sequence=4))

    def test_missing_sequence_counts_as_zero(self):
        current = snapshot_of(make_fix(VEHICLE_A, utc(12)))
        assert not should_replace(current, make_fix(VEHICLE_A, utc(12), sequence=0))
        assert should_replace(current, make_fix(VEHICLE_A, utc(12), sequence=1))

    def test_receipt_time_breaks_remaining_ties(self):
        current = snapshot_of(make_fix(VEHICLE_A, utc(12), received_at=utc(12, 1)))
        assert should_replace(current, make_fix(VEHICLE_A, utc(12), received_at=utc(12, 2)))
        assert not should_replace(current, make_fix(VEHICLE_A, utc(12), received_at=utc(12, 1)))

    def test_device_time_beats_sequence(self):
        current = snapshot_of(make_fix(VEHICLE_A, utc(12), sequence=100))
        assert should_replace(current, make_fix(VEHICLE_A, utc(12, 0, 1), sequence=0))

    def test_none_candidate_raises(self):
        with pytest.raises(ValueError):
            should_replace(None, None)


class TestIsNewer:

    def test_strict(self):
        fix = make_fix(VEHICLE_A, utc(12))
        assert not is_newer(fix, fix)

    def test_none_arguments_raise(self):
        fix = make_fix(VEHICLE_A, utc(12))
        with pytest.raises(ValueError):
            is_newer(None, fix)
        with pytest.raises(ValueError):
            is_newer(fix, None)

    @given(fix_params, fix_params)
    def test_agrees_with_should_replace(self, a, b):
        candidate, other = fix_from(a, 1), fix_from(b, 2)
        assert is_newer(candidate, other) == should_replace(snapshot_of(other), candidate)

    @given(fix_params, fix_params)
    def test_antisymmetric(self, a, b):
        first, second = fix_from(a, 1), fix_from(b, 2)
        assert not (is_newer(first, second) and is_newer(second, first))

    @given(st.lists(fix_params, min_size=1, max_size=8))
    def test_reduction_is_order_independent(self, params):
        fixes = [fix_from(p, i) for i, p in enumerate(params)]

        def reduce(items):
            best = items[0]
            for fix in items[1:]:
                if is_newer(fix, best):
                    best = fix
            return best

        assert fix_order_key(reduce(fixes)) == fix_order_key(reduce(list(reversed(fixes))))
        assert fix_order_key(reduce(fixes)) == max(fix_order_key(f) for f in fixes)


class TestCreateSnapshot:

    def test_copies_fix_fields(self):
        fix = make_fix(VEHICLE_A, utc(12), sequence=3, latitude=10.5, longitude=20.25)
        snapshot = snapshot_of(fix)
        assert snapshot.gps_fix_id == fix.id
        assert snapshot.device_time_utc == fix.device_time_utc
        assert snapshot.received_at_utc == fix.received_at_utc
        assert snapshot.device_sequence == 3
        assert (snapshot.latitude, snapshot.longitude) == (10.5, 20.25)
        assert snapshot.updated_at_utc == NOW

    def test_missing_sequence_stored_as_zero(self):
        assert snapshot_of(make_fix(VEHICLE_A, utc(12))).device_sequence == 0

    def test_route_schedule_is_carried_not_derived(self):
        snapshot = snapshot_of(make_fix(VEHICLE_A, utc(12)), route_schedule_id="route-7")
        assert snapshot.route_schedule_id == "route-7"

    def test_updated_at_must_be_utc(self):
        with pytest.raises(TelemetryValidationError):
            create_snapshot(TENANT_ID, VEHICLE_A, make_fix(VEHICLE_A, utc(12)), None, datetime(2026, 1, 30))

    def test_none_fix_raises(self):
        with pytest.raises(ValueError):
            create_snapshot(TENANT_ID, VEHICLE_A, None, None, NOW)

    def test_order_key_matches_source_fix(self):
        fix = make_fix(VEHICLE_A, utc(12), sequence=2)
        assert fix_order_key(snapshot_of(fix)) == fix_order_key(fix)
