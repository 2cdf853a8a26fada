from datetime import date, datetime, timedelta

import pytest

from hotel_booking.pricing import round_half_up
from hotel_booking.refunds import RefundPolicy, calculate_refund, hours_until

START = date(2026, 3, 10)
CHECK_IN = datetime(2026, 3, 10)
POLICY = RefundPolicy.from_pairs([(168, 100), (72, 75), (24, 50)])


def refund_at(hours_before, total=100_000, deposit=0, policy=POLICY):
    return calculate_refund(total, START, deposit, policy, CHECK_IN - timedelta(hours=hours_before))


def test_hours_until_check_in():
    assert hours_until(START, CHECK_IN - timedelta(hours=30)) == 30


def test_tiers():
    assert refund_at(200) == 100_000
    assert refund_at(100) == 75_000
    assert refund_at(30) == 50_000
    assert refund_at(10) == 0
    # After check-in has passed
    assert refund_at(-5) == 0


def test_tier_boundary_needs_more_than_the_cutoff():
    assert refund_at(168) == 75_000
    assert refund_at(168.5) == 100_000


def test_deposit_is_retained_outside_the_full_refund_tier():
    assert refund_at(200, deposit=30_000) == 100_000
    assert refund_at(100, deposit=30_000) == 70_000
    assert refund_at(30, deposit=30_000) == 50_000


def test_refund_is_monotonic_and_bounded():
    total = 123_457
    previous = None
    for hours_before in range(400, -48, -1):
        refund = refund_at(hours_before, total=total, deposit=10_000)
        assert 0 <= refund <= total
        if previous is not None:
            assert refund <= previous
        previous = refund


def test_from_pairs_sorts_and_validates():
    policy = RefundPolicy.from_pairs([(24, 50), (168, 100)])
    assert [tier.min_hours_notice for tier in policy.tiers] == [168, 24]

    with pytest.raises(ValueError):
        RefundPolicy.from_pairs([(168, 120)])
    with pytest.raises(ValueError):
        RefundPolicy.from_pairs([(168, 50), (24, 75)])


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.4999) == 2
