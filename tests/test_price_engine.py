import pytest

from repricer.core.pricing.price_engine import PriceEngine
from repricer.infra.adapter.entity.strategy_entity import PricingStrategy


def strategy(rule, adjustment_type=None, value=None, no_competition="USE_MAX_PRICE"):
    return PricingStrategy(
        strategy_name=f"{rule} test",
        repricing_rule=rule,
        adjustment_type=adjustment_type,
        adjustment_value=value,
        no_competition_action=no_competition,
    )


@pytest.fixture
def engine():
    return PriceEngine()


def test_beat_lowest_by_amount(engine):
    decision = engine.compute(strategy("BEAT_LOWEST", "AMOUNT", 1), [95, 98], 100, 80, 150)

    assert decision.candidate == 94
    assert decision.update_needed is True
    assert decision.lowest_competitor_price == 95


def test_beat_lowest_clamps_to_min_price(engine):
    decision = engine.compute(strategy("BEAT_LOWEST", "AMOUNT", 1), [95, 98], 100, 96, 150)

    assert decision.candidate == 96
    assert decision.raw_price == 94
    assert decision.constraint_applied == "min_price"


def test_keep_current_without_competitors(engine):
    decision = engine.compute(strategy("MATCH_LOWEST", no_competition="KEEP_CURRENT"), [], 50)

    assert decision.candidate == 50
    assert decision.update_needed is False


@pytest.mark.parametrize("current", [50, 120])
def test_keep_current_ignores_bounds(engine, current):
    decision = engine.compute(strategy("MATCH_LOWEST", no_competition="KEEP_CURRENT"), [], current, 60, 100)

    assert decision.candidate == current
    assert decision.update_needed is False
    assert decision.constraint_applied is None


def test_stay_above_by_percentage(engine):
    decision = engine.compute(strategy("STAY_ABOVE", "PERCENTAGE", 0.10), [200, 250], 180)

    assert decision.raw_price == 220
    assert decision.candidate == 220


@pytest.mark.parametrize(
    "fraction, expected",
    [(1, 400), (1.5, 500), (2, 600)],
)
def test_percentage_fractions_are_taken_as_is(engine, fraction, expected):
    s = strategy("STAY_ABOVE", "PERCENTAGE", fraction)

    assert s.adjustment_value == fraction
    assert engine.compute(s, [200], 180).candidate == expected


def test_beating_by_a_whole_fraction_keeps_current(engine):
    decision = engine.compute(strategy("BEAT_LOWEST", "PERCENTAGE", 1), [200], 120)

    assert decision.candidate == 120
    assert decision.constraint_applied == "non_positive"


def test_beat_lowest_by_percentage_rounds_half_up(engine):
    decision = engine.compute(strategy("BEAT_LOWEST", "PERCENTAGE", 0.05), [10.01], 20)

    # 10.01 * 0.95 = 9.5095
    assert decision.candidate == 9.51


@pytest.mark.parametrize("prices", [[95], [12.5, 40, 13], [100.01, 100.02]])
def test_match_lowest_equals_minimum(engine, prices):
    decision = engine.compute(strategy("MATCH_LOWEST"), prices, 100)

    assert decision.raw_price == min(prices)


@pytest.mark.parametrize("lowest", [1, 50, 99.99, 150, 10000])
def test_candidate_stays_within_bounds(engine, lowest):
    decision = engine.compute(strategy("BEAT_LOWEST", "AMOUNT", 5), [lowest], 100, 60, 140)

    assert 60 <= decision.candidate <= 140


def test_no_competition_uses_max_price(engine):
    decision = engine.compute(strategy("MATCH_LOWEST"), [], 100, 80, 150)

    assert decision.candidate == 150
    assert decision.update_needed is True


def test_no_competition_uses_min_price(engine):
    decision = engine.compute(strategy("MATCH_LOWEST", no_competition="USE_MIN_PRICE"), [], 100, 80, 150)

    assert decision.candidate == 80


def test_no_competition_without_bound_keeps_current(engine):
    decision = engine.compute(strategy("MATCH_LOWEST"), [], 100)

    assert decision.candidate == 100
    assert decision.update_needed is False


def test_non_positive_candidate_keeps_current(engine):
    decision = engine.compute(strategy("BEAT_LOWEST", "AMOUNT", 10), [5], 20)

    assert decision.candidate == 20
    assert decision.update_needed is False
    assert decision.constraint_applied == "non_positive"


def test_sub_cent_difference_is_not_an_update(engine):
    decision = engine.compute(strategy("MATCH_LOWEST"), [99.999], 100)

    assert decision.candidate == 100
    assert decision.update_needed is False


def test_compute_is_idempotent(engine):
    s = strategy("BEAT_LOWEST", "PERCENTAGE", 0.033)
    first = engine.compute(s, [77.77, 80], 90, 50, 100)
    second = engine.compute(s, [77.77, 80], 90, 50, 100)

    assert (first.candidate, first.update_needed) == (second.candidate, second.update_needed)


def test_strategy_requires_adjustment_for_beat_lowest():
    with pytest.raises(ValueError):
        PricingStrategy(strategy_name="broken", repricing_rule="BEAT_LOWEST")
