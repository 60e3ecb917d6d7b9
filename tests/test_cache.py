from dynevents import conditional
from dynevents.cache import ResultCache, cache_key
from dynevents.schema import ActionType, EventAction, SimulationContext


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _action(amount: float = 100.0) -> EventAction:
    return EventAction(ActionType.CONTRIBUTION, amount, "test")


def test_cache_key_buckets_cash_and_income():
    rule = conditional.create_template()
    base = SimulationContext(cash_balance=55100.0, monthly_income=8010.0, current_age=35, current_month=4)
    nearby = SimulationContext(cash_balance=55900.0, monthly_income=8090.0, current_age=35, current_month=4)
    farther = SimulationContext(cash_balance=56000.0, monthly_income=8010.0, current_age=35, current_month=4)

    assert cache_key(rule, base) == cache_key(rule, nearby)
    assert cache_key(rule, base) != cache_key(rule, farther)


def test_cache_key_distinguishes_rules_by_value():
    context = SimulationContext()

    assert cache_key(conditional.create_template(), context) == cache_key(conditional.create_template(), context)
    assert cache_key(conditional.create_template(), context) != cache_key(conditional.create_template(priority=1), context)


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ResultCache(ttl_seconds=60, clock=clock)
    key = cache_key(conditional.create_template(), SimulationContext())
    cache.put(key, (_action(),))

    clock.now = 59.9
    assert cache.get(key) == (_action(),)
    clock.now = 60.0
    assert cache.get(key) is None
    assert len(cache) == 0


def test_stats_track_hits_and_misses():
    cache = ResultCache(clock=FakeClock())
    key = cache_key(conditional.create_template(), SimulationContext())

    assert cache.get(key) is None
    cache.put(key, ())
    assert cache.get(key) == ()
    assert cache.get(key) == ()

    stats = cache.stats()
    assert (stats.size, stats.hits, stats.misses) == (1, 2, 1)
    assert stats.hit_rate == 2 / 3

    cache.clear()
    assert cache.stats().size == 0
    assert cache.stats().hit_rate == 0.0
