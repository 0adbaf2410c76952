from inventory_forecast.cache import TTLCache


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def counter():
    calls = []

    def compute():
        calls.append(1)
        return {'computed': len(calls)}

    return compute, calls


def test_value_is_served_until_ttl_expires():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    compute, calls = counter()

    assert cache.get_or_compute(compute) == {'computed': 1}
    clock.now += 299
    assert cache.get_or_compute(compute) == {'computed': 1}
    clock.now += 1
    assert cache.get_or_compute(compute) == {'computed': 2}
    assert len(calls) == 2


def test_force_refresh_recomputes_and_restarts_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    compute, calls = counter()

    cache.get_or_compute(compute)
    clock.now += 200
    assert cache.get_or_compute(compute, force_refresh=True) == {'computed': 2}
    clock.now += 200
    assert cache.get_or_compute(compute) == {'computed': 2}


def test_invalidate_drops_value():
    cache = TTLCache(clock=FakeClock())
    cache.set('summary')
    assert cache.get() == 'summary'

    cache.invalidate()
    assert cache.get('missing') == 'missing'
