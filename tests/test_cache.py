from brainnova.core.cache import QueryCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Counter:
    def __init__(self):
        self.calls = []

    def score(self, dimension, territory, period):
        self.calls.append((dimension, territory, period))
        return len(self.calls)

    def other(self):
        self.calls.append("other")
        return "x"


def test_same_arguments_hit_the_cache():
    cache = QueryCache()
    c = Counter()

    assert cache.get_or_compute(c.score, "D", "España", 2024) == 1
    assert cache.get_or_compute(c.score, "D", "España", 2024) == 1
    assert cache.get_or_compute(c.score, "D", "España", 2023) == 2
    assert len(cache) == 2


def test_entries_expire_after_ttl():
    clock = Clock()
    cache = QueryCache(ttl_seconds=10, clock=clock)
    c = Counter()

    cache.get_or_compute(c.score, "D", "España", 2024)
    clock.now = 9.9
    assert cache.get_or_compute(c.score, "D", "España", 2024) == 1
    clock.now = 10.0
    assert cache.get_or_compute(c.score, "D", "España", 2024) == 2
    assert cache.stored_at(c.score, "D", "España", 2024) == 10.0


def test_invalidate_one_function_or_everything():
    cache = QueryCache()
    c = Counter()
    cache.get_or_compute(c.score, "D", "España", 2024)
    cache.get_or_compute(c.other)

    assert cache.invalidate(c.score) == 1
    assert cache.stored_at(c.score, "D", "España", 2024) is None
    assert cache.stored_at(c.other) is not None

    assert cache.invalidate() == 1
    assert len(cache) == 0


def test_methods_of_different_instances_do_not_collide():
    cache = QueryCache()
    a, b = Counter(), Counter()
    cache.get_or_compute(a.score, "D", "España", 2024)
    cache.get_or_compute(b.score, "D", "España", 2024)
    assert len(a.calls) == 1
    assert len(b.calls) == 1


def test_expired_entries_are_dropped_when_storing():
    clock = Clock()
    cache = QueryCache(ttl_seconds=10, clock=clock)
    c = Counter()

    for name in ("A", "B", "C"):
        cache.get_or_compute(c.score, name, "España", 2024)
    assert len(cache) == 3

    clock.now = 20.0
    cache.get_or_compute(c.score, "D", "España", 2024)
    assert len(cache) == 1
    assert cache.stored_at(c.score, "A", "España", 2024) is None


def test_max_entries_evicts_oldest():
    cache = QueryCache(max_entries=2)
    c = Counter()

    cache.get_or_compute(c.score, "A", "España", 2024)
    cache.get_or_compute(c.score, "B", "España", 2024)
    cache.get_or_compute(c.score, "C", "España", 2024)

    assert len(cache) == 2
    assert cache.stored_at(c.score, "A", "España", 2024) is None
    assert cache.stored_at(c.score, "C", "España", 2024) is not None


def test_recomputing_a_key_at_capacity_keeps_the_others():
    clock = Clock()
    cache = QueryCache(ttl_seconds=10, max_entries=2, clock=clock)
    c = Counter()

    cache.get_or_compute(c.score, "A", "España", 2024)
    clock.now = 5.0
    cache.get_or_compute(c.score, "B", "España", 2024)
    clock.now = 12.0
    # A is stale and gets recomputed; B is still fresh and stays
    cache.get_or_compute(c.score, "A", "España", 2024)

    assert len(cache) == 2
    assert cache.stored_at(c.score, "B", "España", 2024) == 5.0
    assert cache.stored_at(c.score, "A", "España", 2024) == 12.0
