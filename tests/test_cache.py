from helpdesk import cache as cache_module
from helpdesk.cache import TTLCache, article_key, ticket_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_keys_are_namespaced():
    assert ticket_key("abc") == "helpdesk:ticket:abc"
    assert article_key("xyz") == "helpdesk:article:xyz"


def test_get_set_delete():
    c = TTLCache()
    assert c.get("missing") is None
    c.set("k", {"v": 1})
    assert c.get("k") == {"v": 1}
    assert c.delete("k") is True
    assert c.delete("k") is False
    assert c.hits == 1
    assert c.misses == 1


def test_entries_expire(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr(cache_module.time, "monotonic", clock)
    c = TTLCache(default_ttl=10)

    c.set("short", 1, ttl=5)
    c.set("default", 2)
    clock.now += 6
    assert c.get("short") is None
    assert c.get("default") == 2

    clock.now += 5
    assert c.get("default") is None
    assert len(c) == 0


def test_delete_pattern():
    c = TTLCache()
    c.set(ticket_key("1"), 1)
    c.set(ticket_key("2"), 2)
    c.set(article_key("1"), 3)

    assert c.delete_pattern("helpdesk:ticket:*") == 2
    assert c.get(article_key("1")) == 3
    assert len(c) == 1


def test_clear_resets_counters():
    c = TTLCache()
    c.set("a", 1)
    c.get("a")
    c.clear()
    assert len(c) == 0
    assert (c.hits, c.misses) == (0, 0)
