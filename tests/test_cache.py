"""Tests for cache keys and the TTL cache over SQLite."""

import pytest

from boardroom.cache import DAY, ReportCache, content_digest, make_cache_key
from boardroom.models.brief import ResearchContext


class TestMakeCacheKey:

    def test_prefixed_with_operation(self):
        assert make_cache_key("report", industry="Fintech").startswith("report:")

    def test_insensitive_to_case_whitespace_and_order(self):
        a = make_cache_key("report", industry=" Fintech ", competitors=["Beta", "Acme"])
        b = make_cache_key("report", competitors=["acme", "beta"], industry="fintech")
        assert a == b

    def test_empty_fields_are_ignored(self):
        assert make_cache_key("report", industry="x", competitors=[], feedback_item="") == \
            make_cache_key("report", industry="x")

    def test_significant_fields_change_the_key(self):
        assert make_cache_key("report", industry="fintech") != make_cache_key("report", industry="health")
        assert make_cache_key("report", industry="x") != make_cache_key("research", industry="x")

    def test_seo_keywords_change_the_report_key(self):
        a = ResearchContext(industry="Fintech", seo_keywords=["embedded finance"])
        b = ResearchContext(industry="Fintech", seo_keywords=["payroll software"])
        assert make_cache_key("report", **a.cache_fields()) != make_cache_key("report", **b.cache_fields())

    def test_content_digest_preserves_case(self):
        assert content_digest("Costs fell by $5M.") != content_digest("Costs fell by $5m.")
        assert content_digest("same") == content_digest("same")


@pytest.mark.asyncio
async def test_set_then_get_round_trips(database, clock):
    cache = ReportCache(database, clock=clock)
    value = {"text": "report", "items": [1, 2, {"nested": True}], "score": 91.5}

    assert await cache.set("report:abc", value, ttl=60)
    assert await cache.get("report:abc") == value


@pytest.mark.asyncio
async def test_entry_expires_after_ttl(database, clock):
    cache = ReportCache(database, clock=clock)
    await cache.set("report:abc", {"text": "x"}, ttl=60)

    clock.advance(59)
    assert await cache.get("report:abc") == {"text": "x"}

    clock.advance(1)
    assert await cache.get("report:abc") is None
    assert await database.cache_get("report:abc") is None


@pytest.mark.asyncio
async def test_operation_ttls(database, clock):
    cache = ReportCache(database, clock=clock)

    assert cache.ttl_for("report:abc") == 30 * DAY
    assert cache.ttl_for("quality-control:abc") == 30 * DAY
    assert cache.ttl_for("unknown:abc") == DAY

    await cache.set("unknown:abc", "value")
    clock.advance(DAY)
    assert await cache.get("unknown:abc") is None


@pytest.mark.asyncio
async def test_missing_key_is_a_miss(database):
    assert await ReportCache(database).get("report:missing") is None


@pytest.mark.asyncio
async def test_failures_are_swallowed(clock):
    class BrokenDatabase:
        async def cache_get(self, key):
            raise RuntimeError("disk gone")

        async def cache_put(self, *args):
            raise RuntimeError("disk gone")

    cache = ReportCache(BrokenDatabase(), clock=clock)

    assert await cache.get("report:abc") is None
    assert await cache.set("report:abc", {"x": 1}) is False


@pytest.mark.asyncio
async def test_purge_and_clear(database, clock):
    cache = ReportCache(database, clock=clock)
    await cache.set("report:old", 1, ttl=10)
    await cache.set("report:new", 2, ttl=1000)
    await cache.set("research:one", 3, ttl=1000)

    clock.advance(20)
    assert await cache.purge_expired() == 1

    assert await cache.clear_operation("report") == 1
    assert await cache.get("report:new") is None
    assert await cache.get("research:one") == 3
