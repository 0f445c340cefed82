"""
Test the request gate (fixed window counter per client IP)

ใช้ store ปลอมในหน่วยความจำ ไม่ต้องมี Redis จริง:
    python -m pytest tests/test_rate_limit.py -v
"""
import os
import sys
from unittest.mock import MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from leafscan.services import rate_limit
from leafscan.services.rate_limit import check_rate_limit


class FakeRedis:
    """Just enough of the redis-py API for the gate."""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ex=None):
        self.values[key] = str(value)
        self.ttls[key] = ex

    def incr(self, key):
        self.values[key] = str(int(self.values.get(key, 0)) + 1)
        return int(self.values[key])

    def expire(self, key, seconds):
        self.ttls[key] = seconds

    def ping(self):
        return True


def test_counts_down_then_denies():
    store = FakeRedis()

    for i in range(3):
        decision = check_rate_limit("1.2.3.4", limit=3, window=60, client=store)
        assert decision.allowed is True
        assert decision.remaining == 3 - (i + 1)

    denied = check_rate_limit("1.2.3.4", limit=3, window=60, client=store)
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.retry_after == 60
    assert store.ttls["rate-limit:1.2.3.4"] == 60


def test_clients_are_counted_separately():
    store = FakeRedis()
    for _ in range(2):
        check_rate_limit("10.0.0.1", limit=2, window=60, client=store)

    assert check_rate_limit("10.0.0.1", limit=2, window=60, client=store).allowed is False
    assert check_rate_limit("10.0.0.2", limit=2, window=60, client=store).allowed is True


def test_window_reset_allows_again():
    store = FakeRedis()
    for _ in range(2):
        check_rate_limit("1.2.3.4", limit=2, window=60, client=store)

    # Simulate Redis expiring the key
    store.values.clear()
    assert check_rate_limit("1.2.3.4", limit=2, window=60, client=store).allowed is True


def test_store_error_fails_open():
    broken = MagicMock()
    broken.get.side_effect = ConnectionError("redis down")

    decision = check_rate_limit("1.2.3.4", limit=3, window=60, client=broken)
    assert decision.allowed is True
    assert decision.remaining == 3


def test_no_store_allows(monkeypatch):
    monkeypatch.setattr(rate_limit, "redis_client", None)
    assert check_rate_limit("1.2.3.4", limit=1, window=60).allowed is True
    assert rate_limit.get_rate_limit_status()["status"] == "not_connected"


def test_headers():
    store = FakeRedis()
    allowed = check_rate_limit("1.2.3.4", limit=1, window=30, client=store)
    headers = allowed.headers()
    assert headers["X-RateLimit-Limit"] == "1"
    assert headers["X-RateLimit-Remaining"] == "0"
    assert "X-RateLimit-Reset" in headers
    assert "Retry-After" not in headers

    denied = check_rate_limit("1.2.3.4", limit=1, window=30, client=store).headers()
    assert denied["Retry-After"] == "30"
    assert denied["X-RateLimit-Remaining"] == "0"


def test_init_without_settings_disables_gate():
    assert rate_limit.init_redis(upstash_url=None, upstash_token=None, redis_url=None) is False
    assert rate_limit.is_redis_available() is False
