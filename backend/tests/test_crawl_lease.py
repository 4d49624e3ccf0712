from serendip.crawl_lease import CrawlLease


class FakeRedis:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    def get(self, key):
        return self.data.get(key)

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    def delete(self, key):
        self.data.pop(key, None)
        return 1


class BrokenRedis:
    def set(self, *args, **kwargs):
        raise ConnectionError("redis down")


def test_only_one_instance_holds_a_source() -> None:
    redis = FakeRedis()
    first = CrawlLease(redis, ttl_s=60)
    second = CrawlLease(redis, ttl_s=60)

    assert first.acquire("src-1") is True
    assert second.acquire("src-1") is False
    assert second.acquire("src-2") is True

    # releasing a lease it does not hold is a no-op
    second.release("src-1")
    assert first.acquire("src-1") is False

    first.release("src-1")
    assert second.acquire("src-1") is True


def test_renew_extends_only_own_lease() -> None:
    redis = FakeRedis()
    lease = CrawlLease(redis, ttl_s=60)
    lease.acquire("src-1")
    redis.ttls["serendip:crawl:lease:src-1"] = 5

    lease.renew("src-1")
    assert redis.ttls["serendip:crawl:lease:src-1"] == 60

    redis.data["serendip:crawl:lease:src-1"] = "someone-else"
    redis.ttls["serendip:crawl:lease:src-1"] = 5
    lease.renew("src-1")
    lease.release("src-1")
    assert redis.ttls["serendip:crawl:lease:src-1"] == 5
    assert redis.data["serendip:crawl:lease:src-1"] == "someone-else"


def test_unreachable_redis_fails_open() -> None:
    lease = CrawlLease(BrokenRedis(), ttl_s=60)
    assert lease.acquire("src-1") is True
