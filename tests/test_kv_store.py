from marketplace.services.kv_store import MemoryKeyValueStore, RedisKeyValueStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.data.pop(key, None)


def test_memory_store_without_ttl_keeps_value():
    clock = FakeClock()
    kv = MemoryKeyValueStore(clock=clock)
    kv.set("a", "1")
    clock.now += 10 ** 6
    assert kv.get("a") == "1"


def test_memory_store_ttl_expires():
    clock = FakeClock()
    kv = MemoryKeyValueStore(clock=clock)
    kv.set("a", "1", ttl_seconds=30)
    clock.now += 29
    assert kv.get("a") == "1"
    clock.now += 1
    assert kv.get("a") is None


def test_memory_store_delete():
    clock = FakeClock()
    kv = MemoryKeyValueStore(clock=clock)
    kv.set("keep", "1")
    kv.set("old", "2", ttl_seconds=5)
    kv.set("gone", "3")
    kv.delete("gone")
    kv.delete("never-set")
    clock.now += 6
    assert kv.get("old") is None
    assert kv.get("keep") == "1"
    assert kv.get("gone") is None


def test_memory_stores_are_independent():
    a, b = MemoryKeyValueStore(), MemoryKeyValueStore()
    a.set("k", "v")
    assert b.get("k") is None


def test_redis_store_namespaces_and_ttl():
    fake = FakeRedis()
    kv = RedisKeyValueStore(client=fake, namespace="test")
    kv.set("code", "123456", ttl_seconds=60)
    kv.set("plain", "x")
    assert fake.ttls == {"test:code": 60}
    assert kv.get("code") == "123456"
    assert kv.get("plain") == "x"
    kv.delete("code")
    assert kv.get("code") is None


def test_redis_store_decodes_bytes():
    fake = FakeRedis()
    fake.data["test:k"] = b"value"
    assert RedisKeyValueStore(client=fake, namespace="test").get("k") == "value"
