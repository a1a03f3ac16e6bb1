import pytest
from quantum_crm.services.cache import AppUser, MemoryStorage, PermissionCache, RedisStorage, invalidate_user_caches
from quantum_crm.services.permissions import has_permission


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now += minutes * 60


def _app_user(id=1, permissions=None, role='USER'):
    return AppUser(id=id, email=f'{id}@example.com', name=str(id), role=role,
                   permissions=permissions or {'sections': {'leads': {'view': 'all'}}})


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def cache(clock):
    return PermissionCache(MemoryStorage(), 'session:abc', clock=clock)


def test_empty_cache_is_stale(cache):
    assert cache.is_stale() is True
    assert cache.get_user_from_cache() is None


def test_fresh_entry_is_served_and_counted_as_hit(cache, clock):
    cache.update_cache(_app_user())
    clock.advance(5)
    cached = cache.get_user_from_cache()
    assert cached == _app_user()
    assert cache.stats() == {'hits': 1, 'misses': 1, 'hit_ratio': 50.0}


def test_entry_older_than_ttl_is_stale(cache, clock):
    cache.update_cache(_app_user())
    clock.advance(16)
    assert cache.user is not None
    assert cache.is_stale() is True
    assert cache.get_user_from_cache() is None


def test_exactly_ttl_is_not_yet_stale(cache, clock):
    cache.update_cache(_app_user())
    clock.advance(15)
    assert cache.is_stale() is False
    assert cache.is_stale(ttl_minutes=10) is True


def test_update_overwrites_previous_user(cache):
    cache.update_cache(_app_user(id=1))
    cache.update_cache(_app_user(id=2))
    assert cache.get_user_from_cache().id == 2
    assert cache.stats()['misses'] == 2


def test_clear_user_removes_every_key_including_legacy(cache):
    storage = cache.storage
    storage.set('perm-cache:session:abc:user-storage', '{"state": {}}')
    cache.update_cache(_app_user())
    cache.get_user_from_cache()
    cache.clear_user()
    assert storage.scan('perm-cache:session:abc:') == []
    assert cache.get_user_from_cache() is None
    assert cache.stats() == {'hits': 0, 'misses': 0, 'hit_ratio': 0.0}


def test_clear_does_not_leak_into_next_session(clock):
    storage = MemoryStorage()
    cache = PermissionCache(storage, 'session:shared', clock=clock)
    cache.update_cache(_app_user(id=1, role='SUPERADMIN'))
    cache.clear_user()
    cache.update_cache(_app_user(id=2, permissions={'sections': {}}))
    user = cache.get_user_from_cache()
    assert user.id == 2
    assert has_permission(user, 'leads', 'view') is False


def test_unreadable_entry_is_discarded(cache):
    cache.storage.set(cache._key('user'), 'not-json')
    cache.storage.set(cache._key('last_fetched'), repr(cache._clock()))
    assert cache.user is None
    assert cache.is_stale() is True


def test_invalidate_user_caches_only_clears_matching_sessions(clock):
    storage = MemoryStorage()
    a = PermissionCache(storage, 'session:a', clock=clock)
    b = PermissionCache(storage, 'session:b', clock=clock)
    c = PermissionCache(storage, 'session:c', clock=clock)
    a.update_cache(_app_user(id=1))
    b.update_cache(_app_user(id=1))
    c.update_cache(_app_user(id=2))
    assert invalidate_user_caches(storage, 1) == 2
    assert a.user is None and b.user is None
    assert c.get_user_from_cache().id == 2


def test_app_user_from_dict_ignores_unknown_keys():
    data = _app_user().to_dict()
    data['legacy'] = True
    assert AppUser.from_dict(data) == _app_user()


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.delete_calls = []

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex
        else:
            self.expiry.pop(key, None)

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def expire(self, key, seconds):
        self.expiry[key] = seconds
        return key in self.data

    def delete(self, *keys):
        self.delete_calls.append(keys)
        for k in keys:
            self.data.pop(k, None)
            self.expiry.pop(k, None)

    def scan_iter(self, match):
        prefix = match.rstrip('*')
        return iter([k for k in list(self.data) if k.startswith(prefix)])


def test_redis_storage_clears_in_single_delete(clock):
    client = FakeRedis()
    cache = PermissionCache(RedisStorage('redis://unused', client=client), 'session:r', clock=clock)
    cache.update_cache(_app_user(id=3))
    assert cache.get_user_from_cache().id == 3
    cache.clear_user()
    assert len(client.delete_calls) == 1
    assert set(client.delete_calls[0]) == set(cache.all_keys())
    assert client.data == {}


def test_redis_keys_are_written_with_retention_expiry(clock):
    client = FakeRedis()
    cache = PermissionCache(RedisStorage('redis://unused', client=client), 'session:x', clock=clock,
                            retention_minutes=45)
    cache.update_cache(_app_user(id=4))
    cache.get_user_from_cache()
    cache.increment_cache_miss()
    assert set(client.data) == set(client.expiry)
    assert set(client.expiry.values()) == {45 * 60}


def test_retention_never_shorter_than_ttl(clock):
    cache = PermissionCache(MemoryStorage(), 'session:y', ttl_minutes=15, clock=clock, retention_minutes=5)
    assert cache.retention_seconds == 15 * 60


def test_abandoned_sessions_age_out_of_memory_storage(clock):
    storage = MemoryStorage(clock=clock)
    for i in range(50):
        PermissionCache(storage, f'session:{i}', clock=clock, retention_minutes=60).update_cache(_app_user(id=i + 1))
        clock.advance(5)
    # sessions written in the last hour remain, three keys each
    assert len(storage) <= 3 * 13
    assert PermissionCache(storage, 'session:0', clock=clock).user is None
    assert PermissionCache(storage, 'session:49', clock=clock).user.id == 50
    clock.advance(61)
    assert storage.scan('perm-cache:') == []


def test_memory_storage_incr_keeps_existing_expiry(clock):
    storage = MemoryStorage(clock=clock)
    storage.incr('k', ttl=60)
    clock.advance(0.5)
    assert storage.incr('k') == 2
    clock.advance(0.6)
    assert storage.get('k') is None
    assert storage.incr('k') == 1
