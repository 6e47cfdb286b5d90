import pytest

from cbsensor.writecache import FileWriteCache, jhash


def test_jhash_empty_is_init_value():
    assert jhash(b"") == 0xDEADBEEF


@pytest.mark.parametrize("initval,expected", [(0, 0x17770551), (1, 0xCD628161)])
def test_jhash_lookup3_vector(initval, expected):
    assert jhash(b"Four score and seven years ago", initval) == expected


def test_jhash_depends_on_every_byte():
    data = bytes(range(32))
    base = jhash(data)
    for index in range(len(data)):
        changed = bytearray(data)
        changed[index] ^= 1
        assert jhash(changed) != base


def test_jhash_is_32_bit():
    assert 0 <= jhash(bytes(100), 7) <= 0xFFFFFFFF


def test_first_write_then_cached():
    cache = FileWriteCache()
    assert cache.entry_exists(100, 5, 8, 1000) is False
    assert cache.entry_exists(100, 5, 8, 1000) is True
    assert cache.entry_exists(100, 5, 8, 1000) is True
    assert cache.hits(100, 5, 8, 1000) == 2
    assert len(cache) == 1


def test_any_key_field_distinguishes():
    cache = FileWriteCache()
    cache.entry_exists(1, 2, 3, 4)
    for key in [(9, 2, 3, 4), (1, 9, 3, 4), (1, 2, 9, 4), (1, 2, 3, 9)]:
        assert cache.entry_exists(*key) is False
    assert len(cache) == 5


def test_oldest_entry_evicted_when_bucket_full():
    cache = FileWriteCache(bucket_bits=0, max_bucket_size=10)
    for inode in range(10):
        assert cache.entry_exists(1, inode, 0, 0) is False
    assert cache.entry_exists(1, 0, 0, 0) is True
    assert cache.entry_exists(1, 10, 0, 0) is False
    assert len(cache) == 10
    assert cache.hits(1, 0, 0, 0) == 0
    assert cache.entry_exists(1, 0, 0, 0) is False
    assert cache.entry_exists(1, 5, 0, 0) is True
    assert cache.entry_exists(1, 1, 0, 0) is False


def test_shutdown_disables_and_clears():
    cache = FileWriteCache()
    cache.entry_exists(1, 2, 3, 4)
    cache.shutdown()
    assert len(cache) == 0
    assert cache.entry_exists(7, 7, 7, 7) is True
    assert len(cache) == 0