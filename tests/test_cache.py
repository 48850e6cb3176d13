"""Unit tests for BoundedCache."""
import pytest

from processor.cache import BoundedCache


class TestBoundedCache:
    """Test cases for BoundedCache."""

    def test_put_and_get(self):
        cache = BoundedCache(2)
        cache.put('a', 1)

        assert cache.get('a') == 1
        assert 'a' in cache
        assert len(cache) == 1

    def test_oldest_entry_evicted(self):
        """Test the first inserted entry is dropped once capacity is exceeded."""
        cache = BoundedCache(2)
        cache.put('a', 1)
        cache.put('b', 2)
        cache.put('c', 3)

        assert 'a' not in cache
        assert cache.get('b') == 2
        assert cache.get('c') == 3
        assert len(cache) == 2

    def test_reads_do_not_refresh_position(self):
        """Test eviction is by insertion order, not by use."""
        cache = BoundedCache(2)
        cache.put('a', 1)
        cache.put('b', 2)
        cache.get('a')
        cache.put('c', 3)

        assert 'a' not in cache
        assert 'b' in cache

    def test_hit_and_miss_counts(self):
        cache = BoundedCache(2)
        cache.put('a', 1)

        cache.get('a')
        cache.get('missing')
        cache.get('a')

        assert cache.hits == 2
        assert cache.misses == 1

    def test_clear(self):
        cache = BoundedCache(2)
        cache.put('a', 1)
        cache.clear()

        assert len(cache) == 0
        assert cache.get('a') is None

    @pytest.mark.parametrize('capacity', [0, -1])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValueError):
            BoundedCache(capacity)
