"""Tests for local image storage and the URL cache."""

import pytest

from facemerge.store.images import ImageUrlCache, LocalImageStorage


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_cache_expires_entries():
    """Test that cached URLs expire after their lifetime."""
    clock = FakeClock()
    cache = ImageUrlCache(ttl_seconds=10, clock=clock)

    cache.put('a.jpg', 'url-a')
    clock.now = 10
    assert cache.get('a.jpg') == 'url-a'

    clock.now = 10.5
    assert cache.get('a.jpg') is None
    assert len(cache) == 0


def test_cache_drops_expired_entries_on_put():
    """Test that paths never read again do not pile up in the cache."""
    clock = FakeClock()
    cache = ImageUrlCache(ttl_seconds=10, clock=clock)

    for i in range(1000):
        clock.now = float(i)
        cache.put(f'face-{i}.jpg', f'url-{i}')

    assert len(cache) <= 11
    assert cache.get('face-999.jpg') == 'url-999'
    assert cache.get('face-0.jpg') is None


def test_cache_invalidate_and_clear():
    cache = ImageUrlCache()
    cache.put('a.jpg', 'url-a')
    cache.put('b.jpg', 'url-b')

    cache.invalidate('a.jpg')
    assert cache.get('a.jpg') is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_caches_are_independent(tmp_path):
    """Test that each storage owns its own cache."""
    first = LocalImageStorage(tmp_path, base_url='https://one.example')
    second = LocalImageStorage(tmp_path, base_url='https://two.example')

    assert first.url_for('x.jpg') == 'https://one.example/x.jpg'
    assert second.url_for('x.jpg') == 'https://two.example/x.jpg'


def test_save_and_delete(tmp_path):
    storage = LocalImageStorage(tmp_path)

    storage.save('faces/a1.jpg', b'jpeg')
    assert storage.exists('faces/a1.jpg')
    assert (tmp_path / 'faces' / 'a1.jpg').read_bytes() == b'jpeg'

    storage.delete('faces/a1.jpg')
    assert not storage.exists('faces/a1.jpg')


def test_delete_missing_is_noop(tmp_path):
    """Test that cleanup can be retried safely."""
    storage = LocalImageStorage(tmp_path)

    storage.delete('never/existed.jpg')


def test_url_for_uses_cache(tmp_path):
    storage = LocalImageStorage(tmp_path, base_url='https://img.example/')

    url = storage.url_for('faces/a b.jpg')

    assert url == 'https://img.example/faces/a%20b.jpg'
    assert storage.url_cache.get('faces/a b.jpg') == url


def test_file_urls_without_base(tmp_path):
    storage = LocalImageStorage(tmp_path)

    assert storage.url_for('a.jpg').startswith('file://')


def test_delete_invalidates_url(tmp_path):
    storage = LocalImageStorage(tmp_path, base_url='https://img.example')
    storage.save('a.jpg', b'x')
    storage.url_for('a.jpg')

    storage.delete('a.jpg')

    assert storage.url_cache.get('a.jpg') is None


def test_path_escape_refused(tmp_path):
    storage = LocalImageStorage(tmp_path / 'root')

    with pytest.raises(ValueError):
        storage.save('../outside.jpg', b'x')
