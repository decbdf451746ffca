"""
Named, bounded caches shared by the whole package.

Parsed SQL and derived type descriptors are kept here so that repeated
queries skip the work. Each name maps to one `cachetools` cache: an
LRUCache, or a TTLCache when a time-to-live is given.
"""
import functools
import logging
import threading

import cachetools

logger = logging.getLogger(__name__)


class Cache:
    """Process-wide registry of named caches.

    Use `Cache.get_instance()`; every access to a cache's contents should
    hold `lock`.
    """

    _instance = None
    _create_lock = threading.Lock()

    def __init__(self) -> None:
        self._caches: dict[str, cachetools.Cache] = {}
        self._lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        with cls._create_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def get_cache(self, name: str, maxsize: int = 100, ttl: int | None = None) -> cachetools.Cache:
        """Return the cache called `name`, creating it with these limits on first use.

        Later calls get the existing cache whatever limits they pass.
        """
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                cache = (cachetools.LRUCache(maxsize=maxsize) if ttl is None
                         else cachetools.TTLCache(maxsize=maxsize, ttl=ttl))
                self._caches[name] = cache
                logger.debug(f'Created cache {name} (maxsize={maxsize}, ttl={ttl})')
            return cache

    def clear_all(self) -> None:
        with self._lock:
            for cache in self._caches.values():
                cache.clear()

    def clear_cache(self, name: str) -> None:
        with self._lock:
            self._caches.get(name, {}).clear()


def cached(cache_name: str, maxsize: int = 256, ttl: int | None = None):
    """Memoize a function of hashable positional arguments in a named cache.

    The function runs outside the lock; when two threads race, the first
    stored result wins.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args):
            manager = Cache.get_instance()
            cache = manager.get_cache(cache_name, maxsize=maxsize, ttl=ttl)
            with manager.lock:
                if args in cache:
                    return cache[args]
            result = func(*args)
            with manager.lock:
                return cache.setdefault(args, result)
        return wrapper
    return decorator
