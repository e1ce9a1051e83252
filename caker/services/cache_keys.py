# services/cache_keys.py

DEFAULT_PREFIX = "com.Caker."


def cache_key(key: str, prefix: str = DEFAULT_PREFIX) -> str:
    return f"{prefix}{key}"


def logical_key(cache_key: str, prefix: str = DEFAULT_PREFIX) -> str:
    # inverse of cache_key for keys this cache produced
    if cache_key.startswith(prefix):
        return cache_key[len(prefix):]
    return cache_key


def validate_key(key: str) -> str:
    if not key or not isinstance(key, str):
        raise ValueError("Cache key must be a non-empty string")
    return key
