_MISSING = object()


def request_value(data, *names, default=None):
    """
    Return the first of ``names`` present in a request body. Clients send
    either camelCase or snake_case keys.
    """
    if not hasattr(data, "get"):
        return default
    for name in names:
        value = data.get(name, _MISSING)
        if value is not _MISSING:
            return value
    return default


def has_any(data, *names):
    return hasattr(data, "get") and any(name in data for name in names)
