NIL = "<nil>"

DEFAULT_HOST = "192.168.178.1"
DEFAULT_PORT = 49000


def parse_port(s, default: int = DEFAULT_PORT) -> int:
    """Parse a port number with base prefix detection (0x, 0o, 0b).

    Anything that is not a usable port falls back to ``default``.
    """
    if not s:
        return default
    try:
        port = int(s, 0)
    except (ValueError, TypeError):
        return default
    if port <= 0 or port > 0xFFFF:
        return default
    return port


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def render_value(value) -> str:
    if value is None:
        return NIL
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
