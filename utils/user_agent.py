def parse_browser(user_agent: str | None) -> str:
    if not user_agent:
        return "Unknown"

    # Order matters: Edge and Opera also announce Chrome, Chrome also announces Safari
    if "Firefox/" in user_agent:
        return "Firefox"
    if "Edg/" in user_agent:
        return "Edge"
    if "OPR/" in user_agent or "Opera/" in user_agent:
        return "Opera"
    if "Chrome/" in user_agent:
        return "Chrome"
    if "Safari/" in user_agent:
        return "Safari"
    if "MSIE" in user_agent or "Trident/" in user_agent:
        return "Internet Explorer"

    return "Unknown"


_OS_MARKERS = [
    ("Windows NT 10", "Windows 10"),
    ("Windows NT 6.3", "Windows 8.1"),
    ("Windows NT 6.2", "Windows 8"),
    ("Windows NT 6.1", "Windows 7"),
    ("Windows", "Windows"),
    ("iPhone", "iPhone"),
    ("iPad", "iPad"),
    ("Android", "Android"),
    ("Mac OS X", "macOS"),
    ("Linux", "Linux"),
]


def parse_os(user_agent: str | None) -> str:
    if not user_agent:
        return "Unknown"
    for marker, name in _OS_MARKERS:
        if marker in user_agent:
            return name
    return "Unknown"


def parse_device(user_agent: str | None) -> str:
    """Human readable summary such as "Chrome on Windows 10"."""
    if not user_agent:
        return "Unknown Device"
    return f"{parse_browser(user_agent)} on {parse_os(user_agent)}"
