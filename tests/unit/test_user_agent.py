from utils.user_agent import parse_browser, parse_os, parse_device
import pytest

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/120.0.0.0"
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAFARI_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Safari/605.1.15"
)
CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)


@pytest.mark.parametrize("user_agent, expected", [
    (CHROME_WINDOWS, "Chrome"),
    (EDGE_WINDOWS, "Edge"),
    (FIREFOX_LINUX, "Firefox"),
    (SAFARI_IPHONE, "Safari"),
    (SAFARI_MAC, "Safari"),
    (None, "Unknown"),
    ("curl/8.0", "Unknown"),
])
def test_parse_browser(user_agent, expected):
    assert parse_browser(user_agent) == expected


@pytest.mark.parametrize("user_agent, expected", [
    (CHROME_WINDOWS, "Windows 10"),
    (FIREFOX_LINUX, "Linux"),
    (SAFARI_IPHONE, "iPhone"),
    (SAFARI_MAC, "macOS"),
    (CHROME_ANDROID, "Android"),
    (None, "Unknown"),
])
def test_parse_os(user_agent, expected):
    assert parse_os(user_agent) == expected


def test_parse_device():
    assert parse_device(CHROME_WINDOWS) == "Chrome on Windows 10"
    assert parse_device(SAFARI_IPHONE) == "Safari on iPhone"
    assert parse_device(None) == "Unknown Device"
