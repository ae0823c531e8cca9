"""User-Agent screening for the suspicion score.

A registration form is filled in a browser. Scripted clients either send no
User-Agent, announce a library or crawler, or leave out every browser token.
"""

_BROWSER_TOKENS = ("mozilla/", "chrome/", "safari/", "firefox/", "edg/")
_SCRIPTED_TOKENS = (
    "curl/",
    "wget/",
    "python-requests",
    "python-httpx",
    "python-urllib",
    "aiohttp",
    "go-http-client",
    "okhttp",
    "java/",
    "httpclient",
)
_AUTOMATION_TOKENS = (
    "headless",
    "phantomjs",
    "puppeteer",
    "playwright",
    "selenium",
    "webdriver",
)
_CRAWLER_TOKENS = ("bot", "crawl", "spider", "scrap")


def user_agent_verdict(user_agent: str | None) -> str | None:
    """Why the User-Agent looks scripted, or ``None`` when it looks human."""
    ua = (user_agent or "").strip().lower()
    if not ua:
        return "missing"
    if any(token in ua for token in _SCRIPTED_TOKENS):
        return "http_library"
    if any(token in ua for token in _AUTOMATION_TOKENS):
        return "automation"
    if any(token in ua for token in _CRAWLER_TOKENS):
        return "crawler"
    if not any(token in ua for token in _BROWSER_TOKENS):
        return "no_browser_token"
    return None


def is_suspicious_user_agent(user_agent: str | None) -> bool:
    return user_agent_verdict(user_agent) is not None


__all__ = ("is_suspicious_user_agent", "user_agent_verdict")
