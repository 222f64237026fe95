from typing import Dict


def strip_cookie_domain(cookie: str) -> str:
    """
    Drop any ``Domain`` attribute from a Set-Cookie value.

    Cookies issued by the upstream are scoped to its (internal) domain. Without
    the attribute the browser scopes them to whatever host it talked to.
    Everything else, including the separators, is kept as received.
    """
    name_value, *attributes = cookie.split(";")
    kept = [
        attribute for attribute in attributes
        if attribute.split("=", 1)[0].strip().lower() != "domain"
    ]
    return ";".join([name_value, *kept])


def parse_cookie_header(header: str) -> Dict[str, str]:
    """Parse a request ``Cookie`` header into a name to value mapping."""
    cookies = {}
    for pair in header.split(";"):
        name, sep, value = pair.partition("=")
        name = name.strip()
        if sep and name:
            cookies[name] = value.strip()
    return cookies
