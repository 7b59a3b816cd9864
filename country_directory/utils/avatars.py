"""Display helpers for member cards."""

from typing import Optional


def avatar_url(template: Optional[str], size: int, base_url: str = "") -> str:
    """Expand a Discourse avatar template to a concrete URL.

    Templates look like ``/user_avatar/forum.example/alice/{size}/12_2.png``.
    Relative templates are resolved against the forum base URL.
    """
    if not template:
        return ""
    url = template.replace("{size}", str(size))
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("/") and base_url:
        return f"{base_url.rstrip('/')}{url}"
    return url


def initials(first_name: Optional[str], last_name: Optional[str]) -> str:
    """Two-letter initials, or '?' when neither name is known."""
    first = first_name[0].upper() if first_name else ""
    last = last_name[0].upper() if last_name else ""
    return first + last or "?"
