"""Username cleanup and password generation for imported accounts."""

import re
import secrets
from dataclasses import dataclass

_VALID_USERNAME = re.compile(r"^['\" \-+.*\[\]0-9\u00BF-\u1FFF\u2C00-\uD7FF\w]+$")
_INVALID_USERNAME_CHARS = re.compile(r"[^\u00BF-\u1FFF\u2C00-\uD7FF\-.*\w\s]", re.IGNORECASE)
_STRIPPED_CHARS = re.compile(r"[ *æøå]")
_SLUG_INVALID = re.compile(r"[^\w\s-]")
_SLUG_SEPARATORS = re.compile(r"[\s_-]+")


@dataclass(frozen=True)
class ValidUsername:
    username: str | None
    userslug: str | None

    @property
    def is_valid(self) -> bool:
        return bool(self.username and self.userslug)


def slugify(value: str) -> str:
    """Lowercase URL slug; empty when nothing usable remains."""
    text = (value or "").strip().lower()
    text = _SLUG_INVALID.sub("-", text)
    text = _SLUG_SEPARATORS.sub("-", text)
    return text.strip("-")


def is_username_valid(value: str | None) -> bool:
    return bool(value) and bool(_VALID_USERNAME.match(value))


def clean_username(value: str) -> str:
    """Remove characters the target rejects in usernames.

    >>> clean_username("jo hn*ø!")
    'john'
    """
    value = _INVALID_USERNAME_CHARS.sub("", value or "")
    return _STRIPPED_CHARS.sub("", value)


def make_valid_username(username: str | None, alternative: str | None = None) -> ValidUsername:
    """Pick the first usable name among the username and its fallbacks.

    Candidates in order: the username as given, the cleaned username, the
    alternative username, the cleaned alternative. A candidate is usable
    when it passes validation and yields a non-empty slug.

    Args:
        username: Source username
        alternative: Source alternative username (may be None)

    Returns:
        ValidUsername; both fields are None when no candidate is usable
    """
    candidates = [username or "", clean_username(username or "")]
    if alternative:
        candidates += [alternative, clean_username(alternative)]

    for candidate in candidates:
        slug = slugify(candidate)
        if is_username_valid(candidate) and slug:
            return ValidUsername(candidate, slug)

    return ValidUsername(None, None)


def generate_password(length: int, chars: str) -> str:
    """Random password drawn from ``chars``."""
    if not chars:
        raise ValueError("Password alphabet cannot be empty")
    return "".join(secrets.choice(chars) for _ in range(length))
