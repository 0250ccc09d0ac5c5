"""
Identifier derivation for generated platform resources.

All functions are pure and total: every string maps to a legal identifier.
Distinct inputs can still collapse to the same output (``My-Service`` and
``my_service``); the synthesizer checks for that and fails.
"""
import base64
import hashlib
import re

PLATFORM_MAX_LENGTH = 32
SECRET_MAX_LENGTH = 253
TOKEN_LENGTH = 13
_SUFFIX_LENGTH = 8
_COMPACT_SUFFIX_LENGTH = 4

_NON_PLATFORM_RE = re.compile(r"[^a-z0-9]+")
_NON_COMPACT_RE = re.compile(r"[^a-z0-9]")
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]+")
_NON_SECRET_RE = re.compile(r"[^a-z0-9.\-]")


def _digest(raw: str, length: int) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:length]


def platform_name(raw: str, max_length: int = PLATFORM_MAX_LENGTH) -> str:
    """
    Lowercase, hyphen-separated, starts with a letter, at most `max_length`.

    Names that have to be truncated (or that contain nothing usable) get a
    hash suffix of the raw name so distinct long names stay distinct.
    """
    name = _NON_PLATFORM_RE.sub("-", raw.lower()).strip("-")
    if name and not name[0].isalpha():
        name = "r-" + name

    if name and len(name) <= max_length:
        return name

    suffix = _digest(raw, _SUFFIX_LENGTH)
    head = name[: max(max_length - _SUFFIX_LENGTH - 1, 1)].rstrip("-") or "r"
    return f"{head}-{suffix}"


def screaming_snake(raw: str) -> str:
    """Environment variable / output name: ``my-db.host`` -> ``MY_DB_HOST``."""
    name = _NON_ALNUM_RE.sub("_", raw).upper()
    if not name or name[0].isdigit():
        name = "_" + name
    return name


def bicep_name(raw: str) -> str:
    """lowerCamelCase symbolic name: ``my-db`` -> ``myDb``."""
    parts = [p for p in _NON_ALNUM_RE.split(raw) if p]
    if not parts:
        return "r" + _digest(raw, _SUFFIX_LENGTH)
    head = parts[0][0].lower() + parts[0][1:]
    name = head + "".join(p[0].upper() + p[1:] for p in parts[1:])
    if name[0].isdigit():
        name = "r" + name
    return name


def secret_name(raw: str) -> str:
    """Secret names allow lowercase alphanumerics, '-' and '.'."""
    name = _NON_SECRET_RE.sub("-", raw.lower()).strip("-.")
    if not name:
        name = "secret-" + _digest(raw, _SUFFIX_LENGTH)
    return name[:SECRET_MAX_LENGTH]


def resource_token(seed: str) -> str:
    """Short stable token used to make generated names globally unique."""
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return base64.b32encode(digest).decode("ascii").lower()[:TOKEN_LENGTH]


def scoped_name(prefix: str, raw: str, token: str, max_length: int = PLATFORM_MAX_LENGTH) -> str:
    """Globally unique platform name: ``<prefix>-<name>-<token>``."""
    budget = max_length - len(prefix) - len(token) - 2
    if budget < _SUFFIX_LENGTH + 2:
        base = _digest(raw, max(budget, 1))
    else:
        base = platform_name(raw, max_length=budget)
    return f"{prefix}-{base}-{token}"


def compact_name(prefix: str, raw: str, token: str, max_length: int = 24) -> str:
    """
    Alphanumeric-only names (registries, storage accounts).

    A middle part that does not fit, or that loses every character of a
    non-empty raw name, ends in a digest of the raw name.
    """
    budget = max(max_length - len(prefix) - len(token), 0)
    middle = _NON_COMPACT_RE.sub("", raw.lower())
    if len(middle) > budget or (raw and not middle):
        keep = max(budget - _COMPACT_SUFFIX_LENGTH, 0)
        middle = middle[:keep] + _digest(raw, budget - keep)
    return f"{prefix}{middle}{token}"


HELPERS = {
    "platform_name": platform_name,
    "screaming_snake": screaming_snake,
    "bicep_name": bicep_name,
    "secret_name": secret_name,
    "scoped_name": scoped_name,
    "compact_name": compact_name,
}
