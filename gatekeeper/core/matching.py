"""
Name matching, the ALL/ANY combinator and reference normalization.
"""
import re
from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Any, Callable, List, Union

from gatekeeper.core.exceptions import InvalidInputError


Names = Union[str, Iterable[str]]


@lru_cache(maxsize=1024)
def _glob_regex(pattern: str) -> "re.Pattern[str]":
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile(".*".join(parts), re.DOTALL)


def str_is(pattern: str, value: str) -> bool:
    """Case-sensitive glob match where ``*`` is the only wildcard."""
    if pattern == value:
        return True
    if "*" not in pattern:
        return False
    return _glob_regex(pattern).fullmatch(value) is not None


def names_match(requested: str, stored: str) -> bool:
    """
    A requested name matches a stored name when either one, used as a
    pattern, matches the other.
    """
    return str_is(requested, stored) or str_is(stored, requested)


def normalize_names(names: Names) -> List[str]:
    if isinstance(names, str):
        return [names]
    return list(names)


def split_names(names: Names) -> List[str]:
    """Accept a list or a comma separated string (as ``ability()`` does)."""
    if isinstance(names, str):
        return [name.strip() for name in names.split(",") if name.strip()]
    return list(names)


def check_names(names: Names, check: Callable[[str], bool], require_all: bool) -> bool:
    """
    Evaluate ``check`` for each name.

    ANY mode returns on the first match, ALL mode on the first miss. An empty
    list is vacuously true in ALL mode and false in ANY mode.
    """
    if isinstance(names, str):
        return check(names)

    for name in names:
        matched = check(name)
        if matched and not require_all:
            return True
        if not matched and require_all:
            return False

    return require_all


def get_id_for(thing: Any) -> int:
    """
    Resolve a role/permission/module reference to its id.

    Accepts an object exposing ``id``, an integer, a numeric string or a
    mapping with an ``id`` key.
    """
    if isinstance(thing, bool):
        raise InvalidInputError(f"Cannot resolve an id from a boolean: {thing!r}")
    if isinstance(thing, int):
        return thing
    if isinstance(thing, str):
        if thing.strip().isdigit():
            return int(thing)
        raise InvalidInputError(f"Cannot resolve an id from string {thing!r}")
    if isinstance(thing, Mapping):
        if "id" not in thing:
            raise InvalidInputError("Mapping references need an 'id' key")
        return get_id_for(thing["id"])
    if thing is not None and hasattr(thing, "id"):
        return get_id_for(thing.id)

    raise InvalidInputError(
        "get_id_for only accepts an integer, an object with an id or a mapping with an 'id' key, "
        f"got {type(thing).__name__}"
    )
