"""
Named finder requests.

Instead of building a filter by hand, callers can name the lookup they want::

    User.query(session).finder("find all by sAMAccountName and mail", "jdoe", "j@example.org")
    User.query(session).finder("find_by_sAMAccountName", "jdoe")

A request is ``find``, an optional cardinality (``first`` or ``all``;
``first`` if omitted), ``by``, and one or more attribute names joined with
``and``.  Words may be separated by spaces or by underscores.  The positional
arguments are matched to the attributes in order and and-ed together as
equality tests.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from .exceptions import ValidationError
from .filters import Equals, Filter

#: ``find [first|all] by A [and B ...]``, space spelling
SPACED_RE = re.compile(r"^find(?:\s+(?P<cardinality>first|all))?\s+by\s+(?P<attributes>\S.*)$")
#: ``find_[first_|all_]by_A[_and_B ...]``, underscore spelling
UNDERSCORED_RE = re.compile(r"^find_(?:(?P<cardinality>first|all)_)?by_(?P<attributes>.+)$")
#: What an attribute description may look like: a name with options, or an OID
ATTRIBUTE_RE = re.compile(r"^(?:[A-Za-z][A-Za-z0-9-]*(?:;[A-Za-z0-9-]+)*|\d+(?:\.\d+)+)$")


@dataclass(frozen=True)
class FinderRequest:
    """
    A parsed finder request.

    Args:
        cardinality: ``first`` or ``all``
        attributes: the attribute names, in the order the request named them

    """

    cardinality: str
    attributes: tuple[str, ...]

    def build_filter(self, args: Sequence[Any]) -> Filter:
        """
        Pair ``args`` with our attributes and and them together.

        Raises:
            ValidationError: the number of ``args`` does not match the number
                of attributes

        Returns:
            ``Equals(a1, v1) & Equals(a2, v2) & ...``, left to right.

        """
        if len(args) != len(self.attributes):
            msg = "find: wrong number of arguments (%(given)d for %(expected)d)"
            raise ValidationError(
                msg,
                code="arguments",
                params={"given": len(args), "expected": len(self.attributes)},
            )
        result: Filter | None = None
        for attribute, value in zip(self.attributes, args, strict=True):
            term = Equals(attribute, value)
            result = term if result is None else result & term
        return result  # type: ignore[return-value]


@lru_cache(maxsize=256)
def parse_request(request: str) -> FinderRequest:
    """
    Parse a finder request string.

    Args:
        request: e.g. ``find all by sAMAccountName and mail``

    Raises:
        ValidationError: ``request`` is not a finder request, or names an
            attribute that can't be one

    Returns:
        The parsed request.

    """
    text = request.strip()
    if match := SPACED_RE.match(text):
        attributes = re.split(r"\s+and\s+", match.group("attributes").strip())
    elif match := UNDERSCORED_RE.match(text):
        attributes = match.group("attributes").split("_and_")
    else:
        msg = "%(request)r is not a finder request"
        raise ValidationError(msg, code="invalid", params={"request": request})
    for attribute in attributes:
        if not ATTRIBUTE_RE.match(attribute):
            msg = "%(request)r: %(attribute)r is not an attribute name"
            raise ValidationError(
                msg, code="invalid", params={"request": request, "attribute": attribute}
            )
    return FinderRequest(match.group("cardinality") or "first", tuple(attributes))


def parse_finder(request: str, args: Sequence[Any]) -> tuple[str, Filter]:
    """
    Turn a finder request and its arguments into a cardinality and a filter.

    Args:
        request: e.g. ``find all by sAMAccountName and mail``
        args: one value per attribute the request names

    Raises:
        ValidationError: the request is malformed, or the argument count
            does not match

    Returns:
        A tuple like ``("all", Equals("sAMAccountName", "jdoe") & Equals("mail", ...))``.

    """
    parsed = parse_request(request)
    return parsed.cardinality, parsed.build_filter(args)
