"""
Search filter expressions.

Filters are small immutable trees.  Build them explicitly::

    Equals("sAMAccountName", "jdoe") & Present("mail")

or from a mapping of attribute names to values, which becomes a conjunction of
equality tests in the mapping's iteration order::

    Filter.from_mapping({"sn": "Hunt", "givenName": "James"})

:py:meth:`Filter.render` turns a tree into the RFC 4515 string python-ldap
wants.  Rendering keeps the left-to-right order of the tree, so
``(a & b).render()`` and ``(b & a).render()`` differ even though they select
the same entries.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ldap.filter import escape_filter_chars
from ldap_filter import Filter as LDAPFilter

#: The wildcard token.  Values containing it are substring matches.
WILDCARD = "*"


def value_to_text(value: Any) -> str:
    """
    Directory values are compared as text.  Booleans use the LDAP boolean
    syntax (``TRUE``/``FALSE``); bytes are decoded as UTF-8; everything else
    goes through ``str()``.

    Args:
        value: the value to convert

    Returns:
        The text form of ``value``.

    """
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class Filter:
    """
    Base class for search filter nodes.
    """

    def to_ldap_filter(self) -> Any:
        """
        Return the equivalent ``ldap_filter`` object.
        """
        raise NotImplementedError

    def render(self) -> str:
        """
        Return the RFC 4515 string for this filter.

        Returns:
            A filter string like ``(&(objectClass=group)(cn=Admins))``.

        """
        return self.to_ldap_filter().to_string()

    def __str__(self) -> str:
        return self.render()

    def __and__(self, other: "Filter") -> "Filter":
        if not isinstance(other, Filter):
            return NotImplemented
        return And(self, other)

    def __or__(self, other: "Filter") -> "Filter":
        if not isinstance(other, Filter):
            return NotImplemented
        return Or(self, other)

    def __invert__(self) -> "Filter":
        return Not(self)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "Filter | None":
        """
        Build a conjunction of equality tests from ``mapping``.

        The first key becomes the leftmost test; each following key is
        and-ed on to the right, so ``{"a": 1, "b": 2, "c": 3}`` becomes
        ``And(And(Equals(a, 1), Equals(b, 2)), Equals(c, 3))``.

        Args:
            mapping: attribute name to value

        Returns:
            The filter, or ``None`` if ``mapping`` is empty or ``None``.

        """
        if not mapping:
            return None
        result: Filter | None = None
        for attribute, value in mapping.items():
            term = Equals(attribute, value)
            result = term if result is None else And(result, term)
        return result


@dataclass(frozen=True)
class Equals(Filter):
    """
    ``attribute`` has a value equal to ``value``.

    A ``*`` in ``value`` is passed through as a wildcard, so
    ``Equals("description", "OldGroup_*")`` is a prefix match.
    """

    attribute: str
    value: Any

    @property
    def text(self) -> str:
        return value_to_text(self.value)

    def to_ldap_filter(self) -> Any:
        text = self.text
        if WILDCARD not in text:
            return LDAPFilter.attribute(self.attribute).equal_to(text)
        # Escape everything except the wildcards; ``raw`` renders it as given

        escaped = WILDCARD.join(escape_filter_chars(part) for part in text.split(WILDCARD))
        return LDAPFilter.attribute(self.attribute).raw(escaped)


@dataclass(frozen=True)
class Present(Filter):
    """
    ``attribute`` has at least one value.
    """

    attribute: str

    def to_ldap_filter(self) -> Any:
        return LDAPFilter.attribute(self.attribute).present()


@dataclass(frozen=True)
class And(Filter):
    left: Filter
    right: Filter

    def to_ldap_filter(self) -> Any:
        return LDAPFilter.AND([self.left.to_ldap_filter(), self.right.to_ldap_filter()])


@dataclass(frozen=True)
class Or(Filter):
    left: Filter
    right: Filter

    def to_ldap_filter(self) -> Any:
        return LDAPFilter.OR([self.left.to_ldap_filter(), self.right.to_ldap_filter()])


@dataclass(frozen=True)
class Not(Filter):
    filter: Filter

    def to_ldap_filter(self) -> Any:
        return LDAPFilter.NOT(self.filter.to_ldap_filter())


#: The "no filtering" filter: every directory entry we care about has a ``cn``.
NIL_FILTER: Filter = Present("cn")


def combine(*filters: Filter | None) -> Filter | None:
    """
    And together the filters that are not ``None``, left to right.

    Returns:
        The conjunction, the single remaining filter, or ``None``.

    """
    result: Filter | None = None
    for f in filters:
        if f is None:
            continue
        result = f if result is None else And(result, f)
    return result
