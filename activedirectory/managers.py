"""
Searching for entries of a type, and building the change lists that write
them back.

A :py:class:`QueryEngine` runs searches for one entry type through one
session, always and-ing in the type's own filter::

    engine = User.query(session)            # or session.query(User)
    engine.find_first({"sAMAccountName": "jdoe"})
    engine.find_all(Equals("department", "IMSS"), scope="ou=Staff")
    engine.finder("find all by sn and givenName", "Hunt", "James")
"""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .exceptions import ValidationError
from .filters import NIL_FILTER, Filter, combine
from .finders import parse_finder
from .session import NO_ATTRIBUTES, SCOPE_BASE, Operation, Session

if TYPE_CHECKING:
    from .container import Container
    from .models import Entry


logger = logging.getLogger("django-activedirectory")


class Modlist:
    """
    Helper for constructing the attribute lists for add and modify requests.

    Args:
        entry: the entry whose staged edits we're writing

    """

    def __init__(self, entry: "Entry") -> None:
        self.entry = entry

    @staticmethod
    def add(model: type["Entry"], attributes: Mapping[str, Any]) -> dict[str, Any]:
        """
        Merge ``model``'s required attributes over ``attributes``.

        Attribute names are compared case-insensitively; when the caller and
        the type both set an attribute, the type's value is used.

        Returns:
            The attributes to send with the add request.

        """
        required = model._meta.required_attributes  # type: ignore[attr-defined]
        overridden = {name.lower() for name in required}
        data = {k: v for k, v in attributes.items() if k.lower() not in overridden}
        data.update(required)
        return data

    def update(self) -> list[Operation]:
        """
        Turn the entry's staged edits into modify operations, in the order
        they were staged.

        * a staged ``None`` becomes ``delete`` of the whole attribute
        * a value for an attribute the entry already has becomes ``replace``
        * a value for an attribute the entry does not have becomes ``add``

        Deleting an attribute the entry doesn't have is a no-op, so no
        operation is sent for it.

        Returns:
            The operations for :py:meth:`~activedirectory.session.Session.modify`.

        """
        operations: list[Operation] = []
        for name, values in self.entry.pending.items():
            # Use the server's spelling, if it has one
            loaded_name = self.entry.loaded_name(name)
            if values is None:
                if loaded_name is None:
                    logger.debug(
                        "activedirectory.modlist.delete.absent dn=%s attribute=%s",
                        self.entry.dn,
                        name,
                    )
                    continue
                operations.append(Operation("delete", loaded_name))
            elif loaded_name is None:
                operations.append(Operation("add", name, values))
            else:
                operations.append(Operation("replace", loaded_name, values))
        return operations


class QueryEngine:
    """
    Runs searches for one entry type.

    Args:
        model: the entry type, e.g. :py:class:`~activedirectory.models.User`
        session: the session to search through

    """

    #: The cardinalities :py:meth:`find` accepts.
    CARDINALITIES: tuple[str, ...] = ("first", "all")

    def __init__(self, model: type["Entry"], session: Session) -> None:
        self.model = model
        self.session = session

    def __repr__(self) -> str:
        return f"<QueryEngine: {self.model.__name__} via {self.session!r}>"

    @property
    def type_filter(self) -> Filter | None:
        return self.model._meta.filter  # type: ignore[attr-defined]

    def build_filter(self, criteria: Filter | Mapping[str, Any] | None = None) -> Filter:
        """
        And the caller's criteria with our type's filter.

        Args:
            criteria: a :py:class:`~activedirectory.filters.Filter`, a
                mapping of attribute names to values, or ``None``

        Raises:
            TypeError: ``criteria`` is none of those

        Returns:
            ``criteria & type_filter``.  If either is missing the other is
            returned alone; if both are, a filter that matches everything.

        """
        if criteria is None or isinstance(criteria, Filter):
            caller = criteria
        elif isinstance(criteria, Mapping):
            caller = Filter.from_mapping(criteria)
        else:
            msg = f"Search criteria must be a Filter or a mapping, not {type(criteria).__name__}"
            raise TypeError(msg)
        return combine(caller, self.type_filter) or NIL_FILTER

    def find(
        self,
        cardinality: str,
        criteria: Filter | Mapping[str, Any] | None = None,
        scope: "str | Container" = "",
    ) -> "Entry | list[Entry] | None":
        """
        Search for entries of our type.

        Args:
            cardinality: ``first`` or ``all``
            criteria: what to look for; see :py:meth:`build_filter`
            scope: a dn fragment under the session's base dn to search in,
                like ``ou=Staff``

        Raises:
            ValidationError: ``cardinality`` is not ``first`` or ``all``
            ProtocolError: the server rejected the search

        Returns:
            For ``first``, the first entry the server returned, or ``None``.
            For ``all``, the list of entries in server order, possibly empty.

        """
        if cardinality not in self.CARDINALITIES:
            msg = "Unknown find cardinality %(cardinality)r"
            raise ValidationError(msg, code="invalid", params={"cardinality": cardinality})
        searchfilter = self.build_filter(criteria)
        base = self.session.scope(scope)
        if cardinality == "first":
            results = self.session.search(searchfilter, base=base, sizelimit=1)
            if not results:
                return None
            return self.model.from_raw(results[0], self.session)
        results = self.session.search(searchfilter, base=base)
        return [self.model.from_raw(raw, self.session) for raw in results]

    def find_first(
        self,
        criteria: Filter | Mapping[str, Any] | None = None,
        scope: "str | Container" = "",
    ) -> "Entry | None":
        return self.find("first", criteria, scope=scope)  # type: ignore[return-value]

    def find_all(
        self,
        criteria: Filter | Mapping[str, Any] | None = None,
        scope: "str | Container" = "",
    ) -> "list[Entry]":
        return self.find("all", criteria, scope=scope)  # type: ignore[return-value]

    def get_by_dn(self, dn: "str | Container") -> "Entry | None":
        """
        Fetch the entry named ``dn``, if it is one of our type.

        Returns:
            The entry, or ``None`` if ``dn`` does not exist or is some other
            type of object.

        """
        results = self.session.search(self.type_filter, base=str(dn), scope=SCOPE_BASE)
        if not results:
            return None
        return self.model.from_raw(results[0], self.session)

    def exists(
        self,
        criteria: Filter | Mapping[str, Any] | None = None,
        scope: "str | Container" = "",
    ) -> bool:
        """
        ``True`` if at least one entry of our type matches ``criteria``.  No
        attributes are fetched.
        """
        results = self.session.search(
            self.build_filter(criteria),
            base=self.session.scope(scope),
            attributes=NO_ATTRIBUTES,
            sizelimit=1,
        )
        return bool(results)

    def finder(self, request: str, *args: Any, scope: "str | Container" = "") -> Any:
        """
        Run a named finder request, like
        ``finder("find all by sAMAccountName and mail", "jdoe", "j@example.org")``.
        See :py:mod:`activedirectory.finders`.

        Raises:
            ValidationError: ``request`` is malformed or the number of
                ``args`` does not match the attributes it names

        """
        cardinality, searchfilter = parse_finder(request, args)
        return self.find(cardinality, searchfilter, scope=scope)
