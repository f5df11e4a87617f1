"""
Group membership resolution.

Active Directory records membership twice: a group's ``member`` attribute
lists the dns of its direct members, and each member's ``memberOf`` lists the
dns of the groups it directly belongs to.  Nesting is allowed, and so are
cycles (A contains B contains A), so transitive lookups keep a single set of
visited groups for the whole walk.

A member dn that no longer resolves to a user or a group (the object was
deleted, or it's a contact or a foreign security principal) is skipped.

Resolved direct and transitive lists are remembered on the group until it is
reloaded or its membership is changed through :py:meth:`MembershipResolver.add_member`
or :py:meth:`MembershipResolver.remove_member`.
"""

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from .exceptions import ProtocolError, ValidationError
from .models import Entry, Group, User
from .session import Operation, Session

logger = logging.getLogger("django-activedirectory")


class Cancellation(Protocol):
    """Anything with an ``is_set()`` method, like :py:class:`threading.Event`."""

    def is_set(self) -> bool: ...


@dataclass
class Membership:
    """
    The result of a transitive lookup.

    Iterate over it, take its ``len()`` or test ``entry in membership`` as if
    it were a list of entries.

    Args:
        entries: the entries found, de-duplicated by dn, in discovery order
        complete: ``False`` if the lookup was cancelled or timed out before
            it finished; ``entries`` then holds what we found up to that point

    """

    entries: list[Entry] = field(default_factory=list)
    complete: bool = True

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, entry: Any) -> bool:
        return entry in self.entries

    def __getitem__(self, index: int) -> Entry:
        return self.entries[index]

    @property
    def dns(self) -> list[str]:
        return [str(entry.dn) for entry in self.entries]


class Traversal:
    """
    The state of one transitive lookup: the groups we've visited, and when
    to give up.

    Keyword Args:
        cancel: stop as soon as ``cancel.is_set()`` returns ``True``
        timeout: stop after this many seconds

    """

    def __init__(self, cancel: Cancellation | None = None, timeout: float | None = None) -> None:
        self.cancel = cancel
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self.visited: set[str] = set()
        self.complete = True

    def stopped(self) -> bool:
        """
        ``True`` if we've been cancelled or have run out of time.  Once this
        returns ``True`` the traversal is marked incomplete.
        """
        if not self.complete:
            return True
        if (self.cancel is not None and self.cancel.is_set()) or (
            self.deadline is not None and time.monotonic() >= self.deadline
        ):
            logger.info("activedirectory.membership.traversal.stopped visited=%d", len(self.visited))
            self.complete = False
        return not self.complete

    def enter(self, dn: str) -> bool:
        """
        Mark the group ``dn`` as visited.

        Returns:
            ``False`` if we had already visited it.

        """
        key = dn.lower()
        if key in self.visited:
            logger.debug("activedirectory.membership.cycle dn=%s", dn)
            return False
        self.visited.add(key)
        return True


def unique(entries: list[Entry]) -> list[Entry]:
    """
    Drop entries whose dn we've already seen, keeping the first occurrence.
    """
    seen: set[str] = set()
    result = []
    for entry in entries:
        key = str(entry.dn).lower()
        if key not in seen:
            seen.add(key)
            result.append(entry)
    return result


class MembershipResolver:
    """
    Answers membership questions for groups and their members.

    Args:
        session: the session to resolve member dns through

    Keyword Args:
        user_model: the entry type for user members
        group_model: the entry type for group members

    """

    def __init__(
        self,
        session: Session,
        user_model: type[User] = User,
        group_model: type[Group] = Group,
    ) -> None:
        self.session = session
        self.user_model = user_model
        self.group_model = group_model

    def resolve(self, dn: str) -> User | Group | None:
        """
        Load the object at ``dn`` as a user or, failing that, as a group.

        Returns:
            The entry, or ``None`` if ``dn`` is neither.

        """
        user = self.user_model.query(self.session).get_by_dn(dn)
        if user is not None:
            return user  # type: ignore[return-value]
        group = self.group_model.query(self.session).get_by_dn(dn)
        if group is None:
            logger.debug("activedirectory.membership.stale-reference dn=%s", dn)
        return group  # type: ignore[return-value]

    # -----------------------
    # Direct membership
    # -----------------------

    def _direct(
        self, group: Group, traversal: Traversal | None = None
    ) -> tuple[list[User], list[Group]]:
        """
        Resolve ``group``'s ``member`` values into users and groups.

        The result is remembered on ``group`` unless ``traversal`` was
        stopped partway through.
        """
        cached = group._cache.get("direct")
        if cached is not None:
            return cached
        users: list[User] = []
        groups: list[Group] = []
        for dn in group.values("member"):
            if traversal is not None and traversal.stopped():
                return users, groups
            entry = self.resolve(dn)
            if isinstance(entry, self.group_model):
                groups.append(entry)
            elif isinstance(entry, self.user_model):
                users.append(entry)
        group._cache["direct"] = (users, groups)
        return users, groups

    def direct_members(self, group: Group) -> list[Entry]:
        """
        The users and groups named in ``group``'s ``member`` attribute.
        """
        users, groups = self._direct(group)
        return [*users, *groups]

    def direct_users(self, group: Group) -> list[User]:
        return list(self._direct(group)[0])

    def direct_groups(self, group: Group) -> list[Group]:
        return list(self._direct(group)[1])

    def has_member(self, group: Group, entry: Entry) -> bool:
        """
        ``True`` if ``entry``'s dn is in ``group``'s ``member`` attribute.
        """
        if entry.dn is None:
            return False
        return entry.dn.lower() in {dn.lower() for dn in group.values("member")}

    # -----------------------
    # Transitive membership
    # -----------------------

    def _walk(self, group: Group, traversal: Traversal, users: list[User], groups: list[Group]) -> None:
        direct_users, direct_groups = self._direct(group, traversal)
        users.extend(direct_users)
        for subgroup in direct_groups:
            if traversal.stopped():
                return
            if not traversal.enter(str(subgroup.dn)):
                continue
            groups.append(subgroup)
            self._walk(subgroup, traversal, users, groups)

    def _transitive(
        self,
        group: Group,
        key: str,
        cancel: Cancellation | None = None,
        timeout: float | None = None,
    ) -> Membership:
        cached = group._cache.get(key)
        if cached is not None:
            return Membership(list(cached))
        traversal = Traversal(cancel=cancel, timeout=timeout)
        users: list[User] = []
        groups: list[Group] = []
        if not traversal.stopped():
            traversal.enter(str(group.dn))
            self._walk(group, traversal, users, groups)
        result = {"transitive_users": users, "transitive_groups": groups}
        if traversal.complete:
            # One walk answers both questions
            for name, entries in result.items():
                group._cache[name] = unique(entries)  # type: ignore[arg-type]
        return Membership(unique(result[key]), complete=traversal.complete)  # type: ignore[arg-type]

    def transitive_users(
        self,
        group: Group,
        cancel: Cancellation | None = None,
        timeout: float | None = None,
    ) -> Membership:
        """
        Every user in ``group`` or in any group nested inside it.

        Keyword Args:
            cancel: stop early when ``cancel.is_set()`` returns ``True``
            timeout: stop early after this many seconds

        Returns:
            The users, each once.  ``complete`` is ``False`` if we stopped
            early; such partial results are not remembered.

        """
        return self._transitive(group, "transitive_users", cancel=cancel, timeout=timeout)

    def transitive_groups(
        self,
        group: Group,
        cancel: Cancellation | None = None,
        timeout: float | None = None,
    ) -> Membership:
        """
        Every group nested inside ``group``, at any depth.  ``group`` itself
        is not included, even if a cycle leads back to it.  See
        :py:meth:`transitive_users` for the arguments.
        """
        return self._transitive(group, "transitive_groups", cancel=cancel, timeout=timeout)

    # -----------------------
    # Reverse membership
    # -----------------------

    def reverse_groups(self, entry: Entry) -> list[Group]:
        """
        The groups named in ``entry``'s ``memberOf`` attribute.  References
        that no longer resolve to a group are dropped.
        """
        cached = entry._cache.get("groups")
        if cached is not None:
            return list(cached)
        engine = self.group_model.query(self.session)
        groups = []
        for dn in entry.values("memberOf"):
            group = engine.get_by_dn(dn)
            if group is None:
                logger.debug("activedirectory.membership.stale-reference dn=%s", dn)
                continue
            groups.append(group)
        entry._cache["groups"] = groups
        return list(groups)

    def is_member_of(self, entry: Entry, group: Group) -> bool:
        """
        ``True`` if ``entry``'s ``memberOf`` names ``group``.
        """
        if group.dn is None:
            return False
        return group.dn.lower() in {dn.lower() for dn in entry.values("memberOf")}

    # -----------------------
    # Changing membership
    # -----------------------

    def _check_member_type(self, entry: Any) -> None:
        if not isinstance(entry, (self.user_model, self.group_model)) or entry.dn is None:
            msg = "Only saved users and groups can be group members, not %(entry)r"
            raise ValidationError(msg, code="invalid", params={"entry": entry})

    def _change(self, group: Group, entry: Entry, kind: str, result_code: int) -> bool:
        try:
            self.session.modify(str(group.dn), [Operation(kind, "member", [entry.dn])])
        except ProtocolError as exc:
            # Somebody else got there first: treat that as success
            if exc.code != result_code:
                raise
            logger.info(
                "activedirectory.membership.%s.already-done group=%s member=%s", kind, group.dn, entry.dn
            )
        else:
            logger.info("activedirectory.membership.%s group=%s member=%s", kind, group.dn, entry.dn)
        group.refresh("member")
        entry.refresh("memberOf")
        return True

    def add_member(self, group: Group, entry: Entry) -> bool:
        """
        Add ``entry`` to ``group``'s ``member`` attribute.

        Adding an existing member succeeds without writing anything.

        Raises:
            ValidationError: ``entry`` is not a saved user or group
            ProtocolError: the server refused the change

        """
        self._check_member_type(entry)
        if self.has_member(group, entry):
            logger.debug(
                "activedirectory.membership.add.no-changes group=%s member=%s", group.dn, entry.dn
            )
            return True
        # 20 is "type or value exists"
        return self._change(group, entry, "add", 20)

    def remove_member(self, group: Group, entry: Entry) -> bool:
        """
        Remove ``entry`` from ``group``'s ``member`` attribute.

        Removing a non-member succeeds without writing anything.

        Raises:
            ValidationError: ``entry`` is not a saved user or group
            ProtocolError: the server refused the change

        """
        self._check_member_type(entry)
        if not self.has_member(group, entry):
            logger.debug(
                "activedirectory.membership.remove.no-changes group=%s member=%s", group.dn, entry.dn
            )
            return True
        # 16 is "no such attribute"
        return self._change(group, entry, "delete", 16)
