"""
Directory entries and the entry types we know about.

An :py:class:`Entry` is one directory object: its distinguished name, the
attribute values we last loaded from the server, and the edits we have staged
but not saved yet.  :py:class:`User`, :py:class:`Group` and
:py:class:`Computer` are entry types: each knows the filter that selects its
objects and the attributes it stamps onto objects it creates.

Entries always belong to a :py:class:`~activedirectory.session.Session`::

    session = Session.from_settings()
    jdoe = User.query(session).find_first({"sAMAccountName": "jdoe"})
    jdoe.mail = "jdoe@example.org"
    jdoe.save()
"""

import inspect
import logging
from typing import TYPE_CHECKING, Any, cast

from .container import Container
from .exceptions import ProtocolError, ValidationError
from .fields import (
    BinaryField,
    BooleanField,
    CharField,
    CharListField,
    GeneralizedTimeField,
    IntegerField,
    PasswordField,
    TimestampField,
)
from .filters import Equals, Not
from .options import Options
from .session import SCOPE_BASE, RawEntry, Session
from .typing import AttributeValue

if TYPE_CHECKING:
    from .managers import QueryEngine
    from .membership import Membership, MembershipResolver


logger = logging.getLogger("django-activedirectory")


class EntryBase(type):
    """
    Metaclass for entry types.

    This parses the ``Meta`` class into an
    :py:class:`~activedirectory.options.Options` instance at ``cls._meta``
    and registers each declared field, after copying in the fields of any
    parent entry types.
    """

    def __new__(cls, name, bases, attrs, **kwargs):
        super_new = super().__new__

        module = attrs.pop("__module__")
        new_attrs = {"__module__": module}
        classcell = attrs.pop("__classcell__", None)
        if classcell is not None:
            new_attrs["__classcell__"] = classcell
        new_class = super_new(cls, name, bases, new_attrs, **kwargs)
        attr_meta = attrs.pop("Meta", None)
        meta = attr_meta or getattr(new_class, "Meta", None)

        new_class.add_to_class("_meta", Options(meta))
        # Keep the Meta around so subclasses without one inherit it
        new_class.Meta = meta

        # Fields from our parents come first, so ours can replace them
        for parent in reversed(new_class.__mro__[1:]):
            parent_meta = getattr(parent, "_meta", None)
            if isinstance(parent_meta, Options):
                for field in parent_meta.local_fields:
                    new_class._meta.add_field(field)

        # Add all attributes to the class.  This is where the fields get
        # initialized
        for obj_name, obj in attrs.items():
            new_class.add_to_class(obj_name, obj)

        return new_class

    def add_to_class(cls, name: str, value: Any) -> None:
        """
        Add an attribute to the class, calling contribute_to_class if available.

        Args:
            name: The name of the attribute to add.
            value: The value to assign to the attribute.

        """
        # We should call the contribute_to_class method only if it's bound
        if not inspect.isclass(value) and hasattr(value, "contribute_to_class"):
            value.contribute_to_class(cls, name)
        else:
            setattr(cls, name, value)


class Entry(metaclass=EntryBase):
    """
    One directory object.

    Attribute names are case-insensitive.  Every attribute is reachable
    through :py:meth:`attribute` and :py:meth:`values` (or ``entry["name"]``),
    and the common ones also have typed fields (``entry.description``).

    Edits are staged with :py:meth:`set_attribute` (or by assigning to a
    field) and sent to the directory by :py:meth:`save`.  Until then reads
    see the staged value.

    Keyword Args:
        attributes: attributes to stage on a new, unsaved entry
        session: the session this entry talks to the directory through

    """

    #: the distinguished name, as the server has it
    distinguished_name = CharField("distinguishedName", editable=False)
    cn = CharField()
    name = CharField(editable=False)
    description = CharField()
    display_name = CharField("displayName")
    object_class = CharListField("objectClass", editable=False)
    object_guid = BinaryField("objectGUID", editable=False)
    when_created = GeneralizedTimeField("whenCreated", editable=False)
    when_changed = GeneralizedTimeField("whenChanged", editable=False)
    is_critical_system_object = BooleanField("isCriticalSystemObject", editable=False)

    def __init__(
        self,
        attributes: dict[str, Any] | None = None,
        session: Session | None = None,
    ) -> None:
        self.session = session
        self._dn: str | None = None
        self._exists: bool = False
        # lowercased attribute name -> (server's spelling, values)
        self._loaded: dict[str, tuple[str, list[Any]]] = {}
        # lowercased attribute name -> (caller's spelling, values or None)
        self._pending: dict[str, tuple[str, list[Any] | None]] = {}
        self._cache: dict[str, Any] = {}
        for key, value in (attributes or {}).items():
            self.set_attribute(key, value)

    @classmethod
    def from_raw(cls, raw: RawEntry, session: Session) -> "Entry":
        """
        Build an entry of this type from a search result.

        Args:
            raw: the search result
            session: the session the result came from

        Returns:
            A new entry marked as existing in the directory.

        """
        obj = cls(session=session)
        obj._load(raw)
        return obj

    def _load(self, raw: RawEntry) -> None:
        self._dn = raw.dn
        self._loaded = {name.lower(): (name, raw.get(name)) for name in raw.names()}
        self._pending = {}
        self._exists = True

    def _invalidate(self) -> None:
        """
        Forget every derived value computed from this entry's attributes.
        """
        self._cache.clear()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self._dn}>"

    def __str__(self) -> str:
        return str(self._dn)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Entry):
            return NotImplemented
        if self._dn is None or other._dn is None:
            return self is other
        return self._dn == other._dn

    def __hash__(self) -> int:
        if self._dn is None:
            return id(self)
        return hash(self._dn)

    # -----------------------
    # State
    # -----------------------

    @property
    def dn(self) -> str | None:
        """
        The distinguished name of this entry, or ``None`` if it has never
        been saved.
        """
        return self._dn

    @property
    def exists(self) -> bool:
        """
        ``True`` if this entry was loaded from the directory and has not been
        destroyed since.
        """
        return self._exists

    @property
    def new_record(self) -> bool:
        return not self._exists

    @property
    def changed(self) -> bool:
        """
        ``True`` if there are staged edits that have not been saved.
        """
        return bool(self._pending)

    @property
    def changed_attributes(self) -> list[str]:
        """
        The names of the attributes with staged edits, as the caller spelled
        them.
        """
        return [name for name, _ in self._pending.values()]

    @property
    def pending(self) -> dict[str, list[Any] | None]:
        """
        The staged edits: attribute name to new values, or ``None`` for
        "delete this attribute".
        """
        return dict(self._pending.values())

    def loaded_name(self, name: str) -> str | None:
        """
        Return the server's spelling of attribute ``name``, if the server
        gave it to us.
        """
        loaded = self._loaded.get(name.lower())
        return loaded[0] if loaded else None

    # -----------------------
    # Attribute access
    # -----------------------

    def attribute(self, name: str) -> Any:
        """
        Return the current value of attribute ``name``: the staged value if
        there is one, otherwise the loaded one.

        Args:
            name: the attribute name, in any case

        Returns:
            A single value if there is exactly one, a list if there are
            several, ``[]`` if the attribute is staged for deletion, and
            ``None`` if we know nothing about it.

        """
        key = name.lower()
        if key in self._pending:
            values = self._pending[key][1]
            if values is None:
                return []
        elif key in self._loaded:
            values = self._loaded[key][1]
        else:
            return None
        if len(values) == 1:
            return values[0]
        return list(values)

    def values(self, name: str) -> list[Any]:
        """
        Like :py:meth:`attribute`, but always a list.
        """
        key = name.lower()
        if key in self._pending:
            return list(self._pending[key][1] or [])
        if key in self._loaded:
            return list(self._loaded[key][1])
        return []

    def set_attribute(self, name: str, value: AttributeValue) -> None:
        """
        Stage a new value for attribute ``name``.  Nothing is sent to the
        directory until :py:meth:`save`.

        Args:
            name: the attribute name
            value: a single value, a list of values, or ``None`` (or an
                empty string or list) to delete the attribute

        """
        if value is None or value in ("", []):
            values: list[Any] | None = None
        elif isinstance(value, (list, tuple)):
            values = list(value)
        else:
            values = [value]
        self._pending[name.lower()] = (name, values)

    def __getitem__(self, name: str) -> Any:
        return self.attribute(name)

    def __setitem__(self, name: str, value: AttributeValue) -> None:
        self.set_attribute(name, value)

    def __contains__(self, name: str) -> bool:
        return bool(self.values(name))

    # -----------------------
    # Persistence
    # -----------------------

    def _get_session(self) -> Session:
        if self.session is None:
            msg = f"{self!r} has no session"
            raise ValueError(msg)
        return self.session

    @classmethod
    def query(cls, session: Session) -> "QueryEngine":
        """
        Return a query engine for this entry type.

        Args:
            session: the session to search through

        """
        from .managers import QueryEngine

        return QueryEngine(cls, session)

    def save(self) -> bool:
        """
        Send the staged edits to the directory as one modify request, then
        reload.

        Raises:
            ProtocolError: the server refused the modification.  The staged
                edits are kept, so the caller can fix them and try again.

        Returns:
            ``True`` on success or when there is nothing to save, ``False`` if
            this entry does not exist in the directory.

        """
        if not self._pending:
            return True
        if not self._exists:
            logger.warning("activedirectory.entry.save.not-saved dn=%s", self._dn)
            return False
        from .managers import Modlist

        self._get_session().modify(cast("str", self._dn), Modlist(self).update())
        self._pending = {}
        return self.reload()

    def update_attribute(self, name: str, value: Any) -> bool:
        """
        Stage ``value`` for ``name`` and save immediately.
        """
        return self.update_attributes({name: value})

    def update_attributes(self, attributes: dict[str, Any]) -> bool:
        """
        Stage every attribute in ``attributes`` and save immediately.

        Raises:
            ProtocolError: the server refused the modification

        """
        for name, value in attributes.items():
            self.set_attribute(name, value)
        return self.save()

    def reload(self) -> bool:
        """
        Re-read this entry from the directory, discarding staged edits and
        derived values.

        Returns:
            ``False`` if the entry no longer exists.

        """
        self._invalidate()
        if not self._exists or self._dn is None:
            return False
        results = self._get_session().search(base=self._dn, scope=SCOPE_BASE)
        if not results:
            logger.info("activedirectory.entry.reload.gone dn=%s", self._dn)
            self._exists = False
            self._loaded = {}
            self._pending = {}
            return False
        self._load(results[0])
        return True

    def refresh(self, *names: str) -> bool:
        """
        Re-read just the attributes ``names`` from the directory.  Staged
        edits are kept; derived values are forgotten.

        Returns:
            ``False`` if the entry no longer exists.

        """
        self._invalidate()
        if not self._exists or self._dn is None:
            return False
        results = self._get_session().search(
            base=self._dn, scope=SCOPE_BASE, attributes=list(names)
        )
        if not results:
            return self.reload()
        raw = results[0]
        for name in names:
            key = name.lower()
            if name in raw:
                spelling = next(n for n in raw.names() if n.lower() == key)
                self._loaded[key] = (spelling, raw.get(name))
            else:
                self._loaded.pop(key, None)
        return True

    @classmethod
    def create(
        cls,
        session: Session,
        identity: str | Container,
        attributes: dict[str, Any],
    ) -> "Entry | None":
        """
        Create a new directory object of this type.

        Our type's ``required_attributes`` are merged over ``attributes``,
        so a caller can't create a ``Group`` without the ``group`` object
        class.

        Args:
            session: the session to create through
            identity: the distinguished name of the new object
            attributes: its attributes

        Raises:
            ValidationError: ``identity`` is empty, or ``attributes`` lacks
                one of our ``mandatory_attributes``.  Nothing was sent to the
                directory.

        Returns:
            The new entry as loaded back from the directory, or ``None`` if
            the server refused to create it or we could not read it back.

        """
        if not identity:
            msg = f"Cannot create a {cls.__name__} without a distinguished name"
            raise ValidationError(msg, code="required")
        dn = str(identity)
        given = {k.lower() for k, v in attributes.items() if v not in (None, "", [])}
        missing = [a for a in cls._meta.mandatory_attributes if a.lower() not in given]  # type: ignore[attr-defined]
        if missing:
            msg = "Cannot create %(dn)s: missing mandatory attribute(s) %(missing)s"
            raise ValidationError(
                msg, code="required", params={"dn": dn, "missing": ", ".join(missing)}
            )
        from .managers import Modlist

        try:
            session.add(dn, Modlist.add(cls, attributes))
            entry = cls.query(session).get_by_dn(dn)
        except ProtocolError as exc:
            logger.warning("activedirectory.entry.create.failed dn=%s error=%s", dn, exc)
            return None
        if entry is None:
            logger.warning("activedirectory.entry.create.not-found dn=%s", dn)
        return entry

    def destroy(self) -> bool:
        """
        Delete this object from the directory.

        Raises:
            ProtocolError: the server refused the deletion

        Returns:
            ``False`` if the entry did not exist to begin with.

        """
        if not self._exists:
            return False
        self._get_session().delete(cast("str", self._dn))
        self._exists = False
        self._loaded = {}
        self._pending = {}
        self._invalidate()
        return True

    def move(self, new_rdn: str, new_superior: str | Container | None = None) -> bool:
        """
        Rename this object to ``new_rdn`` and optionally move it under
        ``new_superior``, then reload it from its new place.

        Raises:
            ProtocolError: the server refused the rename

        """
        if not self._exists:
            return False
        self._dn = self._get_session().rename(
            cast("str", self._dn), new_rdn, str(new_superior) if new_superior else None
        )
        return self.reload()


class Member:
    """
    Behavior shared by entries that can belong to groups (users and groups).
    """

    def _resolver(self) -> "MembershipResolver":
        from .membership import MembershipResolver

        return MembershipResolver(cast("Entry", self)._get_session())

    def member_of(self, group: "Group") -> bool:
        """
        ``True`` if this entry's ``memberOf`` names ``group``.
        """
        return self._resolver().is_member_of(cast("Entry", self), group)

    def join(self, group: "Group") -> bool:
        """
        Add this entry to ``group``.
        """
        return group.add(cast("Entry", self))

    def unjoin(self, group: "Group") -> bool:
        """
        Remove this entry from ``group``.
        """
        return group.remove(cast("Entry", self))

    @property
    def groups(self) -> list["Group"]:
        """
        The groups this entry directly belongs to, resolved from
        ``memberOf``.  References to groups that no longer exist are
        dropped.
        """
        return self._resolver().reverse_groups(cast("Entry", self))


class User(Member, Entry):
    """
    A user account.  Computers are excluded, even though Active Directory
    computer objects also carry the ``user`` object class.
    """

    sam_account_name = CharField("sAMAccountName")
    user_principal_name = CharField("userPrincipalName")
    given_name = CharField("givenName")
    initials = CharField()
    sn = CharField()
    mail = CharField()
    telephone_number = CharField("telephoneNumber")
    employee_id = CharField("employeeID")
    title = CharField()
    department = CharField()
    company = CharField()
    manager = CharField()
    proxy_addresses = CharListField("proxyAddresses")
    member_of_list = CharListField("memberOf", editable=False)
    user_account_control = IntegerField("userAccountControl")
    account_expires = TimestampField("accountExpires")
    last_logon = TimestampField("lastLogonTimestamp", editable=False)
    password_last_set = TimestampField("pwdLastSet", editable=False)
    password = PasswordField()

    class Meta:
        type_filter = Equals("objectClass", "user") & Not(Equals("objectClass", "computer"))
        required_attributes = {"objectClass": ["top", "person", "organizationalPerson", "user"]}
        mandatory_attributes = ("sAMAccountName",)

    def set_password(self, password: str) -> None:
        """
        Stage a new password.  Active Directory only accepts ``unicodePwd``
        changes over an encrypted connection.
        """
        self.password = password

    def authenticate(self, password: str) -> bool:
        """
        Check ``password`` by binding to the directory as this user.

        Returns:
            ``True`` if the bind succeeded, ``False`` for bad credentials or
            an empty password.

        """
        if self._dn is None:
            return False
        return self._get_session().authenticate(self._dn, password)


class Group(Member, Entry):
    """
    A security or distribution group.

    The member lists (:py:meth:`member_users`, :py:meth:`member_groups`) are
    resolved from ``member`` the first time they're asked for and then
    remembered until :py:meth:`reload`, :py:meth:`add` or :py:meth:`remove`.
    """

    sam_account_name = CharField("sAMAccountName")
    group_type = IntegerField("groupType")
    mail = CharField()
    managed_by = CharField("managedBy")
    member = CharListField()
    member_of_list = CharListField("memberOf", editable=False)

    class Meta:
        type_filter = {"objectClass": "group"}
        required_attributes = {"objectClass": ["top", "group"]}
        mandatory_attributes = ("sAMAccountName",)

    def has_members(self) -> bool:
        return bool(self.values("member"))

    def member_users(self, recursive: bool = False, **kwargs) -> "list[User] | Membership":
        """
        The users in this group.

        Args:
            recursive: also include users of nested groups, at any depth

        Keyword Args:
            cancel: for recursive lookups, an object with an ``is_set()``
                method (like :py:class:`threading.Event`); when it returns
                ``True`` we stop early
            timeout: for recursive lookups, stop early after this many seconds

        Returns:
            For a direct lookup, a list of users.  For a recursive lookup, a
            :py:class:`~activedirectory.membership.Membership`, whose
            ``complete`` attribute is ``False`` if we stopped early.

        """
        if recursive:
            return self._resolver().transitive_users(self, **kwargs)
        return self._resolver().direct_users(self)

    def member_groups(self, recursive: bool = False, **kwargs) -> "list[Group] | Membership":
        """
        The groups in this group.  See :py:meth:`member_users` for the
        arguments.
        """
        if recursive:
            return self._resolver().transitive_groups(self, **kwargs)
        return self._resolver().direct_groups(self)

    def has_member(self, entry: Entry) -> bool:
        """
        ``True`` if ``entry`` is named in our ``member`` attribute.
        """
        return self._resolver().has_member(self, entry)

    def add(self, entry: Entry) -> bool:
        """
        Add ``entry`` (a user or a group) to this group.  Adding an existing
        member succeeds without changing anything.

        Raises:
            ValidationError: ``entry`` is neither a user nor a group
            ProtocolError: the server refused the change

        """
        return self._resolver().add_member(self, entry)

    def remove(self, entry: Entry) -> bool:
        """
        Remove ``entry`` (a user or a group) from this group.  Removing a
        non-member succeeds without changing anything.

        Raises:
            ValidationError: ``entry`` is neither a user nor a group
            ProtocolError: the server refused the change

        """
        return self._resolver().remove_member(self, entry)


class Computer(Entry):
    """
    A computer account.
    """

    sam_account_name = CharField("sAMAccountName")
    dns_host_name = CharField("dNSHostName")
    operating_system = CharField("operatingSystem")
    operating_system_version = CharField("operatingSystemVersion")
    managed_by = CharField("managedBy")

    class Meta:
        type_filter = {"objectClass": "computer"}
        required_attributes = {
            "objectClass": ["top", "person", "organizationalPerson", "user", "computer"]
        }
        mandatory_attributes = ("sAMAccountName",)

    @property
    def hostname(self) -> str | None:
        """
        The DNS host name, falling back to the object's ``name``.
        """
        return self.dns_host_name or self.name
