"""
Typed attribute accessors for directory entries.

Every attribute of an entry is always reachable by name through
:py:meth:`~activedirectory.models.Entry.attribute`.  The fields here add a
typed layer on top for the attributes we know about: declare them on an entry
class and they read from and stage writes into that same attribute store::

    class User(Entry):
        mail = CharField()
        last_logon = TimestampField("lastLogonTimestamp", editable=False)

    user.mail                 # "jdoe@example.org"
    user.mail = "j@example.org"   # same as user.set_attribute("mail", ...)
"""

import datetime
from typing import TYPE_CHECKING, Any, cast

import pytz

from .codecs import Password, Timestamp

if TYPE_CHECKING:
    from .models import Entry


class Field:
    """
    Base class for typed attribute accessors.

    Args:
        ldap_attribute: the directory attribute name.  Defaults to the
            name the field is assigned to on the class.

    Keyword Args:
        editable: if ``False``, assigning to the field raises
            ``AttributeError``.  Use this for attributes the server maintains
            (``whenCreated``, ``memberOf``, ...).

    """

    #: Counter for field creation order, used for sorting fields.
    creation_counter: int = 0

    def __init__(self, ldap_attribute: str | None = None, editable: bool = True) -> None:
        self.name: str | None = None
        self.ldap_attribute = ldap_attribute
        self.editable = editable
        self.model: type[Entry] | None = None
        self.creation_counter = Field.creation_counter
        Field.creation_counter += 1

    def __repr__(self) -> str:
        path = f"{self.__class__.__module__}.{self.__class__.__qualname__}"
        if self.name is not None:
            return f"<{path}: {self.name}>"
        return f"<{path}>"

    def __lt__(self, other: "Field") -> bool:
        if isinstance(other, Field):
            return self.creation_counter < other.creation_counter
        return NotImplemented

    def contribute_to_class(self, cls: type["Entry"], name: str) -> None:
        """
        Called by :py:class:`~activedirectory.models.EntryBase` to register
        this field on ``cls``.
        """
        self.name = name
        if self.ldap_attribute is None:
            self.ldap_attribute = name
        self.model = cls
        cls._meta.add_field(self)  # type: ignore[union-attr]
        setattr(cls, name, self)

    def __get__(self, instance: "Entry | None", owner: type["Entry"]) -> Any:
        if instance is None:
            return self
        return self.from_db_value(instance.values(cast("str", self.ldap_attribute)))

    def __set__(self, instance: "Entry", value: Any) -> None:
        if not self.editable:
            msg = f"{self.name} ({self.ldap_attribute}) is maintained by the directory"
            raise AttributeError(msg)
        instance.set_attribute(cast("str", self.ldap_attribute), self.to_db_value(value))

    def from_db_value(self, values: list[Any]) -> Any:
        """
        Convert the attribute's values to the Python value.
        """
        return values

    def to_db_value(self, value: Any) -> list[Any] | None:
        """
        Convert the Python value to a list of attribute values.  ``None``
        stages deletion of the attribute.
        """
        if value is None or value in ("", []):
            return None
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]


class CharField(Field):
    """
    A single-valued text attribute.
    """

    def from_db_value(self, values: list[Any]) -> str | None:
        if not values:
            return None
        return values[0]


class CharListField(Field):
    """
    A multi-valued text attribute, like ``member`` or ``proxyAddresses``.
    """

    def from_db_value(self, values: list[Any]) -> list[str]:
        return list(values)


class IntegerField(Field):
    """
    A single-valued integer attribute, like ``userAccountControl``.
    """

    def from_db_value(self, values: list[Any]) -> int | None:
        if not values:
            return None
        return int(values[0])

    def to_db_value(self, value: Any) -> list[Any] | None:
        if value is None or value == "":
            return None
        return [str(int(value))]


class BooleanField(Field):
    """
    A single-valued LDAP boolean (``TRUE``/``FALSE``).
    """

    def from_db_value(self, values: list[Any]) -> bool | None:
        if not values:
            return None
        return str(values[0]).upper() == "TRUE"

    def to_db_value(self, value: Any) -> list[Any] | None:
        if value is None:
            return None
        return ["TRUE" if value else "FALSE"]


class BinaryField(Field):
    """
    A single-valued binary attribute, like ``objectGUID``.
    """

    def from_db_value(self, values: list[Any]) -> bytes | None:
        if not values:
            return None
        value = values[0]
        return value if isinstance(value, bytes) else value.encode("utf-8")


class TimestampField(Field):
    """
    An Active Directory integer timestamp (``lastLogonTimestamp``,
    ``pwdLastSet``, ``accountExpires``), as an aware UTC datetime.
    """

    def from_db_value(self, values: list[Any]) -> datetime.datetime | None:
        if not values:
            return None
        return Timestamp.decode(values[0])

    def to_db_value(self, value: Any) -> list[Any] | None:
        if value is None:
            return None
        return [str(Timestamp.encode(value))]


class GeneralizedTimeField(Field):
    """
    An LDAP GeneralizedTime attribute (``whenCreated``, ``whenChanged``),
    like ``20240102030405.0Z``, as an aware UTC datetime.
    """

    FORMATS: tuple[str, ...] = ("%Y%m%d%H%M%S.%fZ", "%Y%m%d%H%M%SZ")

    def from_db_value(self, values: list[Any]) -> datetime.datetime | None:
        if not values:
            return None
        for fmt in self.FORMATS:
            try:
                return pytz.utc.localize(datetime.datetime.strptime(values[0], fmt))  # noqa: DTZ007
            except ValueError:
                continue
        msg = f"{self.ldap_attribute}: {values[0]!r} is not a GeneralizedTime value"
        raise ValueError(msg)

    def to_db_value(self, value: Any) -> list[Any] | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(pytz.utc)
        return [value.strftime("%Y%m%d%H%M%S.0Z")]


class PasswordField(Field):
    """
    The write-only ``unicodePwd`` attribute.  Reading it always gives
    ``None``; writing it stages the value encoded with
    :py:class:`~activedirectory.codecs.Password`.
    """

    def __init__(self, ldap_attribute: str | None = "unicodePwd", editable: bool = True) -> None:
        super().__init__(ldap_attribute, editable=editable)

    def from_db_value(self, values: list[Any]) -> None:  # noqa: ARG002
        return Password.decode(None)

    def to_db_value(self, value: Any) -> list[Any] | None:
        if not value:
            return None
        return [Password.encode(value)]
