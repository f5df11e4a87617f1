"""
The connection to the directory server.

A :py:class:`Session` is the one place that talks python-ldap.  Everything
above it (entries, the query engine, the membership resolver) hands it
filters, distinguished names and attribute values, and gets back
:py:class:`RawEntry` objects or a :py:class:`~activedirectory.exceptions.ProtocolError`.

Sessions are passed around explicitly; there is no process-wide connection.
Build one from a configuration dict, or from ``settings.LDAP_SERVERS``::

    session = Session.from_settings("default")
    with session:
        jdoe = User.query(session).find_first({"sAMAccountName": "jdoe"})
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, cast

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from ldap.controls import SimplePagedResultsControl

from activedirectory import ldap

from .exceptions import ProtocolError
from .filters import Filter
from .typing import AddModList, LDAPData, ModifyModList, RawAttributes

if TYPE_CHECKING:
    from .managers import QueryEngine
    from .models import Entry

logger = logging.getLogger("django-activedirectory")

#: Search scopes, re-exported so callers need not import python-ldap.
SCOPE_BASE: Final[int] = ldap.SCOPE_BASE  # type: ignore[attr-defined]
SCOPE_ONELEVEL: Final[int] = ldap.SCOPE_ONELEVEL  # type: ignore[attr-defined]
SCOPE_SUBTREE: Final[int] = ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]

#: The filter we use when the caller gives us none.
MATCH_ALL: Final[str] = "(objectClass=*)"
#: Ask the server for no attributes at all (RFC 4511 section 4.5.1.8).
NO_ATTRIBUTES: Final[list[str]] = ["1.1"]


# -----------------------
# Decorators
# -----------------------


def connected(func: Callable) -> Callable:
    """
    Decorator for :py:class:`Session` methods that need to talk to the
    server.

    If the current thread already holds a connection (because the caller is
    inside ``with session:``, or we're nested in another wrapped method) we
    use it.  Otherwise we open one for the duration of the call and unbind it
    afterwards.
    """

    @wraps(func)
    def wrapper(self: "Session", *args, **kwargs) -> Any:
        if self.has_connection():
            return func(self, *args, **kwargs)
        self.connect()
        try:
            retval = func(self, *args, **kwargs)
        finally:
            # We do this in a finally: branch so that the connection gets
            # cleaned up no matter what happens in `func()`.
            self.disconnect()
        return retval

    return wrapper


# -----------------------
# Data Classes
# -----------------------


@dataclass(frozen=True)
class Operation:
    """
    One step of a modify request.

    Args:
        kind: ``add``, ``replace`` or ``delete``
        attribute: the attribute to change
        values: the values to add, replace with or remove.  ``None`` with
            ``delete`` removes the whole attribute.

    """

    #: Map of our operation kinds to python-ldap's.
    KINDS: Final = {  # type: ignore[misc]
        "add": ldap.MOD_ADD,  # type: ignore[attr-defined]
        "replace": ldap.MOD_REPLACE,  # type: ignore[attr-defined]
        "delete": ldap.MOD_DELETE,  # type: ignore[attr-defined]
    }

    kind: str
    attribute: str
    values: list[Any] | None = None

    def __post_init__(self) -> None:
        if self.kind not in self.KINDS:
            msg = f"Unknown modify operation kind: {self.kind!r}"
            raise ValueError(msg)

    def to_modlist_entry(self) -> tuple[int, str, list[bytes] | None]:
        return (self.KINDS[self.kind], self.attribute, encode_values(self.values))


@dataclass
class RawEntry:
    """
    One search result, as the server sent it.

    Attribute names are matched case-insensitively, since LDAP doesn't care
    about case but Python dicts do.

    Args:
        dn: the distinguished name of the entry
        attributes: attribute name to list of raw values

    """

    dn: str
    attributes: RawAttributes = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lookup = {name.lower(): name for name in self.attributes}

    def get(self, name: str) -> list[str | bytes]:
        """
        Return the values for attribute ``name``, decoded to text.

        Values that are not UTF-8 (``objectGUID``, ``objectSid`` and friends)
        stay bytes.

        Args:
            name: the attribute name, in any case

        Returns:
            Zero, one or many values.

        """
        key = self._lookup.get(name.lower())
        if key is None:
            return []
        return decode_values(self.attributes[key])

    def names(self) -> list[str]:
        """
        The attribute names present on this entry, as the server spelled them.
        """
        return list(self.attributes)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._lookup


# -----------------------
# Helpers
# -----------------------


def decode_values(values: list[bytes]) -> list[str | bytes]:
    decoded: list[str | bytes] = []
    for value in values:
        if isinstance(value, bytes):
            try:
                decoded.append(value.decode("utf-8"))
            except UnicodeDecodeError:
                decoded.append(value)
        else:
            decoded.append(value)
    return decoded


def encode_values(values: list[Any] | None) -> list[bytes] | None:
    """
    Convert values to the list of bytes python-ldap wants.

    Booleans become ``TRUE``/``FALSE``; bytes pass through untouched;
    everything else goes through ``str()`` and is UTF-8 encoded.
    """
    if values is None:
        return None
    encoded = []
    for value in values:
        if isinstance(value, bytes):
            encoded.append(value)
        elif isinstance(value, bool):
            encoded.append(b"TRUE" if value else b"FALSE")
        else:
            encoded.append(str(value).encode("utf-8"))
    return encoded


# -----------------------
# Session
# -----------------------


class Session:
    """
    A handle on one directory server.

    The configuration dict looks like this:

    .. code-block:: python

        {
            "url": "ldaps://dc1.example.org",
            "user": "cn=querying user,ou=Service,dc=example,dc=org",
            "password": "secret",
            "basedn": "dc=example,dc=org",
            "use_starttls": False,
            "tls_verify": "always",
            "tls_ca_certfile": "/etc/pki/ca.pem",
            "timeout": 15.0,
            "sizelimit": 1000,
            "follow_referrals": False,
            "paged_search": True,
            "page_size": 500,
        }

    Only ``url`` and ``basedn`` are required.

    This class keeps one python-ldap connection per thread, because
    python-ldap connections must not be shared between threads.  It does not
    serialize requests otherwise: one request is in flight per connection.

    Args:
        config: the connection configuration

    Raises:
        ImproperlyConfigured: ``url`` or ``basedn`` is missing

    """

    def __init__(self, config: dict[str, Any]) -> None:
        self.logger = logger
        for key in ("url", "basedn"):
            if not config.get(key):
                msg = f"Active Directory configuration has no '{key}' key"
                raise ImproperlyConfigured(msg)
        self.config = config
        self.basedn: str = config["basedn"]
        self.paged_search: bool = bool(config.get("paged_search", False))
        self.page_size: int = int(config.get("page_size", 100))
        # keys in this dictionary get manipulated by .connect() and .disconnect()
        self._ldap_objects: dict[threading.Thread, ldap.ldapobject.LDAPObject] = {}  # type: ignore[name-defined]

    @classmethod
    def from_settings(cls, key: str = "default") -> "Session":
        """
        Build a session from ``settings.LDAP_SERVERS[key]``.

        Args:
            key: the key into ``settings.LDAP_SERVERS``

        Raises:
            ImproperlyConfigured: the setting or the key does not exist

        Returns:
            A new, unconnected session.

        """
        try:
            config = settings.LDAP_SERVERS[key]
        except AttributeError as e:
            msg = "settings.LDAP_SERVERS does not exist!"
            raise ImproperlyConfigured(msg) from e
        except KeyError as e:
            msg = f"settings.LDAP_SERVERS has no key '{key}'"
            raise ImproperlyConfigured(msg) from e
        return cls(config)

    def __repr__(self) -> str:
        return f"<Session: {self.config['url']} basedn={self.basedn}>"

    # -----------------------
    # Connection management
    # -----------------------

    def __enter__(self) -> "Session":
        if not self.has_connection():
            self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        if self.has_connection():
            self.disconnect()

    def has_connection(self) -> bool:
        """
        Check if the current thread has an open connection.
        """
        return threading.current_thread() in self._ldap_objects

    @property
    def connection(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        The current thread's python-ldap connection.
        """
        return self._ldap_objects[threading.current_thread()]

    def connect(self, dn: str | None = None, password: str | None = None) -> None:
        """
        Open a connection for the current thread.

        Keyword Args:
            dn: bind as this dn instead of the configured user
            password: the password for ``dn``

        """
        self._ldap_objects[threading.current_thread()] = self._connect(dn=dn, password=password)

    def disconnect(self) -> None:
        """
        Unbind and forget the current thread's connection.
        """
        connection = self._ldap_objects.pop(threading.current_thread())
        connection.unbind_s()

    def _connect(  # noqa: PLR0912
        self, dn: str | None = None, password: str | None = None
    ) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Create, configure and bind a new python-ldap connection.

        Keyword Args:
            dn: bind as this dn instead of the configured user
            password: the password for ``dn``

        Raises:
            ValueError: the ``tls_verify`` value in the configuration is invalid
            OSError: a configured certificate or key file is missing or is
                not a file
            ProtocolError: we could not connect or bind

        Returns:
            A bound LDAPObject.

        """
        config = self.config
        if not dn:
            dn = config.get("user", "")
            password = config.get("password", "")
        ldap_object: ldap.ldapobject.LDAPObject = ldap.initialize(config["url"])  # type: ignore[name-defined]
        if config.get("follow_referrals", False):
            ldap_object.set_option(ldap.OPT_REFERRALS, 1)  # type: ignore[attr-defined]
        else:
            # Active Directory hands out referrals python-ldap can't chase
            # without rebinding
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
        timeout = config.get("timeout", 15.0)
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))  # type: ignore[attr-defined]
        sizelimit = config.get("sizelimit", None)
        if sizelimit:
            ldap_object.set_option(ldap.OPT_SIZELIMIT, int(sizelimit))  # type: ignore[attr-defined]
        tls_verify = config.get("tls_verify", "never")
        if tls_verify == "never":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
        elif tls_verify == "always":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
        else:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ValueError(msg)
        for option_key, option, label in (
            ("tls_ca_certfile", ldap.OPT_X_TLS_CACERTFILE, "CA Certificate"),  # type: ignore[attr-defined]
            ("tls_certfile", ldap.OPT_X_TLS_CERTFILE, "TLS Certificate"),  # type: ignore[attr-defined]
            ("tls_keyfile", ldap.OPT_X_TLS_KEYFILE, "TLS Key"),  # type: ignore[attr-defined]
        ):
            if path := config.get(option_key, None):
                if not Path(path).exists():
                    msg = f"{label} file does not exist: {path}"
                    raise OSError(msg)
                if not Path(path).is_file():
                    msg = f"{label} file is not a file: {path}"
                    raise OSError(msg)
                ldap_object.set_option(option, path)
        ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]
        try:
            if config.get("use_starttls", True):
                ldap_object.start_tls_s()
            ldap_object.simple_bind_s(dn, password)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            # Nobody else holds this connection, so release it here
            ldap_object.unbind_s()
            raise ProtocolError.from_ldap_error("bind", dn, exc) from exc
        return ldap_object

    # -----------------------
    # Entry points for the layers above
    # -----------------------

    def query(self, model: type["Entry"]) -> "QueryEngine":
        """
        Return a query engine for ``model`` bound to this session.
        """
        from .managers import QueryEngine

        return QueryEngine(model, self)

    def scope(self, sub_scope: Any = "") -> str:
        """
        Join a caller-supplied sub-scope onto our base dn.

        Args:
            sub_scope: a dn fragment like ``ou=Users`` or a
                :py:class:`~activedirectory.container.Container`

        Returns:
            ``"ou=Users,dc=example,dc=org"``, or just the base dn if
            ``sub_scope`` is empty.

        """
        return ",".join(part for part in (str(sub_scope or ""), self.basedn) if part)

    # -----------------------
    # Directory operations
    # -----------------------

    def _get_pctrls(self, serverctrls):
        """
        Return the paged results controls from the server's response controls.
        """
        return [
            c
            for c in serverctrls
            if c.controlType == SimplePagedResultsControl.controlType
        ]

    def _paged_search(
        self,
        basedn: str,
        searchfilter: str,
        attrlist: list[str] | None = None,
        sizelimit: int = 0,
        scope: int = SCOPE_SUBTREE,
    ) -> list[LDAPData]:
        """
        Search page by page.  Active Directory caps un-paged searches at
        ``MaxPageSize`` (1000 by default) results.

        ``sizelimit`` is never sent to the server: a server-side limit makes
        the server answer sizeLimitExceeded whenever more entries match.  We
        stop asking for pages once we have enough instead.

        Returns:
            List of ``(dn, attrs)`` tuples.

        """
        page_size = min(self.page_size, sizelimit) if sizelimit else self.page_size
        # The first request goes out with an empty cookie
        paging = SimplePagedResultsControl(True, size=page_size, cookie="")  # noqa: FBT003
        results: list[LDAPData] = []
        while True:
            msgid = self.connection.search_ext(
                basedn,
                scope,
                searchfilter,
                attrlist,
                serverctrls=[paging],
            )
            _, rdata, _, serverctrls = self.connection.result3(msgid)
            # AD appends search references (attrs not a dict); skip those
            results.extend((dn, attrs) for dn, attrs in rdata if isinstance(attrs, dict))
            paged_controls = self._get_pctrls(serverctrls)
            if not paged_controls or not paged_controls[0].cookie:
                break
            paging.cookie = paged_controls[0].cookie
            if sizelimit and len(results) >= sizelimit:
                # A page size of 0 tells the server to drop the paged search
                paging.size = 0
                self.connection.result3(
                    self.connection.search_ext(
                        basedn, scope, searchfilter, attrlist, serverctrls=[paging]
                    )
                )
                break
        if sizelimit:
            return results[:sizelimit]
        return results

    def _limited_search(
        self,
        basedn: str,
        searchfilter: str,
        attrlist: list[str] | None = None,
        sizelimit: int = 0,
        scope: int = SCOPE_SUBTREE,
    ) -> list[LDAPData]:
        """
        Search without paging, letting the server stop after ``sizelimit``
        entries.

        When more entries match than ``sizelimit`` allows, the server sends
        the first ``sizelimit`` of them and then ends the search with
        sizeLimitExceeded.  We read the entries one at a time so that the ones
        that arrived before that survive it.

        Returns:
            List of ``(dn, attrs)`` tuples.

        """
        msgid = self.connection.search_ext(
            basedn, scope, searchfilter, attrlist, sizelimit=sizelimit
        )
        results: list[LDAPData] = []
        while True:
            try:
                rtype, rdata, _, _ = self.connection.result3(msgid, all=0)
            except ldap.SIZELIMIT_EXCEEDED:  # type: ignore[attr-defined]
                self.logger.debug(
                    "activedirectory.session.search.sizelimit base=%s sizelimit=%d",
                    basedn,
                    sizelimit,
                )
                break
            results.extend((dn, attrs) for dn, attrs in rdata if isinstance(attrs, dict))
            if rtype == ldap.RES_SEARCH_RESULT:  # type: ignore[attr-defined]
                break
        return results

    @connected
    def search(
        self,
        searchfilter: Filter | str | None = None,
        base: str | None = None,
        scope: int = SCOPE_SUBTREE,
        attributes: list[str] | None = None,
        sizelimit: int = 0,
    ) -> list[RawEntry]:
        """
        Search the directory.

        Keyword Args:
            searchfilter: a :py:class:`~activedirectory.filters.Filter` or a
                filter string; ``None`` matches everything
            base: the dn to search under; defaults to our base dn
            scope: one of :py:data:`SCOPE_BASE`, :py:data:`SCOPE_ONELEVEL`,
                :py:data:`SCOPE_SUBTREE`
            attributes: the attributes to return; ``None`` means all of them
            sizelimit: stop after this many results; 0 means no limit

        Raises:
            ProtocolError: the server rejected the search

        Returns:
            The matching entries, in the order the server sent them.  A
            ``base`` that does not exist gives an empty list.

        """
        if base is None:
            base = self.basedn
        filterstr = MATCH_ALL if searchfilter is None else str(searchfilter)
        self.logger.debug(
            "activedirectory.session.search base=%s scope=%s filter=%s", base, scope, filterstr
        )
        try:
            if self.paged_search:
                data = self._paged_search(
                    base, filterstr, attrlist=attributes, sizelimit=sizelimit, scope=scope
                )
            else:
                data = self._limited_search(
                    base, filterstr, attrlist=attributes, sizelimit=sizelimit, scope=scope
                )
        except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
            return []
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise ProtocolError.from_ldap_error("search", base, exc) from exc
        results = [RawEntry(dn, attrs) for dn, attrs in data if isinstance(attrs, dict)]
        if sizelimit:
            results = results[:sizelimit]
        return results

    @connected
    def add(self, dn: str, attributes: dict[str, Any]) -> None:
        """
        Create the entry ``dn``.

        Args:
            dn: the distinguished name of the new entry
            attributes: attribute name to a value or a list of values.  Empty
                values are dropped.

        Raises:
            ProtocolError: the server refused to create the entry

        """
        _modlist: AddModList = []
        for name, value in attributes.items():
            values = value if isinstance(value, (list, tuple)) else [value]
            if values == [] or all(v is None for v in values):
                continue
            _modlist.append((name, cast("list[bytes]", encode_values(list(values)))))
        try:
            self.connection.add_s(dn, _modlist)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise ProtocolError.from_ldap_error("add", dn, exc) from exc
        self.logger.info("activedirectory.session.add.success dn=%s", dn)

    @connected
    def modify(self, dn: str, operations: list[Operation]) -> None:
        """
        Apply ``operations`` to the entry ``dn``, in order, as one request.

        Raises:
            ProtocolError: the server refused the modification

        """
        if not operations:
            self.logger.debug("activedirectory.session.modify.no-changes dn=%s", dn)
            return
        _modlist: ModifyModList = [op.to_modlist_entry() for op in operations]
        try:
            self.connection.modify_s(dn, _modlist)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise ProtocolError.from_ldap_error("modify", dn, exc) from exc
        self.logger.info(
            "activedirectory.session.modify.success dn=%s attributes=%s",
            dn,
            ",".join(op.attribute for op in operations),
        )

    @connected
    def delete(self, dn: str) -> None:
        """
        Delete the entry ``dn``.

        Raises:
            ProtocolError: the server refused the deletion

        """
        try:
            self.connection.delete_s(dn)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise ProtocolError.from_ldap_error("delete", dn, exc) from exc
        self.logger.info("activedirectory.session.delete.success dn=%s", dn)

    @connected
    def rename(self, dn: str, new_rdn: str, new_superior: str | None = None) -> str:
        """
        Rename ``dn`` to ``new_rdn``, optionally moving it under ``new_superior``.

        Raises:
            ProtocolError: the server refused the rename

        Returns:
            The new distinguished name.

        """
        try:
            self.connection.rename_s(dn, new_rdn, new_superior)
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            raise ProtocolError.from_ldap_error("rename", dn, exc) from exc
        parent = new_superior or ",".join(ldap.dn.explode_dn(dn)[1:])  # type: ignore[attr-defined]
        new_dn = f"{new_rdn},{parent}" if parent else new_rdn
        self.logger.info("activedirectory.session.rename.success dn=%s new_dn=%s", dn, new_dn)
        return new_dn

    def authenticate(self, dn: str, password: str) -> bool:
        """
        Check ``password`` by binding as ``dn`` on a separate connection.

        Empty passwords are refused outright: many servers treat a bind with
        an empty password as an anonymous bind, which always succeeds.

        Returns:
            ``True`` if the bind succeeded.

        Raises:
            ProtocolError: the server failed for some reason other than bad
                credentials

        """
        if not password:
            self.logger.warning("auth.empty_password dn=%s", dn)
            return False
        try:
            connection = self._connect(dn=dn, password=password)
        except ProtocolError as exc:
            if isinstance(exc.__cause__, ldap.INVALID_CREDENTIALS):  # type: ignore[attr-defined]
                self.logger.warning("auth.invalid_credentials dn=%s", dn)
                return False
            raise
        connection.unbind_s()
        self.logger.info("auth.success dn=%s", dn)
        return True
