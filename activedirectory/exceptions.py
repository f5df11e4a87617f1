"""
Error kinds raised by the Active Directory mapper.

Lookups that find nothing and member references that no longer resolve are
not errors: they come back as ``None`` or as an empty list.
"""

from typing import Any

from django.core import exceptions


class ActiveDirectoryError(Exception):
    """Base class for errors raised by this package."""


class ValidationError(exceptions.ValidationError):
    """
    A caller error, detected before anything is sent to the directory.

    Raised when a create is missing mandatory attributes, when a finder
    request is malformed, or when its argument count does not match the
    attributes it names.
    """


class ProtocolError(ActiveDirectoryError):
    """
    The directory server, or our connection to it, reported a failure.

    Args:
        operation: the directory operation we were attempting (``search``,
            ``add``, ``modify``, ``delete``, ``rename``, ``bind``)
        dn: the distinguished name the operation was aimed at

    Keyword Args:
        code: the LDAP result code, if the server sent one
        message: the server's diagnostic message

    """

    #: LDAP result codes after which retrying the same request may succeed:
    #: busy (51), unavailable (52), server down (-1) and timeout (-5).
    RETRYABLE_CODES: tuple[int, ...] = (51, 52, -1, -5)

    def __init__(
        self,
        operation: str,
        dn: str | None,
        code: int | None = None,
        message: str = "",
    ) -> None:
        self.operation = operation
        self.dn = dn
        self.code = code
        self.message = message
        super().__init__(f"{operation} failed for dn={dn}: [{code}] {message}")

    @property
    def retryable(self) -> bool:
        """
        Whether the failure looks transient.

        Returns:
            ``True`` if the caller may reasonably retry the operation.

        """
        return self.code in self.RETRYABLE_CODES

    @classmethod
    def from_ldap_error(cls, operation: str, dn: str | None, exc: Exception) -> "ProtocolError":
        """
        Wrap a python-ldap exception.

        python-ldap puts a dict like ``{"result": 32, "desc": "No such object",
        "info": "..."}`` in ``exc.args[0]``; we pull the code and the most
        useful message out of it.

        Args:
            operation: the operation we were attempting
            dn: the dn the operation was aimed at
            exc: the ``ldap.LDAPError`` that was raised

        Returns:
            A new :py:class:`ProtocolError`.

        """
        code: int | None = None
        message = str(exc)
        if exc.args and isinstance(exc.args[0], dict):
            details: dict[str, Any] = exc.args[0]
            code = details.get("result", getattr(exc, "errnum", None))
            message = " ".join(
                str(details[key]) for key in ("desc", "info") if details.get(key)
            )
        else:
            code = getattr(exc, "errnum", None)
        return cls(operation, dn, code=code, message=message)
