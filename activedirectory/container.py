"""
Distinguished name building.

A :py:class:`Container` is a more malleable way of dealing with distinguished
names like ``cn=jdoe,ou=Users,dc=example,dc=org``.  These two are the same::

    dn = "cn=jdoe,ou=Users,dc=example,dc=org"
    dn = Container.dc("org").dc("example").ou("Users").cn("jdoe")

Each call appends a child component; rendering starts at the innermost
component and walks out through the parents.
"""

from typing import Any, Final


class _Constructor:
    """
    Lets ``cn``/``ou``/``dc`` work both as ``Container.ou("Users")`` (a
    new root component) and as ``container.ou("Users")`` (a child of
    ``container``).
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind

    def __get__(self, instance: "Container | None", owner: type["Container"]):
        def build(name: str) -> "Container":
            return owner(self.kind, name, instance)

        build.__name__ = self.kind
        return build


class Container:
    """
    One component of a distinguished name, linked to its parent.

    Args:
        kind: one of ``cn``, ``ou`` or ``dc``
        name: the component value
        parent: the enclosing container, or ``None`` for the outermost one

    Raises:
        ValueError: ``kind`` is not one we know about

    """

    #: The component kinds a container may have.
    KINDS: Final[tuple[str, ...]] = ("cn", "ou", "dc")

    cn = _Constructor("cn")
    ou = _Constructor("ou")
    dc = _Constructor("dc")

    def __init__(self, kind: str, name: str, parent: "Container | None" = None) -> None:
        if kind not in self.KINDS:
            msg = f"Unknown distinguished name component kind: {kind!r}"
            raise ValueError(msg)
        self.kind = kind
        self.name = name
        self.parent = parent

    def __str__(self) -> str:
        if self.parent is not None:
            return f"{self.kind}={self.name},{self.parent}"
        return f"{self.kind}={self.name}"

    def __repr__(self) -> str:
        return f"<Container: {self}>"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, (Container, str)):
            return NotImplemented
        return str(self).lower() == str(other).lower()

    def __hash__(self) -> int:
        return hash(str(self).lower())

    @property
    def components(self) -> list[tuple[str, str]]:
        """
        The ``(kind, name)`` pairs, innermost first.
        """
        parts: list[tuple[str, str]] = []
        node: Container | None = self
        while node is not None:
            parts.append((node.kind, node.name))
            node = node.parent
        return parts
