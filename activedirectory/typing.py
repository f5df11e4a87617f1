"""
Active Directory type definitions.

Type aliases for the raw data python-ldap hands us and for the modlists we
hand back to it.
"""

from typing import Any

#: An attribute dictionary as returned by ``search_s``.
RawAttributes = dict[str, list[bytes]]
#: One search result: ``(dn, attributes)``.
LDAPData = tuple[str, RawAttributes]
#: A ``modify_s`` modlist: ``(mod_op, attribute, values or None)``.
ModifyModList = list[tuple[int, str, list[bytes] | None]]
#: An ``add_s`` modlist: ``(attribute, values)``.
AddModList = list[tuple[str, list[bytes]]]
#: Anything a caller may stage as an attribute value.
AttributeValue = str | bytes | int | bool | list[Any] | tuple[Any, ...] | None
