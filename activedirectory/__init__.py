"""
An Active Directory object mapper built on python-ldap.

Entries (users, groups and computers) are loaded into typed objects that stage
local edits until saved, searched through a query engine that adds each type's
mandatory filter, and related through transitive group membership.
"""

__version__ = "1.0.0"
