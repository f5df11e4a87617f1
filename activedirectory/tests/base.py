# type: ignore
"""
Shared fixtures for the tests that talk to a (fake) directory.

The directory looks like this::

    dc=example,dc=com
        ou=Staff          James Hunt (jhunt), Ann Lee (alee)
        ou=Contractors    Bob Ray (bray)
        ou=Computers      WS01
        ou=Groups         Admins <-> Engineering (a cycle)
                          Top -> Left, Right -> Shared (a diamond)
                          Empty

Engineering also lists a member that no longer exists.  python-ldap-faker
does not maintain ``memberOf`` for us, so the fixtures set it by hand.
"""

import copy

import django
from django.conf import settings
from ldap_faker.unittest import LDAPFakerMixin

from activedirectory.session import Session

BASEDN = "dc=example,dc=com"

CONFIG = {
    "url": "ldap://localhost:389",
    "user": "cn=admin,dc=example,dc=com",
    "password": "admin",
    "basedn": BASEDN,
    "use_starttls": False,
    "tls_verify": "never",
    "timeout": 15.0,
    "sizelimit": 1000,
    "follow_referrals": False,
}

# Configure Django settings before anything reads them
if not settings.configured:
    settings.configure(LDAP_SERVERS={"default": CONFIG})
    django.setup()


JHUNT = "cn=James Hunt,ou=Staff,dc=example,dc=com"
ALEE = "cn=Ann Lee,ou=Staff,dc=example,dc=com"
BRAY = "cn=Bob Ray,ou=Contractors,dc=example,dc=com"
WS01 = "cn=WS01,ou=Computers,dc=example,dc=com"
GONE = "cn=Gone Person,ou=Staff,dc=example,dc=com"
ADMINS = "cn=Admins,ou=Groups,dc=example,dc=com"
ENGINEERING = "cn=Engineering,ou=Groups,dc=example,dc=com"
TOP = "cn=Top,ou=Groups,dc=example,dc=com"
LEFT = "cn=Left,ou=Groups,dc=example,dc=com"
RIGHT = "cn=Right,ou=Groups,dc=example,dc=com"
SHARED = "cn=Shared,ou=Groups,dc=example,dc=com"
EMPTY = "cn=Empty,ou=Groups,dc=example,dc=com"
DELETED_GROUP = "cn=Deleted,ou=Groups,dc=example,dc=com"

USER_CLASSES = [b"top", b"person", b"organizationalPerson", b"user"]
GROUP_CLASSES = [b"top", b"group"]


def user(dn, sam, memberof=(), **extra):
    attrs = {
        "objectClass": list(USER_CLASSES),
        "distinguishedName": [dn.encode()],
        "cn": [dn.split(",")[0][3:].encode()],
        "name": [dn.split(",")[0][3:].encode()],
        "sAMAccountName": [sam.encode()],
        "userPassword": [b"secret"],
        "whenCreated": [b"20240102030405.0Z"],
    }
    if memberof:
        attrs["memberOf"] = [g.encode() for g in memberof]
    for key, value in extra.items():
        attrs[key] = [v.encode() for v in value] if isinstance(value, list) else [value.encode()]
    return (dn, attrs)


def group(dn, members=(), memberof=()):
    name = dn.split(",")[0][3:]
    attrs = {
        "objectClass": list(GROUP_CLASSES),
        "distinguishedName": [dn.encode()],
        "cn": [name.encode()],
        "name": [name.encode()],
        "sAMAccountName": [name.lower().encode()],
    }
    if members:
        attrs["member"] = [m.encode() for m in members]
    if memberof:
        attrs["memberOf"] = [g.encode() for g in memberof]
    return (dn, attrs)


FIXTURES = [
    (
        "cn=admin,dc=example,dc=com",
        {
            "cn": [b"admin"],
            "userPassword": [b"admin"],
            "objectClass": [b"simpleSecurityObject", b"organizationalRole", b"top"],
        },
    ),
    user(
        JHUNT,
        "jhunt",
        memberof=[ADMINS],
        mail="jhunt@example.com",
        sn="Hunt",
        givenName="James",
        userAccountControl="512",
        lastLogonTimestamp="116444736000000000",
        accountExpires="9223372036854775807",
        proxyAddresses=["SMTP:jhunt@example.com", "smtp:james@example.com"],
    ),
    user(ALEE, "alee", memberof=[ENGINEERING, DELETED_GROUP], sn="Lee", givenName="Ann"),
    user(BRAY, "bray", memberof=[LEFT, SHARED], sn="Ray", givenName="Bob"),
    (
        WS01,
        {
            "objectClass": [*USER_CLASSES, b"computer"],
            "distinguishedName": [WS01.encode()],
            "cn": [b"WS01"],
            "name": [b"WS01"],
            "sAMAccountName": [b"WS01$"],
            "dNSHostName": [b"ws01.example.com"],
            "isCriticalSystemObject": [b"FALSE"],
        },
    ),
    group(ADMINS, members=[JHUNT, ENGINEERING], memberof=[ENGINEERING]),
    group(ENGINEERING, members=[ALEE, ADMINS, GONE], memberof=[ADMINS]),
    group(TOP, members=[LEFT, RIGHT]),
    group(LEFT, members=[BRAY, SHARED], memberof=[TOP]),
    group(RIGHT, members=[SHARED], memberof=[TOP]),
    group(SHARED, members=[BRAY], memberof=[LEFT, RIGHT]),
    group(EMPTY),
]


class DirectoryTestCase(LDAPFakerMixin):
    """
    Mix into a :py:class:`unittest.TestCase` to get a fake directory loaded
    with :py:data:`FIXTURES` and a :py:class:`Session` pointed at it.
    """

    ldap_modules = ["activedirectory"]

    def setUp(self):
        super().setUp()
        self.server_factory.default.raw_objects.clear()
        self.server_factory.default.objects.clear()
        for dn, attrs in FIXTURES:
            self.server_factory.default.register_object((dn, copy.deepcopy(attrs)))
        self.session = Session(dict(CONFIG))
