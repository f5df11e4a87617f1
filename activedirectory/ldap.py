# Sessions import ``ldap`` through this module so that tests can patch
# ``activedirectory.ldap.initialize`` with python-ldap-faker.
import ldap
from ldap import *  # noqa: F403
from ldap import dn, ldapobject  # noqa: F401

__version__ = ldap.__version__
