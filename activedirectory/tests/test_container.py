# type: ignore
"""
Tests for distinguished name building.
"""

import unittest

from activedirectory.container import Container


class TestContainer(unittest.TestCase):

    def test_single_component(self):
        self.assertEqual(str(Container.ou("Users")), "ou=Users")

    def test_chained_components_render_innermost_first(self):
        dn = Container.dc("com").dc("example").ou("Staff").cn("James Hunt")
        self.assertEqual(str(dn), "cn=James Hunt,ou=Staff,dc=example,dc=com")

    def test_components(self):
        dn = Container.dc("com").ou("Staff")
        self.assertEqual(dn.components, [("ou", "Staff"), ("dc", "com")])

    def test_parent_is_unchanged(self):
        parent = Container.dc("com")
        parent.ou("Staff")
        self.assertEqual(str(parent), "dc=com")

    def test_equality_ignores_case(self):
        a = Container.dc("com").ou("Staff")
        b = Container.dc("COM").ou("staff")
        self.assertEqual(a, b)
        self.assertEqual(hash(a), hash(b))

    def test_equals_string(self):
        self.assertEqual(Container.dc("com").ou("Staff"), "OU=Staff,DC=com")

    def test_not_equal(self):
        self.assertNotEqual(Container.ou("Staff"), Container.ou("Groups"))

    def test_unknown_kind(self):
        with self.assertRaises(ValueError):
            Container("uid", "jdoe")


if __name__ == "__main__":
    unittest.main()
