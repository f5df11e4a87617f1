# type: ignore
"""
Tests for entries and the query engine using python-ldap-faker.
"""

import datetime
import unittest

import pytz

from activedirectory.codecs import Password
from activedirectory.container import Container
from activedirectory.exceptions import ProtocolError, ValidationError
from activedirectory.fields import CharField
from activedirectory.filters import Equals, Present
from activedirectory.managers import Modlist, QueryEngine
from activedirectory.models import Computer, Entry, Group, User
from activedirectory.session import Operation
from activedirectory.tests.base import (
    ADMINS,
    ALEE,
    BASEDN,
    BRAY,
    JHUNT,
    WS01,
    DirectoryTestCase,
    user as user_fixture,
)


class TestEntryTypes(unittest.TestCase):

    def test_type_filters(self):
        self.assertEqual(
            User._meta.filter.render(), "(&(objectClass=user)(!(objectClass=computer)))"
        )
        self.assertEqual(Group._meta.filter.render(), "(objectClass=group)")
        self.assertEqual(Computer._meta.filter.render(), "(objectClass=computer)")
        self.assertIsNone(Entry._meta.filter)

    def test_fields_are_inherited(self):
        self.assertIn("description", User._meta.fields_map)
        self.assertIn("sam_account_name", User._meta.fields_map)
        self.assertNotIn("sam_account_name", Entry._meta.fields_map)
        self.assertEqual(User._meta.attributes_map["last_logon"], "lastLogonTimestamp")

    def test_invalid_meta(self):
        with self.assertRaises(TypeError):

            class Bad(Entry):
                class Meta:
                    objectclass = "bad"

    def test_subclass_keeps_parent_meta(self):
        class Staff(User):
            employee_type = CharField("employeeType")

        self.assertEqual(Staff._meta.filter, User._meta.filter)
        self.assertEqual(Staff._meta.mandatory_attributes, ("sAMAccountName",))
        self.assertIn("employee_type", Staff._meta.fields_map)


class TestUnsavedEntry(unittest.TestCase):

    def test_attribute_access(self):
        user = User({"sAMAccountName": "jdoe", "proxyAddresses": ["a", "b"]})
        self.assertTrue(user.new_record)
        self.assertTrue(user.changed)
        self.assertEqual(user.attribute("samaccountname"), "jdoe")
        self.assertEqual(user["proxyAddresses"], ["a", "b"])
        self.assertEqual(user.values("sAMAccountName"), ["jdoe"])
        self.assertIsNone(user.attribute("mail"))
        self.assertEqual(user.values("mail"), [])

    def test_staged_delete_reads_empty(self):
        user = User()
        user.set_attribute("mail", None)
        self.assertEqual(user.attribute("mail"), [])
        self.assertEqual(user.pending, {"mail": None})

    def test_later_edit_replaces_earlier(self):
        user = User()
        user["Mail"] = "a@example.com"
        user["mail"] = "b@example.com"
        self.assertEqual(user.changed_attributes, ["mail"])
        self.assertEqual(user.mail, "b@example.com")

    def test_typed_fields(self):
        user = User()
        user.mail = "jdoe@example.com"
        user.user_account_control = 512
        user.account_expires = datetime.datetime(1970, 1, 1, tzinfo=pytz.UTC)
        self.assertEqual(user.attribute("mail"), "jdoe@example.com")
        self.assertEqual(user.attribute("userAccountControl"), "512")
        self.assertEqual(user.user_account_control, 512)
        self.assertEqual(user.attribute("accountExpires"), "116444736000000000")

    def test_boolean_field(self):
        user = User()
        self.assertIsNone(user.is_critical_system_object)
        user.set_attribute("isCriticalSystemObject", True)
        self.assertEqual(user.attribute("isCriticalSystemObject"), "TRUE")
        self.assertTrue(user.is_critical_system_object)
        user.set_attribute("isCriticalSystemObject", "FALSE")
        self.assertFalse(user.is_critical_system_object)
        with self.assertRaises(AttributeError):
            user.is_critical_system_object = True

    def test_read_only_field(self):
        user = User()
        with self.assertRaises(AttributeError):
            user.when_created = datetime.datetime.now(tz=pytz.UTC)

    def test_set_password(self):
        user = User()
        user.set_password("pw")
        self.assertEqual(user.attribute("unicodePwd"), Password.encode("pw"))
        self.assertIsNone(user.password)

    def test_unsaved_entries_compare_by_identity(self):
        a = User({"cn": "x"})
        b = User({"cn": "x"})
        self.assertEqual(a, a)
        self.assertNotEqual(a, b)


class TestQueryEngine(DirectoryTestCase, unittest.TestCase):

    def test_reachable_from_session_and_type(self):
        self.assertIsInstance(self.session.query(User), QueryEngine)
        self.assertIsInstance(User.query(self.session), QueryEngine)

    def test_find_first(self):
        user = User.query(self.session).find_first({"sAMAccountName": "jhunt"})
        self.assertIsInstance(user, User)
        self.assertEqual(user.dn, JHUNT)
        self.assertTrue(user.exists)
        self.assertFalse(user.changed)

    def test_find_first_no_match(self):
        self.assertIsNone(User.query(self.session).find_first({"sAMAccountName": "nobody"}))

    def test_find_all(self):
        users = User.query(self.session).find_all()
        self.assertEqual({u.dn for u in users}, {JHUNT, ALEE, BRAY})

    def test_find_all_no_match(self):
        self.assertEqual(User.query(self.session).find_all({"sn": "Nobody"}), [])

    def test_user_excludes_computers(self):
        self.assertIsNone(User.query(self.session).find_first({"cn": "WS01"}))
        computer = Computer.query(self.session).find_first({"cn": "WS01"})
        self.assertEqual(computer.dn, WS01)

    def test_find_with_filter(self):
        users = User.query(self.session).find_all(Present("mail"))
        self.assertEqual([u.dn for u in users], [JHUNT])

    def test_find_with_wildcard(self):
        users = User.query(self.session).find_all({"sAMAccountName": "j*"})
        self.assertEqual([u.dn for u in users], [JHUNT])

    def test_find_value_with_parentheses(self):
        dn = f"cn=Pat Doe (Admin),ou=Staff,{BASEDN}"
        self.server_factory.default.register_object(user_fixture(dn, "pdoe-admin"))
        found = User.query(self.session).find_first({"cn": "Pat Doe (Admin)"})
        self.assertEqual(found.dn, dn)

    def test_find_with_scope(self):
        users = User.query(self.session).find_all(scope="ou=Contractors")
        self.assertEqual([u.dn for u in users], [BRAY])
        users = User.query(self.session).find_all(scope=Container.ou("Staff"))
        self.assertEqual({u.dn for u in users}, {JHUNT, ALEE})

    def test_find_bad_cardinality(self):
        with self.assertRaises(ValidationError):
            User.query(self.session).find("some")

    def test_find_bad_criteria(self):
        with self.assertRaises(TypeError):
            User.query(self.session).find_all(42)

    def test_build_filter(self):
        engine = Group.query(self.session)
        self.assertEqual(
            engine.build_filter({"cn": "Admins"}).render(), "(&(cn=Admins)(objectClass=group))"
        )
        self.assertEqual(engine.build_filter().render(), "(objectClass=group)")
        self.assertEqual(Entry.query(self.session).build_filter().render(), "(cn=*)")

    def test_get_by_dn(self):
        group = Group.query(self.session).get_by_dn(ADMINS)
        self.assertIsInstance(group, Group)
        self.assertEqual(group.dn, ADMINS)

    def test_get_by_dn_wrong_type(self):
        self.assertIsNone(Group.query(self.session).get_by_dn(JHUNT))

    def test_get_by_dn_missing(self):
        self.assertIsNone(Group.query(self.session).get_by_dn(f"cn=Nobody,{BASEDN}"))

    def test_exists(self):
        engine = User.query(self.session)
        self.assertTrue(engine.exists({"sAMAccountName": "jhunt"}))
        self.assertFalse(engine.exists({"sAMAccountName": "nobody"}))
        self.assertFalse(engine.exists({"sAMAccountName": "WS01$"}))

    def test_finder(self):
        users = User.query(self.session).finder(
            "find all by sAMAccountName and mail", "jhunt", "jhunt@example.com"
        )
        self.assertEqual([u.dn for u in users], [JHUNT])
        user = User.query(self.session).finder("find_by_sn", "Lee")
        self.assertEqual(user.dn, ALEE)

    def test_finder_argument_mismatch(self):
        with self.assertRaises(ValidationError):
            User.query(self.session).finder("find all by sAMAccountName and mail", "jhunt")


class TestEntryWithFaker(DirectoryTestCase, unittest.TestCase):

    def get_user(self, dn=JHUNT):
        return User.query(self.session).get_by_dn(dn)

    def test_loaded_attributes(self):
        user = self.get_user()
        self.assertEqual(user.attribute("SAMACCOUNTNAME"), "jhunt")
        self.assertEqual(user.sam_account_name, "jhunt")
        self.assertEqual(user.proxy_addresses, ["SMTP:jhunt@example.com", "smtp:james@example.com"])
        self.assertEqual(user.user_account_control, 512)
        self.assertEqual(user.last_logon, datetime.datetime(1970, 1, 1, tzinfo=pytz.UTC))
        self.assertIsNone(user.account_expires)
        self.assertEqual(
            user.when_created, datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=pytz.UTC)
        )
        self.assertEqual(str(user), JHUNT)

    def test_equality_by_dn(self):
        self.assertEqual(self.get_user(), self.get_user())
        self.assertNotEqual(self.get_user(), self.get_user(ALEE))
        self.assertEqual(len({self.get_user(), self.get_user()}), 1)

    def test_staged_edit_is_visible_before_save(self):
        user = self.get_user()
        user.mail = "james@example.com"
        self.assertEqual(user.mail, "james@example.com")
        self.assertTrue(user.changed)
        # But not in the directory
        self.assertEqual(self.get_user().mail, "jhunt@example.com")

    def test_save(self):
        user = self.get_user()
        user.set_attribute("mail", "x@example.org")
        self.assertTrue(user.save())
        self.assertEqual(user.attribute("mail"), "x@example.org")
        self.assertFalse(user.changed)
        self.assertEqual(self.get_user().mail, "x@example.org")

    def test_save_adds_and_deletes(self):
        user = self.get_user()
        user.title = "Engineer"
        user.mail = None
        user.set_attribute("telephoneNumber", None)
        self.assertTrue(user.save())
        fresh = self.get_user()
        self.assertEqual(fresh.title, "Engineer")
        self.assertIsNone(fresh.attribute("mail"))
        self.assertIsNone(fresh.attribute("telephoneNumber"))

    def test_save_without_changes(self):
        self.assertTrue(self.get_user().save())

    def test_save_new_record(self):
        user = User({"sAMAccountName": "nobody"}, session=self.session)
        self.assertFalse(user.save())

    def test_save_new_record_without_edits(self):
        self.assertTrue(User(session=self.session).save())

    def test_save_failure_keeps_edits(self):
        user = self.get_user()
        user.description = "gone soon"
        self.session.delete(JHUNT)
        with self.assertRaises(ProtocolError):
            user.save()
        self.assertTrue(user.changed)
        self.assertEqual(user.description, "gone soon")

    def test_update_attribute(self):
        user = self.get_user()
        self.assertTrue(user.update_attribute("description", "Racing driver"))
        self.assertEqual(self.get_user().description, "Racing driver")

    def test_update_attributes(self):
        user = self.get_user()
        self.assertTrue(user.update_attributes({"description": "Racing driver", "title": "Champion"}))
        fresh = self.get_user()
        self.assertEqual((fresh.description, fresh.title), ("Racing driver", "Champion"))

    def test_reload_discards_edits(self):
        user = self.get_user()
        user.mail = "other@example.com"
        self.assertTrue(user.reload())
        self.assertFalse(user.changed)
        self.assertEqual(user.mail, "jhunt@example.com")

    def test_reload_after_delete(self):
        user = self.get_user()
        self.session.delete(JHUNT)
        self.assertFalse(user.reload())
        self.assertFalse(user.exists)

    def test_create(self):
        dn = Container.dc("com").dc("example").ou("Staff").cn("New Person")
        user = User.create(
            self.session,
            dn,
            {"sAMAccountName": "nperson", "sn": "Person", "objectClass": ["bogus"]},
        )
        self.assertIsInstance(user, User)
        self.assertEqual(user.dn, f"cn=New Person,ou=Staff,{BASEDN}")
        self.assertEqual(user.sn, "Person")
        self.assertEqual(user.object_class, ["top", "person", "organizationalPerson", "user"])

    def test_create_group(self):
        group = Group.create(self.session, f"cn=New,ou=Groups,{BASEDN}", {"sAMAccountName": "new"})
        self.assertEqual(group.object_class, ["top", "group"])
        self.assertEqual(group.member_users(), [])

    def test_create_missing_mandatory_attribute(self):
        with self.assertRaises(ValidationError):
            User.create(self.session, f"cn=New Person,ou=Staff,{BASEDN}", {"sn": "Person"})
        self.assertIsNone(self.get_user(f"cn=New Person,ou=Staff,{BASEDN}"))

    def test_create_without_identity(self):
        with self.assertRaises(ValidationError):
            User.create(self.session, "", {"sAMAccountName": "nperson"})

    def test_create_existing(self):
        self.assertIsNone(User.create(self.session, JHUNT, {"sAMAccountName": "jhunt"}))

    def test_destroy(self):
        user = self.get_user()
        self.assertTrue(user.destroy())
        self.assertFalse(user.exists)
        self.assertTrue(user.new_record)
        self.assertIsNone(self.get_user())
        self.assertFalse(user.destroy())

    def test_destroy_failure(self):
        user = self.get_user()
        self.session.delete(JHUNT)
        with self.assertRaises(ProtocolError):
            user.destroy()

    def test_move(self):
        user = self.get_user()
        self.assertTrue(user.move("cn=Jim Hunt"))
        self.assertEqual(user.dn, f"cn=Jim Hunt,ou=Staff,{BASEDN}")
        self.assertIsNone(self.get_user())

    def test_move_to_new_parent(self):
        user = self.get_user()
        self.assertTrue(user.move("cn=James Hunt", Container.dc("com").dc("example").ou("Contractors")))
        self.assertEqual(user.dn, f"cn=James Hunt,ou=Contractors,{BASEDN}")

    def test_authenticate(self):
        user = self.get_user()
        self.assertTrue(user.authenticate("secret"))
        self.assertFalse(user.authenticate("wrong"))
        self.assertFalse(user.authenticate(""))

    def test_computer_hostname(self):
        computer = Computer.query(self.session).get_by_dn(WS01)
        self.assertEqual(computer.hostname, "ws01.example.com")
        self.assertFalse(computer.is_critical_system_object)
        computer.dns_host_name = None
        self.assertEqual(computer.hostname, "WS01")


class TestModlist(DirectoryTestCase, unittest.TestCase):

    def test_update(self):
        user = User.query(self.session).get_by_dn(JHUNT)
        user.set_attribute("MAIL", "a@example.com")
        user.set_attribute("title", "Engineer")
        user.set_attribute("sn", None)
        user.set_attribute("telephoneNumber", None)
        self.assertEqual(
            Modlist(user).update(),
            [
                Operation("replace", "mail", ["a@example.com"]),
                Operation("add", "title", ["Engineer"]),
                Operation("delete", "sn"),
            ],
        )

    def test_add_merges_required_attributes(self):
        data = Modlist.add(Group, {"objectclass": ["bogus"], "cn": "x"})
        self.assertEqual(data, {"cn": "x", "objectClass": ["top", "group"]})


if __name__ == "__main__":
    unittest.main()
