# type: ignore
from unittest.mock import patch

from ldapdirectory.client import DirectoryClient
from ldapdirectory.entries import DirectoryEntry
from ldapdirectory.exceptions import NotFound, ProtocolError
from ldapdirectory.fields import CharField, CharListField, IntegerField
from ldapdirectory.groups import GroupsResult, MembershipResult
from ldapdirectory.records import Record
from ldapdirectory.session import DirectorySession

from .base import (
    ADMINS_DN,
    ALICE_DN,
    BOB_DN,
    CHARLIE_DN,
    DEVELOPERS_DN,
    GROUPS_DN,
    USERS_DN,
    FakeDirectoryTestCase,
)


class Person(Record):
    uid = CharField(required=True)
    cn = CharField()
    uid_number = IntegerField(db_column="uidNumber")


class MailUser(Record):
    uid = CharField(required=True)
    mail = CharField(required=True)


class Group(Record):
    cn = CharField(required=True)
    description = CharField()
    members = CharListField(db_column="member")


class Team(Record):
    cn = CharField(required=True)
    business_category = CharField(db_column="businessCategory", required=True)


class GroupTestCase(FakeDirectoryTestCase):

    def setUp(self):
        super().setUp()
        self.client = DirectoryClient(self.config)
        self.groups = self.client.groups

    def tearDown(self):
        self.client.close()
        super().tearDown()


class TestMemberDNs(GroupTestCase):

    def test_lists_members(self):
        self.assertEqual(self.groups.member_dns(DEVELOPERS_DN), [ALICE_DN, BOB_DN])

    def test_missing_group(self):
        with self.assertRaises(NotFound):
            self.groups.member_dns(f"cn=ghosts,{GROUPS_DN}")


class TestListMembers(GroupTestCase):

    def test_returns_entries_in_member_order(self):
        result = self.client.get_members(DEVELOPERS_DN)
        self.assertIsInstance(result, MembershipResult)
        self.assertEqual([entry.dn for entry in result.members], [ALICE_DN, BOB_DN])
        self.assertIsInstance(result.members[0], DirectoryEntry)
        self.assertEqual(result.skipped, 0)
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.errors, [])

    def test_limits_attributes(self):
        result = self.client.get_members(ADMINS_DN, attributes=["uid"])
        self.assertEqual(len(result.members), 1)
        self.assertEqual(result.members[0].first_text("uid"), "alice")
        self.assertNotIn("cn", result.members[0])

    def test_materializes_records(self):
        result = self.client.get_members(DEVELOPERS_DN, record_type=Person)
        self.assertEqual([p.uid for p in result.members], ["alice", "bob"])
        self.assertEqual(result.members[1].uid_number, 1002)

    def test_schema_mismatches_are_collected(self):
        result = self.client.get_members(DEVELOPERS_DN, record_type=MailUser)
        self.assertEqual(result.members, [])
        self.assertEqual(len(result.errors), 2)
        self.assertEqual(result.errors[0].dn, ALICE_DN)
        self.assertIn("mail", result.errors[0].errors)

    def test_dangling_member_is_skipped(self):
        ghost = f"uid=ghost,{USERS_DN}"
        self.client.add_user_to_group(DEVELOPERS_DN, ghost)
        with self.assertLogs("ldapdirectory.groups", "WARNING") as logs:
            result = self.client.get_members(DEVELOPERS_DN)
        self.assertEqual([entry.dn for entry in result.members], [ALICE_DN, BOB_DN])
        self.assertEqual(result.skipped, 1)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn(ghost, result.warnings[0])
        self.assertIn("ldapdirectory.groups.dangling-member", logs.output[0])

    def test_empty_group(self):
        self.client.remove_users_from_group(ADMINS_DN, [ALICE_DN])
        result = self.client.get_members(ADMINS_DN)
        self.assertEqual(result.members, [])
        self.assertEqual(result.skipped, 0)

    def test_missing_group(self):
        with self.assertRaises(NotFound):
            self.client.get_members(f"cn=ghosts,{GROUPS_DN}")

    def test_sessions_are_returned(self):
        self.client.get_members(DEVELOPERS_DN)
        stats = self.client.pool.stats()
        self.assertEqual(stats.leased, 0)
        self.assertLessEqual(stats.total, self.config.pool_size)

    def test_other_failures_are_raised(self):
        with patch.object(
            DirectorySession,
            "search",
            autospec=True,
            side_effect=[
                [DirectoryEntry(DEVELOPERS_DN, {"member": [ALICE_DN, BOB_DN]})],
                ProtocolError("Searching", result_code=50, description="Insufficient access"),
                ProtocolError("Searching", result_code=50, description="Insufficient access"),
            ],
        ), self.assertRaises(ProtocolError):
            self.client.get_members(DEVELOPERS_DN)


class TestChangeMembership(GroupTestCase):

    def test_add_member(self):
        self.client.add_user_to_group(ADMINS_DN, BOB_DN)
        self.assertEqual(self.groups.member_dns(ADMINS_DN), [ALICE_DN, BOB_DN])

    def test_add_several_members(self):
        self.client.add_user_to_group(ADMINS_DN, [BOB_DN, CHARLIE_DN])
        self.assertEqual(self.groups.member_dns(ADMINS_DN), [ALICE_DN, BOB_DN, CHARLIE_DN])

    def test_add_existing_member(self):
        with self.assertRaises(ProtocolError):
            self.client.add_user_to_group(ADMINS_DN, ALICE_DN)

    def test_add_to_missing_group(self):
        with self.assertRaises(NotFound):
            self.client.add_user_to_group(f"cn=ghosts,{GROUPS_DN}", ALICE_DN)

    def test_remove_some_members(self):
        self.client.remove_users_from_group(DEVELOPERS_DN, [ALICE_DN])
        self.assertEqual(self.groups.member_dns(DEVELOPERS_DN), [BOB_DN])

    def test_remove_all_members(self):
        self.client.remove_users_from_group(DEVELOPERS_DN, [ALICE_DN, BOB_DN])
        self.assertEqual(self.groups.member_dns(DEVELOPERS_DN), [])

    def test_remove_is_a_single_modify(self):
        with patch.object(DirectorySession, "modify", autospec=True) as modify:
            self.client.remove_users_from_group(DEVELOPERS_DN, [ALICE_DN, BOB_DN])
        modify.assert_called_once()
        _, dn, changes = modify.call_args.args
        self.assertEqual(dn, DEVELOPERS_DN)
        self.assertEqual(len(changes), 1)
        self.assertEqual(changes[0][1], "member")
        self.assertEqual(changes[0][2], [ALICE_DN.encode(), BOB_DN.encode()])

    def test_refused_removal_changes_nothing(self):
        with patch.object(
            DirectorySession,
            "modify",
            autospec=True,
            side_effect=ProtocolError("Modifying", result_code=16, description="No such attribute"),
        ), self.assertRaises(ProtocolError):
            self.client.remove_users_from_group(DEVELOPERS_DN, [ALICE_DN, CHARLIE_DN])
        self.assertEqual(self.groups.member_dns(DEVELOPERS_DN), [ALICE_DN, BOB_DN])
        self.assertEqual(self.client.pool.leased_count, 0)

    def test_nothing_to_do(self):
        with patch.object(DirectorySession, "modify", autospec=True) as modify:
            self.client.add_user_to_group(ADMINS_DN, [])
            self.client.remove_users_from_group(ADMINS_DN, [])
        modify.assert_not_called()


class TestCreateGroup(GroupTestCase):

    def test_create_group(self):
        dn = self.client.create_group("testers", GROUPS_DN, "The testers", members=[CHARLIE_DN])
        self.assertEqual(dn, f"cn=testers,{GROUPS_DN}")
        group = self.client.search(dn, 0, "(objectClass=groupOfNames)", record_type=Group)
        self.assertEqual(group.cn, "testers")
        self.assertEqual(group.description, "The testers")
        self.assertEqual(group.members, [CHARLIE_DN])

    def test_create_existing_group(self):
        with self.assertRaises(ProtocolError):
            self.client.create_group("admins", GROUPS_DN, "Again", members=[BOB_DN])


class TestAssociatedGroups(GroupTestCase):

    def test_groups_for_alice(self):
        result = self.client.get_associated_groups(GROUPS_DN, ALICE_DN)
        self.assertIsInstance(result, GroupsResult)
        self.assertEqual(
            sorted(g.first_text("cn") for g in result.groups), ["admins", "developers"]
        )
        self.assertEqual(result.errors, [])
        self.assertEqual(self.client.pool.leased_count, 0)

    def test_groups_for_bob(self):
        result = self.client.get_associated_groups(GROUPS_DN, BOB_DN, record_type=Group)
        self.assertEqual([g.cn for g in result.groups], ["developers"])
        self.assertEqual(result.errors, [])

    def test_no_groups(self):
        result = self.client.get_associated_groups(GROUPS_DN, CHARLIE_DN)
        self.assertEqual(result, GroupsResult())

    def test_mismatched_group_does_not_hide_the_others(self):
        self.client.update("admins", GROUPS_DN, {"businessCategory": "ops"}, rdn_attribute="cn")
        result = self.client.get_associated_groups(GROUPS_DN, ALICE_DN, record_type=Team)
        self.assertEqual([(g.cn, g.business_category) for g in result.groups], [("admins", "ops")])
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].dn, DEVELOPERS_DN)
        self.assertIn("businessCategory", result.errors[0].errors)
        self.assertEqual(self.client.pool.leased_count, 0)

    def test_cursor(self):
        with self.groups.list_groups_for_entry(GROUPS_DN, ALICE_DN, attributes=["cn"]) as cursor:
            names = sorted(entry.first_text("cn") for entry in cursor)
        self.assertEqual(names, ["admins", "developers"])
        self.assertEqual(self.client.pool.leased_count, 0)
