# type: ignore
import dataclasses
import unittest
from unittest.mock import MagicMock

import ldap

from ldapdirectory.entries import Scope, SearchRequest
from ldapdirectory.exceptions import BindError, DirectoryConnectionError, ProtocolError
from ldapdirectory.session import DirectorySession

from .base import ALICE_DN, USERS_DN, FakeDirectoryTestCase


class TestOpen(FakeDirectoryTestCase):

    def test_open_binds_as_configured_user(self):
        session = DirectorySession.open(self.config)
        self.assertEqual(session.bound_dn, "cn=admin,dc=example,dc=com")
        self.assertTrue(session.is_alive())
        session.close()

    def test_open_as_other_user(self):
        session = DirectorySession.open(self.config, dn=ALICE_DN, password="password")
        self.assertEqual(session.bound_dn, ALICE_DN)
        session.close()

    def test_bad_password(self):
        config = dataclasses.replace(self.config, bind_password="wrong")
        with self.assertRaises(BindError):
            DirectorySession.open(config)

    def test_bind_error_is_a_connection_error(self):
        with self.assertRaises(DirectoryConnectionError):
            DirectorySession.open(self.config, dn=ALICE_DN, password="wrong")

    def test_missing_ca_file(self):
        config = dataclasses.replace(self.config, tls_ca_certfile="/nonexistent/ca.pem")
        with self.assertRaises(OSError):
            DirectorySession.open(config)

    def test_search(self):
        session = DirectorySession.open(self.config)
        request = SearchRequest(USERS_DN, Scope.ONELEVEL, "(uid=alice)", attributes=["cn"])
        entries = session.search(request, 10)
        self.assertEqual([entry.dn for entry in entries], [ALICE_DN])
        self.assertEqual(entries[0].first_text("cn"), "Alice Johnson")
        session.close()

    def test_close(self):
        session = DirectorySession.open(self.config)
        session.close()
        session.close()
        self.assertTrue(session.closed)
        self.assertFalse(session.is_alive())


class TestErrorTranslation(unittest.TestCase):

    def setUp(self):
        self.connection = MagicMock()
        self.session = DirectorySession(self.connection, "cn=admin,dc=example,dc=com")
        self.request = SearchRequest(USERS_DN, Scope.ONELEVEL, "(uid=alice)")

    def test_transport_error_marks_session_unhealthy(self):
        self.connection.search_ext.side_effect = ldap.SERVER_DOWN(
            {"desc": "Can't contact LDAP server"}
        )
        with self.assertRaises(DirectoryConnectionError):
            self.session.search_page(self.request, 10)
        self.assertFalse(self.session.healthy)
        self.assertFalse(self.session.is_alive())

    def test_timeout_marks_session_unhealthy(self):
        self.connection.modify_s.side_effect = ldap.TIMEOUT({"desc": "Timed out"})
        with self.assertRaises(DirectoryConnectionError):
            self.session.modify(ALICE_DN, [(ldap.MOD_REPLACE, "cn", [b"x"])])
        self.assertFalse(self.session.healthy)

    def test_server_refusal(self):
        self.connection.delete_s.side_effect = ldap.NO_SUCH_OBJECT(
            {"result": 32, "desc": "No such object", "info": b"entry not found"}
        )
        with self.assertRaises(ProtocolError) as ctx:
            self.session.delete(ALICE_DN)
        self.assertTrue(ctx.exception.is_no_such_object)
        self.assertEqual(ctx.exception.description, "No such object")
        self.assertEqual(ctx.exception.info, "entry not found")
        self.assertTrue(self.session.healthy)

    def test_failed_validation(self):
        self.connection.whoami_s.side_effect = ldap.SERVER_DOWN({"desc": "gone"})
        self.assertFalse(self.session.is_alive())
        self.assertFalse(self.session.healthy)

    def test_rename(self):
        self.session.rename(ALICE_DN, "uid=dave")
        self.connection.rename_s.assert_called_once_with(
            ALICE_DN, "uid=dave", newsuperior=None, delold=1
        )

    def test_search_references_are_ignored(self):
        self.connection.result3.return_value = (
            ldap.RES_SEARCH_RESULT,
            [(ALICE_DN, {"uid": [b"alice"]}), (None, ["ldap://other.example.com/"])],
            1,
            [],
        )
        entries, cookie = self.session.search_page(self.request, 10)
        self.assertEqual([entry.dn for entry in entries], [ALICE_DN])
        self.assertIsNone(cookie)
