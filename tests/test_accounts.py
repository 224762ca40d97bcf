import unittest
from types import SimpleNamespace
from unittest.mock import patch

from chatapi.core.crypto import verify_password
from chatapi.core.errors import Conflict, NotFound, Unauthorized, ValidationFailed
from chatapi.services import accounts
from fakes import FakeTable


class AccountsTestCase(unittest.TestCase):
    def setUp(self):
        self.table = FakeTable("account_id")
        patcher = patch.object(accounts, "T", SimpleNamespace(accounts=self.table))
        patcher.start()
        self.addCleanup(patcher.stop)


class TestCreateAccount(AccountsTestCase):
    def test_creates_account_and_claims(self):
        acct = accounts.create_account("Bob", "Bob@Example.com", "hunter22")
        self.assertEqual(acct["username"], "bob")
        self.assertEqual(acct["email"], "bob@example.com")
        self.assertTrue(verify_password("hunter22", acct["password_hash"]))
        self.assertEqual(len(self.table.items), 3)
        claim = self.table.get_item(Key={"account_id": "uname#bob"})["Item"]
        self.assertEqual(claim["owner_id"], acct["account_id"])

    def test_duplicate_username_conflicts(self):
        accounts.create_account("bob", "bob@example.com", "hunter22")
        with self.assertRaises(Conflict) as ctx:
            accounts.create_account("BOB", "other@example.com", "hunter22")
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(len(self.table.items), 3)

    def test_duplicate_email_releases_username_claim(self):
        accounts.create_account("bob", "bob@example.com", "hunter22")
        with self.assertRaises(Conflict):
            accounts.create_account("robert", "bob@example.com", "hunter22")
        self.assertEqual(self.table.get_item(Key={"account_id": "uname#robert"}), {})

    def test_invalid_username(self):
        with self.assertRaises(ValidationFailed):
            accounts.create_account("b!", "bob@example.com", "hunter22")


class TestCredentials(AccountsTestCase):
    def setUp(self):
        super().setUp()
        self.acct = accounts.create_account("bob", "bob@example.com", "hunter22")

    def test_verify_credentials_success(self):
        self.assertEqual(accounts.verify_credentials("bob", "hunter22")["account_id"], self.acct["account_id"])

    def test_wrong_password_and_unknown_user_look_the_same(self):
        with self.assertRaises(Unauthorized) as wrong:
            accounts.verify_credentials("bob", "nope-nope")
        with self.assertRaises(Unauthorized) as unknown:
            accounts.verify_credentials("alice", "hunter22")
        self.assertEqual(wrong.exception.detail, unknown.exception.detail)

    def test_get_account_by_username(self):
        self.assertEqual(accounts.get_account_by_username(" Bob ")["account_id"], self.acct["account_id"])
        with self.assertRaises(NotFound):
            accounts.get_account_by_username("alice")

    def test_get_account_ignores_claim_rows(self):
        self.assertIsNone(accounts.get_account("uname#bob"))
        self.assertIsNone(accounts.get_account(""))


class TestDirectory(AccountsTestCase):
    def test_list_accounts_sorted_and_excludes_caller(self):
        carol = accounts.create_account("carol", "carol@example.com", "hunter22")
        accounts.create_account("alice", "alice@example.com", "hunter22")
        accounts.create_account("bob", "bob@example.com", "hunter22")
        names = [a["username"] for a in accounts.list_accounts(exclude_id=carol["account_id"])]
        self.assertEqual(names, ["alice", "bob"])

    def test_list_accounts_follows_pagination(self):
        table = SimpleNamespace(
            scan=lambda **kw: (
                {"Items": [{"account_id": "b1", "username": "zed"}], "LastEvaluatedKey": {"account_id": "b1"}}
                if "ExclusiveStartKey" not in kw
                else {"Items": [{"account_id": "a1", "username": "amy"}]}
            )
        )
        with patch.object(accounts, "T", SimpleNamespace(accounts=table)):
            names = [a["username"] for a in accounts.list_accounts()]
        self.assertEqual(names, ["amy", "zed"])

    def test_set_online(self):
        acct = accounts.create_account("bob", "bob@example.com", "hunter22")
        accounts.set_online(acct["account_id"], True)
        self.assertTrue(accounts.get_account(acct["account_id"])["online"])
        accounts.set_online(acct["account_id"], False)
        self.assertFalse(accounts.get_account(acct["account_id"])["online"])

    def test_set_online_ignores_deleted_account(self):
        accounts.set_online("missing", True)
        self.assertEqual(self.table.items, {})

    def test_delete_account_removes_claims(self):
        acct = accounts.create_account("bob", "bob@example.com", "hunter22")
        self.assertTrue(accounts.delete_account(acct["account_id"]))
        self.assertEqual(self.table.items, {})
        self.assertFalse(accounts.delete_account(acct["account_id"]))
        accounts.create_account("bob", "bob@example.com", "hunter22")
