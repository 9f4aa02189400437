import unittest


from streamledger.core.security import _decide_role


class TestRoleResolution(unittest.TestCase):
    def test_db_admin_wins(self):
        role, reason = _decide_role(email_is_admin=False, claim_role="model", db_role="admin")
        self.assertEqual(role, "admin")
        self.assertEqual(reason, "db_profile")

    def test_admin_emails(self):
        role, reason = _decide_role(email_is_admin=True, claim_role=None, db_role="user")
        self.assertEqual(role, "admin")
        self.assertEqual(reason, "admin_emails")

    def test_jwt_admin_claim(self):
        role, reason = _decide_role(email_is_admin=False, claim_role="admin", db_role="user")
        self.assertEqual(role, "admin")
        self.assertEqual(reason, "jwt_claim")

    def test_jwt_role_claim_overrides_db_role(self):
        role, reason = _decide_role(email_is_admin=False, claim_role="Model", db_role="user")
        self.assertEqual(role, "model")
        self.assertEqual(reason, "jwt_claim")

    def test_db_role_non_admin(self):
        role, reason = _decide_role(email_is_admin=False, claim_role=None, db_role="model")
        self.assertEqual(role, "model")
        self.assertEqual(reason, "db_profile")

    def test_default_user(self):
        role, reason = _decide_role(email_is_admin=False, claim_role=None, db_role=None)
        self.assertEqual(role, "user")
        self.assertEqual(reason, "default")


if __name__ == "__main__":
    unittest.main()
