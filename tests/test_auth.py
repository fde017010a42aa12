from helpers import CARLA, DatabaseTestCase

from feirasmart import auth
from feirasmart.db import crud
from feirasmart.db.models import Identity
from feirasmart.utils.errors import AuthError, ConflictError, ValidationError


class AuthTestCase(DatabaseTestCase):
    async def test_seeded_accounts_can_log_in(self):
        user, token = await auth.login("carla@example.com", "feira123")
        self.assertEqual(user.uid, CARLA.uid)
        self.assertEqual(user.role, "feirante")
        self.assertEqual(await auth.authenticate(token), CARLA)

    async def test_wrong_password_and_unknown_email_look_the_same(self):
        with self.assertRaises(AuthError) as wrong_pw:
            await auth.login("carla@example.com", "nope1234")
        with self.assertRaises(AuthError) as unknown:
            await auth.login("ghost@example.com", "feira123")
        self.assertEqual(wrong_pw.exception.message, unknown.exception.message)

    async def test_register_then_login(self):
        user, token = await auth.register(
            "Nova@Example.com", "segredo1", "Nova Cliente", phone="11 90000-0000"
        )
        self.assertEqual(user.role, "cliente")
        self.assertEqual(user.email, "nova@example.com")
        self.assertEqual((await auth.authenticate(token)).uid, user.uid)

        logged_in, _ = await auth.login("nova@example.com", "segredo1")
        self.assertEqual(logged_in.uid, user.uid)

        _, pw_hash = await crud.get_credentials("nova@example.com")
        self.assertNotEqual(pw_hash, "segredo1")
        self.assertTrue(auth.verify_password("segredo1", pw_hash))

    async def test_register_validation(self):
        with self.assertRaises(ValidationError):
            await auth.register("", "segredo1", "Sem Email")
        with self.assertRaises(ValidationError):
            await auth.register("not-an-email", "segredo1", "Nome")
        with self.assertRaises(ValidationError):
            await auth.register("short@example.com", "123", "Nome")
        with self.assertRaises(ValidationError):
            await auth.register("role@example.com", "segredo1", "Nome", role="admin")
        with self.assertRaises(ConflictError):
            await auth.register("ana@example.com", "segredo1", "Ana de Novo")

    async def test_bad_tokens(self):
        with self.assertRaises(AuthError):
            await auth.authenticate("")
        with self.assertRaises(AuthError):
            await auth.authenticate("not.a.token")
        with self.assertRaises(AuthError):
            auth.decode_token(auth.create_token(CARLA, expires_minutes=-1))

    async def test_token_for_deleted_account(self):
        token = auth.create_token(Identity(uid=999, role="cliente"))
        with self.assertRaises(AuthError):
            await auth.authenticate(token)

    async def test_database_role_wins_over_token_claim(self):
        token = auth.create_token(Identity(uid=1, role="feirante"))
        identity = await auth.authenticate(token)
        self.assertEqual(identity.role, "cliente")
