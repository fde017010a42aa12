from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import JWTError, jwt
from passlib.context import CryptContext

from feirasmart.db import crud, models
from feirasmart.utils.config import get_settings
from feirasmart.utils.errors import AuthError, ConflictError, ValidationError
from feirasmart.utils.logger import get_logger

_logger = get_logger(__name__)

pwd_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6


# --- Password hashing ---
def hash_password(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_ctx.verify(plain, hashed)


# --- Tokens ---
def create_token(identity: models.Identity, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.token_ttl_minutes
    )
    claims = {"sub": str(identity.uid), "role": identity.role, "exp": expires}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.token_algorithm)


def decode_token(token: str) -> models.Identity:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.token_algorithm]
        )
    except JWTError as e:
        raise AuthError("Invalid or expired token.") from e
    uid = payload.get("sub")
    role = payload.get("role")
    if uid is None or role not in models.ROLES:
        raise AuthError("Invalid or expired token.")
    try:
        return models.Identity(uid=int(uid), role=role)
    except ValueError as e:
        raise AuthError("Invalid or expired token.") from e


# --- Accounts ---
async def register(
    email: str,
    password: str,
    name: str,
    role: str = "cliente",
    phone: Optional[str] = None,
) -> Tuple[models.User, str]:
    """Create an account and sign it in. Returns (user, token)."""
    if not (email or "").strip() or not password or not (name or "").strip():
        raise ValidationError("Email, password and name are required.")
    if "@" not in email:
        raise ValidationError("Email is not valid.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must have at least {MIN_PASSWORD_LENGTH} characters."
        )
    if not await crud.email_available(email):
        raise ConflictError("Email already registered.")
    user = await crud.create_user(
        email, name, role, hash_password(password), phone=phone
    )
    return user, create_token(models.Identity(user.uid, user.role))


async def login(email: str, password: str) -> Tuple[models.User, str]:
    """Returns (user, token); a wrong email and a wrong password look the same."""
    found = await crud.get_credentials(email)
    if not found or not verify_password(password or "", found[1]):
        _logger.warning("Failed login attempt.")
        raise AuthError("Invalid email or password.")
    user = found[0]
    return user, create_token(models.Identity(user.uid, user.role))


async def authenticate(token: str) -> models.Identity:
    """Resolve a bearer token to the caller's identity."""
    if not token:
        raise AuthError("Missing token.")
    identity = decode_token(token)
    user = await crud.get_user(identity.uid)
    if user is None:
        raise AuthError("Account no longer exists.")
    # the role in the database wins over whatever the token claims
    return models.Identity(uid=user.uid, role=user.role)
