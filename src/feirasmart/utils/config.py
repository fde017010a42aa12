# runtime settings, read from the environment (and .env when present)
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv


def _env_flag(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    db_path: str = "data/feirasmart.sqlite"
    seed_demo_data: bool = True
    db_timeout: float = 5.0
    secret_key: str = "feirasmart-dev-secret"
    token_algorithm: str = "HS256"
    token_ttl_minutes: int = 7 * 24 * 60
    cart_dir: str = "data/carts"
    debug: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process.

    Values come from ``FEIRASMART_*`` environment variables; a ``.env`` file in
    the working directory is loaded first if it exists.
    """
    load_dotenv()
    defaults = Settings()
    return Settings(
        db_path=os.getenv("FEIRASMART_DB_PATH", defaults.db_path),
        seed_demo_data=_env_flag("FEIRASMART_SEED", defaults.seed_demo_data),
        db_timeout=float(os.getenv("FEIRASMART_DB_TIMEOUT", defaults.db_timeout)),
        secret_key=os.getenv("FEIRASMART_SECRET", defaults.secret_key),
        token_ttl_minutes=int(
            os.getenv("FEIRASMART_TOKEN_TTL_MINUTES", defaults.token_ttl_minutes)
        ),
        cart_dir=os.getenv("FEIRASMART_CART_DIR", defaults.cart_dir),
        debug=_env_flag("DEBUG", defaults.debug),
    )
