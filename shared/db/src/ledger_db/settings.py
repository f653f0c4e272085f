"""Ledger database settings (SQLite for development, PostgreSQL for production)."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration.

    Resolution order:
    - database_url, when set, is used as-is
    - otherwise the URL is built from db_type and its components

    Every field can be set through an environment variable with the
    LEDGER_ prefix (e.g. LEDGER_DATABASE_URL, LEDGER_DB_TYPE) or a .env file.
    """

    database_url: Optional[str] = None

    db_type: str = "sqlite"  # 'sqlite' or 'postgresql'
    db_host: Optional[str] = None
    db_port: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_name: str = "trade_ledger.db"

    # PostgreSQL pool
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800

    echo_sql: bool = False

    model_config = SettingsConfigDict(env_prefix="LEDGER_", env_file=".env", extra="ignore")

    def get_database_url(self) -> str:
        """Build the SQLAlchemy URL.

        Raises:
            ValueError: If PostgreSQL is selected without host/port/user/password,
                or db_type is unknown.
        """
        if self.database_url:
            return self.database_url

        if self.db_type == "sqlite":
            return f"sqlite+pysqlite:///{self.db_name}"

        if self.db_type == "postgresql":
            missing = [
                name
                for name in ("db_host", "db_port", "db_user", "db_password")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"PostgreSQL requires {', '.join(missing)}")
            return (
                f"postgresql+psycopg2://{self.db_user}:{self.db_password}"
                f"@{self.db_host}:{self.db_port}/{self.db_name}"
            )

        raise ValueError(f"Unsupported database type: {self.db_type}")
