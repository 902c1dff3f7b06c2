from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from forgechat.modes import Mode

DEFAULT_SYSTEM_PROMPT = """You are an AI Learning Path Assistant specialized in creating educational content and learning resources.

You help users create structured learning paths, courses, code examples, mind maps and documentation.
Always aim for engaging, well-structured content that guides learners through complex topics systematically."""


def get_config() -> Config:
    return Config()


class Config(BaseSettings):
    sqlite_file_path: str = (Path.cwd() / "forgechat.sqlite").expanduser().resolve().absolute().as_posix()
    use_postgres: bool = False
    pg_user: str | None = "postgres"
    pg_password: str | None = "postgres"
    pg_host: str | None = "localhost"
    pg_port: int | None = 5432
    pg_database: str | None = "forgechat"

    model_provider: str = "anthropic"
    model_name: str = "claude-3-5-sonnet-latest"
    model_api_key: str | None = None
    model_max_tokens: int = 4000
    model_temperature: float = 0.7

    connect_timeout: float = 30
    stream_idle_timeout: float = 120
    history_window: int = 10
    default_mode: Mode = Mode.CHAT
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    model_config = SettingsConfigDict(
        env_prefix="forgechat_", case_sensitive=False, frozen=True, protected_namespaces=()
    )

    def get_db_url(self, async_mode: bool = True) -> str:
        if self.use_postgres:
            if not all([
                self.pg_user,
                self.pg_password,
                self.pg_host,
                self.pg_port,
                self.pg_database,
            ]):
                raise ValueError("PostgreSQL configuration is incomplete")
            return f"postgresql+psycopg://{self.pg_user}:{self.pg_password}@{self.pg_host}:{self.pg_port}/{self.pg_database}"
        else:
            if not self.sqlite_file_path:
                raise ValueError("SQLite file path is not configured")
            sqlite_file_path = Path(self.sqlite_file_path).expanduser().resolve().absolute().as_posix()
            if async_mode:
                return f"sqlite+aiosqlite:///{sqlite_file_path}"
            else:
                return f"sqlite+pysqlite:///{sqlite_file_path}"
