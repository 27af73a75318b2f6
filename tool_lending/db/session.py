import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, URL
from sqlalchemy.orm import sessionmaker


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


def build_database_url() -> str:
    explicit = (os.environ.get("DATABASE_URL") or "").strip()
    if explicit:
        return explicit

    url = URL.create(
        "postgresql+psycopg",
        username=os.environ.get("DB_USER") or "postgres",
        password=os.environ.get("DB_PASSWORD") or "password",
        host=os.environ.get("DB_HOST") or "localhost",
        port=int(os.environ.get("DB_PORT") or "5432"),
        database=os.environ.get("DB_NAME") or "workshop_tools",
        query={"sslmode": "require"} if _env_flag("DB_SSL") else {},
    )
    return url.render_as_string(hide_password=False)


def build_engine(db_url: str) -> Engine:
    engine = create_engine(
        db_url,
        pool_pre_ping=True,
        echo=_env_flag("DB_ECHO"),
        future=True,
    )
    if engine.dialect.name == "sqlite":
        # SQLite ships with foreign key enforcement off.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


DATABASE_URL = build_database_url()

engine_lending = build_engine(DATABASE_URL)

SessionLocalLending = build_session_factory(engine_lending)
