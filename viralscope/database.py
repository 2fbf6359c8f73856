import os
import ssl
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool


class Base(DeclarativeBase):
    pass


def normalize_database_url(url: str) -> tuple[str, dict]:
    """Return an async driver URL and the connect_args it needs.

    Neon connection strings use postgresql:// with query params like
    sslmode=require and channel_binding=require that asyncpg doesn't
    accept via the URL. We strip them and pass SSL via connect_args.
    """
    if not url.startswith("postgres"):
        return url, {}

    parsed = urlparse(url)
    query_params = parse_qs(parsed.query)

    needs_ssl = query_params.pop("sslmode", [None])[0] == "require"
    query_params.pop("channel_binding", None)

    clean_query = urlencode(query_params, doseq=True)
    scheme = "postgresql+asyncpg" if parsed.scheme in ("postgres", "postgresql") else parsed.scheme
    clean_url = urlunparse(parsed._replace(scheme=scheme, query=clean_query))

    connect_args = {"ssl": ssl.create_default_context()} if needs_ssl else {}
    return clean_url, connect_args


def make_engine(url: str) -> AsyncEngine:
    clean_url, connect_args = normalize_database_url(url)
    if clean_url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        return create_async_engine(clean_url, echo=False, poolclass=NullPool)
    return create_async_engine(
        clean_url, echo=False, pool_pre_ping=True, connect_args=connect_args
    )


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


DATABASE_URL = os.getenv("DATABASE_URL", "")

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required.")

engine = make_engine(DATABASE_URL)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
