import ssl

from viralscope.database import normalize_database_url


def test_neon_params_move_into_connect_args():
    url, connect_args = normalize_database_url(
        "postgresql://u:p@ep-1.neon.tech/db?sslmode=require&channel_binding=require&application_name=x"
    )
    assert url == "postgresql+asyncpg://u:p@ep-1.neon.tech/db?application_name=x"
    assert isinstance(connect_args["ssl"], ssl.SSLContext)


def test_plain_postgres_url_gets_the_async_driver():
    url, connect_args = normalize_database_url("postgresql://u:p@localhost/db")
    assert url == "postgresql+asyncpg://u:p@localhost/db"
    assert connect_args == {}


def test_sqlite_urls_are_left_alone():
    url = "sqlite+aiosqlite:////var/data/viralscope.db"
    assert normalize_database_url(url) == (url, {})
