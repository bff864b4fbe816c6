from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.orm import declarative_base
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Any, Dict
from urllib.parse import urlparse, quote, urlunparse
import logging

from .config import settings
from .exceptions import TransientError

logger = logging.getLogger(__name__)

def fix_database_url(url: str) -> str:
    """Point plain postgres URLs at the psycopg driver and encode the password"""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if not url.startswith("postgresql://"):
        # Already names an async driver (postgresql+psycopg, sqlite+aiosqlite, ...)
        return url

    url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    parsed = urlparse(url)

    if '@' in parsed.netloc:
        auth_part, host_part = parsed.netloc.split('@', 1)
        if ':' in auth_part:
            username, password = auth_part.split(':', 1)
            encoded_password = quote(password, safe='')
            parsed = parsed._replace(netloc=f"{username}:{encoded_password}@{host_part}")

    return urlunparse(parsed)

def engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "echo": settings.is_development and settings.LOG_LEVEL.upper() == "DEBUG",
        "pool_pre_ping": True,
    }
    if url.startswith("postgresql"):
        options.update(
            pool_size=10,
            max_overflow=20,
            pool_recycle=300,  # Recycle connections after 5 minutes
            connect_args={
                "prepare_threshold": None,  # Disable prepared statements
            },
        )
    return options

DATABASE_URL = fix_database_url(settings.DATABASE_URL)

engine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()

@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any error; driver failures become TransientError"""
    try:
        yield session
        await session.commit()
    except (OperationalError, InterfaceError) as e:
        await session.rollback()
        logger.warning(f"Transient database error, transaction rolled back: {e}")
        raise TransientError() from e
    except DBAPIError as e:
        await session.rollback()
        if e.connection_invalidated:
            logger.warning(f"Database connection lost, transaction rolled back: {e}")
            raise TransientError() from e
        raise
    except BaseException:
        await session.rollback()
        raise

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
