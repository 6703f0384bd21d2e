import logging
from datetime import datetime, timezone
from typing import Generator, List

from fastapi import Request
from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from adboard.errors import StorageError

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


def city_key(city: str) -> str:
    """Search key for a city: casefolded, so "MÜNCHEN" and "münchen" agree."""
    return city.casefold()


def build_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for `database_url`.

    SQLite needs check_same_thread=False because FastAPI serves requests
    from a thread pool. An in-memory SQLite database is pinned to a single
    connection, otherwise every new connection would see an empty database.
    """
    kwargs = {"echo": False}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Create all tables. Called during application startup.
    """
    logger.debug(f"Initializing database: {engine.url.render_as_string(hide_password=True)}")
    try:
        # Import models to register them with Base.metadata
        from adboard.models import Ad  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency yielding a session from the application's session factory.
    The session is always closed after the request.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def check_db_health(session_factory: sessionmaker) -> bool:
    """
    Check if the database is reachable and the ads table exists.
    """
    logger.debug("Checking database health...")
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
            if not inspect(db.get_bind()).has_table("ads"):
                logger.error("Database schema not applied: 'ads' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Ad Repository Functions
# =============================================================================

def count_ads_by_phone(db: Session, phone: str) -> int:
    """Count stored ads whose phone equals `phone`."""
    from adboard.models import Ad

    try:
        count = db.query(func.count(Ad.id)).filter(Ad.phone == phone).scalar() or 0
    except SQLAlchemyError as e:
        logger.error(f"Failed to count ads for phone {phone}: {e}")
        raise StorageError("Could not check existing ads") from e
    logger.debug(f"Ads for phone {phone}: {count}")
    return count


def create_ad(
    db: Session,
    phone: str,
    city: str,
    category: str,
    address: str = "",
    image_url: str = "",
):
    """
    Insert a new ad and commit.

    Returns:
        The persisted Ad, with id and created_at populated.

    Raises:
        StorageError: if the insert or commit fails.
    """
    from adboard.models import Ad

    ad = Ad(
        phone=phone,
        city=city,
        city_key=city_key(city),
        address=address or "",
        category=category,
        image_url=image_url or "",
        created_at=datetime.now(timezone.utc),
    )
    try:
        db.add(ad)
        db.commit()
        db.refresh(ad)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save ad for phone {phone}: {e}")
        raise StorageError("Could not save the ad") from e

    logger.info(f"Ad created: id={ad.id}, phone={phone}, category={category}")
    return ad


def get_ads_sorted(db: Session, ascending: bool = False) -> List:
    """
    Retrieve every ad ordered by created_at (id breaks ties).
    """
    from adboard.models import Ad

    if ascending:
        order = (Ad.created_at.asc(), Ad.id.asc())
    else:
        order = (Ad.created_at.desc(), Ad.id.desc())

    try:
        ads = db.query(Ad).order_by(*order).all()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load ads: {e}")
        raise StorageError("Failed to load ads") from e
    logger.debug(f"Loaded {len(ads)} ads (ascending={ascending})")
    return ads


def get_ads_by_city(db: Session, city: str) -> List:
    """
    Retrieve ads whose city equals `city`, ignoring case.

    Matches on the stored casefolded key, so non-ASCII letters compare
    the same way on every backend.

    This is an exact match on the whole value, never a substring match.
    No ordering is applied.
    """
    from adboard.models import Ad

    try:
        ads = db.query(Ad).filter(Ad.city_key == city_key(city)).all()
    except SQLAlchemyError as e:
        logger.error(f"Failed to search ads for city {city!r}: {e}")
        raise StorageError("Search failed") from e
    logger.debug(f"Found {len(ads)} ads for city {city!r}")
    return ads
