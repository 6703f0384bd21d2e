"""
SQLAlchemy ORM models for database tables.

For Pydantic form/response schemas, see schemas.py.
"""

from datetime import timezone

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.types import TypeDecorator

from adboard.storage import Base


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column that always loads as UTC.

    SQLite stores no offset, so values read back are naive; they are
    tagged as UTC on load and converted to UTC on write.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Ad(Base):
    """
    A single classified listing.

    Table: ads
    `phone` is indexed for the per-phone quota count. `city_key` holds the
    casefolded city and is what search matches on.
    Rows are never updated or deleted.
    """
    __tablename__ = "ads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String, nullable=False, index=True)
    city = Column(String, nullable=False)
    city_key = Column(String, nullable=False, index=True)
    address = Column(String, nullable=False, default="")
    category = Column(String, nullable=False)
    image_url = Column(String, nullable=False, default="")
    created_at = Column(UTCDateTime(), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Ad id={self.id} phone={self.phone} category={self.category}>"
