from datetime import datetime

from sqlalchemy.orm import DeclarativeBase

from aris.db.types import JSONType, UTCDateTime


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    type_annotation_map = {
        datetime: UTCDateTime(),
        dict: JSONType,
        list: JSONType,
    }
