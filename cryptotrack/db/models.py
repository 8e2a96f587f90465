from sqlalchemy import Column, DateTime, String, Text

from cryptotrack.db.session import Base
from cryptotrack.utils.time import utcnow


class Preference(Base):
    __tablename__ = "preferences"

    key = Column(String, primary_key=True)
    value_json = Column(Text, nullable=False)  # json-encoded str or list[str]

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
