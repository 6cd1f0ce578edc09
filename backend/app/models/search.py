from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from app.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Search(Base):
    __tablename__ = "searches"

    id = Column(String(32), primary_key=True)
    mode = Column(String(10), nullable=False)
    condition = Column(Text, nullable=False)
    age = Column(Integer, nullable=False)
    location = Column(Text, nullable=False, default="")
    medications = Column(JSONType)
    additional_info = Column(Text)
    results = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
