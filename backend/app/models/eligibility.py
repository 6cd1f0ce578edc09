from sqlalchemy import Column, Integer, String, Text, DateTime
from app.database import Base


class EligibilityCache(Base):
    __tablename__ = "eligibility_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nct_id = Column(String(20), unique=True, nullable=False, index=True)
    eligibility_criteria = Column(Text)
    minimum_age = Column(String(30))
    maximum_age = Column(String(30))
    sex = Column(String(10))
    healthy_volunteers = Column(String(10))
    fetched_at = Column(DateTime(timezone=True), nullable=False)
