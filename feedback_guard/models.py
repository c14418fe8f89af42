from sqlalchemy import Column, Integer, Text
from .db import Base


# --- Table rate_buckets (compteurs du limiteur, backend SQL) ---
class RateBucketRow(Base):
    __tablename__ = "rate_buckets"

    # sha256 hex de "action|client", jamais l'IP brute
    key = Column(Text, primary_key=True)
    reset_at = Column(Integer, nullable=False)  # timestamp unix (secondes)
    count = Column(Integer, nullable=False, default=0)
