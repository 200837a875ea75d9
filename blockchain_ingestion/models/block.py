from sqlalchemy import Column, Integer, BigInteger, String, DateTime
from sqlalchemy.sql import func
from .base import Base


class Block(Base):
    __tablename__ = "blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    number = Column(BigInteger, unique=True, index=True, nullable=False)
    hash = Column(String, unique=True, nullable=False)
    parent_hash = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)  # Chain block timestamp (UTC)
    gas_used = Column(BigInteger, nullable=False)
    gas_limit = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
