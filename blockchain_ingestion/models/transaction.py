from sqlalchemy import Column, Integer, BigInteger, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from .base import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hash = Column(String, unique=True, nullable=False)
    block_number = Column(BigInteger, ForeignKey("blocks.number"), index=True, nullable=False)
    from_address = Column(String, index=True, nullable=False)
    to_address = Column(String, index=True, nullable=True)  # NULL for contract creation

    # Wei amounts exceed 64 bits, stored as decimal strings
    value = Column(String, nullable=False)
    gas_used = Column(BigInteger, nullable=False)
    gas_price = Column(String, nullable=False)
    status = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
