from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKeyConstraint, Index, Numeric, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class User(Base):
    __tablename__ = "users"
    id = Column(BigInteger, primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Order(Base):
    __tablename__ = "orders"
    id = Column(UUID, primary_key=True, server_default=func.gen_random_uuid())
    user_id = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, server_default="pending")
    amount = Column(Numeric(12, 2), nullable=False, server_default="0")
    details = Column(JSONB)
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_orders_user", ondelete="CASCADE"),
        CheckConstraint("amount >= 0", name="chk_orders_amount_pos"),
        Index("ix_orders_details", "details", postgresql_using="gin"),
    )
