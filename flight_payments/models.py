from sqlalchemy import Column, String, Integer, DateTime, JSON, Text, CheckConstraint
from flight_payments.database import Base


class PaymentIntentRecord(Base):
    __tablename__ = "payment_intents"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_payment_intent_amount"),
        CheckConstraint("refunded_amount <= amount", name="chk_payment_intent_refund_ceiling"),
    )

    id = Column(String(255), primary_key=True)
    booking_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    amount = Column(Integer, nullable=False)                # minor units
    currency = Column(String(3), nullable=False)
    payment_method = Column(JSON, nullable=False)
    status = Column(String(50), nullable=False, index=True)  # pending | processing | completed | failed
    provider_intent_id = Column(String(255))
    metadata_ = Column("metadata", JSON)
    refunded_amount = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class PaymentTransactionRecord(Base):
    __tablename__ = "payment_transactions"

    id = Column(String(255), primary_key=True)
    payment_intent_id = Column(String(255), nullable=False, index=True)
    booking_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    type = Column(String(50), nullable=False)        # charge | refund
    status = Column(String(50), nullable=False)
    provider = Column(String(50), nullable=False)    # stripe | points
    provider_transaction_id = Column(String(255))
    points_transaction = Column(JSON)
    failure_reason = Column(Text)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class PaymentReceiptRecord(Base):
    __tablename__ = "payment_receipts"

    id = Column(String(255), primary_key=True)
    payment_intent_id = Column(String(255), nullable=False, index=True)
    booking_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    receipt_number = Column(String(50), nullable=False, unique=True)
    total_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    payment_breakdown = Column(JSON, nullable=False)
    payment_method = Column(JSON, nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    receipt_url = Column(Text)
