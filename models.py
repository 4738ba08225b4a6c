import enum
import secrets
import string
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def random_nickname() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "user_" + "".join(secrets.choice(alphabet) for _ in range(8))


class JobType(str, enum.Enum):
    FULL_TIME = "FULL_TIME"
    PART_TIME = "PART_TIME"
    CONTRACT = "CONTRACT"
    FREELANCE = "FREELANCE"
    INTERNSHIP = "INTERNSHIP"


class UserJobStatus(str, enum.Enum):
    INTERESTED = "INTERESTED"
    DISCARDED = "DISCARDED"
    APPLIED = "APPLIED"


class TransactionType(str, enum.Enum):
    CHAT = "CHAT"
    JOB_LINK = "JOB_LINK"
    DEPOSIT = "DEPOSIT"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MessageRole(str, enum.Enum):
    USER = "USER"
    AI = "AI"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    # NULL for wallet-only users; unique among verified humans
    world_id_nullifier_hash = Column(String, unique=True, index=True, nullable=True)
    wallet_address = Column(String, index=True, nullable=True)
    nickname = Column(String, nullable=False, default=random_nickname)
    profile_picture = Column(String, nullable=True)

    contact_info = Column(JSON, nullable=False, default=dict)
    professional_info = Column(JSON, nullable=False, default=dict)
    preferences = Column(JSON, nullable=False, default=dict)

    links_generated = Column(Integer, nullable=False, default=0)
    payments_processed = Column(Integer, nullable=False, default=0)
    rating = Column(Float, nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user_jobs = relationship("UserJob", back_populates="user")
    transactions = relationship("Transaction", back_populates="user")
    chats = relationship("Chat", back_populates="user")

    @property
    def statistics(self) -> dict:
        return {
            "links_generated": self.links_generated or 0,
            "payments_processed": self.payments_processed or 0,
            "rating": self.rating or 0,
            "review_count": self.review_count or 0,
        }


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    company = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    requirements = Column(JSON, nullable=False, default=list)
    salary_min = Column(Float, nullable=True)
    salary_max = Column(Float, nullable=True)
    salary_currency = Column(String, nullable=False, default="USD")
    location = Column(String, nullable=False)
    remote = Column(Boolean, nullable=False, default=False)
    type = Column(Enum(JobType, native_enum=False, length=16), nullable=False, default=JobType.FULL_TIME)
    category = Column(String, nullable=False, index=True)
    posted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    application_url = Column(String, nullable=True)
    contact_email = Column(String, nullable=True)

    @property
    def salary(self) -> dict:
        return {
            "min": self.salary_min,
            "max": self.salary_max,
            "currency": self.salary_currency or "USD",
        }


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Enum(TransactionType, native_enum=False, length=16), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(
        Enum(TransactionStatus, native_enum=False, length=16),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    reference = Column(String, unique=True, nullable=False, index=True)
    world_id_transaction_id = Column(String, nullable=True)
    # What the payment was for
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=True)
    chat_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="transactions")

    @property
    def details(self) -> dict:
        return {"job_id": self.job_id, "chat_id": self.chat_id}


class UserJob(Base):
    __tablename__ = "user_jobs"
    __table_args__ = (UniqueConstraint("user_id", "job_id", name="uq_user_jobs_user_job"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    status = Column(Enum(UserJobStatus, native_enum=False, length=16), nullable=False)
    generated_link = Column(String, nullable=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="user_jobs")
    job = relationship("Job")
    transaction = relationship("Transaction")


class Chat(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="chats")
    job = relationship("Job")
    transaction = relationship("Transaction")
    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        order_by="ChatMessage.id",
        cascade="all, delete-orphan",
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id"), nullable=False, index=True)
    role = Column(Enum(MessageRole, native_enum=False, length=8), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    chat = relationship("Chat", back_populates="messages")
