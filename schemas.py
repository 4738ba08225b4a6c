from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models import (
    JobType,
    MessageRole,
    TransactionStatus,
    TransactionType,
    UserJobStatus,
)


class CamelModel(BaseModel):
    """Base for API models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Auth --- #
class NonceResponse(CamelModel):
    nonce: str


class WorldIDProof(BaseModel):
    """Proof bundle produced by the World ID widget; field names are the provider's."""

    merkle_root: Optional[str] = None
    nullifier_hash: Optional[str] = None
    proof: Optional[str] = None
    credential_type: Optional[str] = None
    verification_level: Optional[str] = None
    action: Optional[str] = None
    signal: Optional[str] = None


class WalletLoginRequest(CamelModel):
    nonce: Optional[str] = None
    wallet_address: Optional[str] = None
    nickname: Optional[str] = None
    profile_picture_url: Optional[str] = None


class DemoLoginRequest(CamelModel):
    nickname: Optional[str] = None


class AuthUser(CamelModel):
    id: int
    nickname: str
    wallet_address: Optional[str] = None
    profile_picture: Optional[str] = None
    world_id_verified: bool = False
    is_demo_user: bool = False


class LoginResponse(CamelModel):
    status: str = "success"
    token: str
    user: AuthUser


class TokenPayload(CamelModel):
    sub: str
    nickname: Optional[str] = None
    wallet_address: Optional[str] = None
    world_id_verified: bool = False
    is_demo_user: bool = False
    exp: int
    iat: Optional[int] = None

    @property
    def user_id(self) -> int:
        return int(self.sub)


# --- Jobs --- #
class Salary(CamelModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = "USD"


class JobSeed(CamelModel):
    """A record of the bundled seed file."""

    title: str
    company: str
    description: str
    requirements: List[str] = []
    salary: Salary = Salary()
    location: str
    remote: bool = False
    type: JobType = JobType.FULL_TIME
    category: str
    posted_at: Optional[datetime] = None
    active: bool = True
    application_url: Optional[str] = None
    contact_email: Optional[str] = None


class Job(CamelModel):
    id: int
    title: str
    company: str
    description: str
    requirements: List[str] = []
    salary: Salary
    location: str
    remote: bool
    type: JobType
    category: str
    posted_at: datetime
    updated_at: datetime
    active: bool
    application_url: Optional[str] = None
    contact_email: Optional[str] = None


class JobSummary(CamelModel):
    id: int
    title: str
    company: str
    location: Optional[str] = None


class JobFilters(CamelModel):
    search: Optional[str] = None
    category: Optional[str] = None
    type: Optional[JobType] = None
    location: Optional[str] = None
    remote: Optional[bool] = None
    min_salary: Optional[float] = None


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    pages: int


class JobList(CamelModel):
    jobs: List[Job]
    pagination: Pagination


class JobStatusUpdate(CamelModel):
    status: str


class JobStatusResponse(CamelModel):
    status: str = "success"
    job_status: UserJobStatus


class UserJob(CamelModel):
    id: int
    user_id: int
    job_id: int
    status: UserJobStatus
    generated_link: Optional[str] = None
    transaction_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    job: Optional[Job] = None


class PaymentPending(CamelModel):
    status: str = "pending"
    message: str = "Payment required"
    reference: str
    transaction_id: int


class CompleteJobLinkRequest(CamelModel):
    transaction_id: int
    job_id: Optional[int] = None


class JobLinkResponse(CamelModel):
    status: str = "success"
    message: str = "Link generated successfully"
    link: str


# --- Payments --- #
class UuidResponse(CamelModel):
    id: str


class TransactionMetadata(CamelModel):
    job_id: Optional[int] = None
    chat_id: Optional[int] = None


class CreatePaymentRequest(CamelModel):
    type: TransactionType
    amount: float = Field(gt=0)
    metadata: TransactionMetadata = TransactionMetadata()


class CreatePaymentResponse(CamelModel):
    status: str = "success"
    reference: str
    id: int


class VerifyPaymentRequest(BaseModel):
    transaction_id: Optional[str] = None
    reference: Optional[str] = None


class PaymentCallback(BaseModel):
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[str] = None


class Transaction(CamelModel):
    id: int
    user_id: int
    type: TransactionType
    amount: float
    status: TransactionStatus
    reference: str
    world_id_transaction_id: Optional[str] = None
    metadata: TransactionMetadata = Field(
        default_factory=TransactionMetadata,
        validation_alias="details",
        serialization_alias="metadata",
    )
    created_at: datetime
    updated_at: datetime


class TransactionSummary(CamelModel):
    id: int
    amount: float
    created_at: datetime


# --- Chat --- #
class CreateChatRequest(CamelModel):
    job_id: Optional[int] = None


class CompleteChatRequest(CamelModel):
    transaction_id: int
    job_id: Optional[int] = None


class ChatMessageIn(CamelModel):
    chat_id: int
    message: str

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message cannot be empty")
        return value


class ChatMessage(CamelModel):
    role: MessageRole
    content: str
    timestamp: datetime


class ChatCreated(CamelModel):
    status: str = "success"
    message: str = "Chat created successfully"
    chat_id: int
    messages: List[ChatMessage]


class ChatMessages(CamelModel):
    status: str = "success"
    messages: List[ChatMessage]


class Chat(CamelModel):
    id: int
    user_id: int
    job_id: Optional[int] = None
    job: Optional[JobSummary] = None
    transaction_id: int
    messages: List[ChatMessage]
    created_at: datetime
    updated_at: datetime


# --- Profile --- #
class ContactInfo(CamelModel):
    email: Optional[str] = None
    phone: Optional[str] = None


class ProfessionalInfo(CamelModel):
    hourly_rate: float = 0
    skills: List[str] = []
    categories: List[str] = []
    availability: List[Dict[str, Any]] = []
    experience: Optional[str] = None
    education: Optional[str] = None


class Preferences(CamelModel):
    privacy_settings: Dict[str, Any] = {}
    notification_settings: Dict[str, Any] = {}
    job_categories: List[str] = []
    job_types: List[JobType] = []
    locations: List[str] = []
    remote_only: bool = False


class Statistics(CamelModel):
    links_generated: int = 0
    payments_processed: int = 0
    rating: float = 0
    review_count: int = 0


class Profile(CamelModel):
    id: int
    nickname: str
    wallet_address: Optional[str] = None
    profile_picture: Optional[str] = None
    contact_info: ContactInfo = ContactInfo()
    professional_info: ProfessionalInfo = ProfessionalInfo()
    preferences: Preferences = Preferences()
    statistics: Statistics = Statistics()
    created_at: datetime
    updated_at: datetime


class ProfileUpdate(CamelModel):
    """Only these fields may be set by the client; anything else is ignored."""

    nickname: Optional[str] = None
    contact_info: Optional[ContactInfo] = None
    professional_info: Optional[ProfessionalInfo] = None
    preferences: Optional[Preferences] = None


class UserStatistics(Statistics):
    applied_jobs: int = 0
    interested_jobs: int = 0
    discarded_jobs: int = 0
    total_transactions: int = 0
    total_spent: float = 0


class GeneratedLink(CamelModel):
    id: int
    status: UserJobStatus
    generated_link: str
    job: Optional[JobSummary] = None
    transaction: Optional[TransactionSummary] = None
    created_at: datetime
    updated_at: datetime
