import json
import math
import secrets
import uuid
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import llm_interaction
import models
import schemas
from auth import create_access_token
from exceptions import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentRequiredError,
)
from nonce_store import NonceStore
from observability import metric_scope
from settings import Settings
from world_id import WorldIDClient

logger = structlog.get_logger(__name__)

METRICS_NAMESPACE = "DoUp"
MAX_PAGE_SIZE = 100

ROLE_TO_PROVIDER = {
    models.MessageRole.USER: "user",
    models.MessageRole.AI: "assistant",
}

JOB_CHAT_GREETING = (
    "Hello! I can help you with your job application. "
    "What would you like to know about this position?"
)
GENERAL_CHAT_GREETING = "Hello! How can I assist you with your job search today?"


def _mask(value: Optional[str], keep: int = 10) -> str:
    return f"{value[:keep]}..." if value else "missing"


def _bump_statistic(db: Session, user_id: int, column: str) -> None:
    """Best-effort counter update; failures are logged and never raised."""
    try:
        crud.increment_user_counter(db, user_id, column)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Failed to update user statistics", user_id=user_id, column=column, exc_info=exc)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
def _login_response(user: models.User, settings: Settings, **claims) -> schemas.LoginResponse:
    token = create_access_token(user.id, settings, nickname=user.nickname, **claims)
    return schemas.LoginResponse(
        token=token,
        user=schemas.AuthUser(
            id=user.id,
            nickname=user.nickname,
            wallet_address=user.wallet_address,
            profile_picture=user.profile_picture,
            world_id_verified=claims.get("world_id_verified", False),
            is_demo_user=claims.get("is_demo_user", False),
        ),
    )


async def login_with_world_id(
    db: Session,
    proof: schemas.WorldIDProof,
    world_id: WorldIDClient,
    settings: Settings,
) -> schemas.LoginResponse:
    """Verify a World ID proof remotely and log in the human behind its nullifier."""
    if not proof.merkle_root or not proof.nullifier_hash or not proof.proof:
        raise BadRequestError("Missing required verification parameters")

    logger.info(
        "Verification data received",
        action=proof.action,
        credential_type=proof.credential_type,
        nullifier_hash=_mask(proof.nullifier_hash),
    )
    await world_id.verify_proof(proof)

    user, created = crud.get_or_create_user_by_nullifier(
        db,
        proof.nullifier_hash,
        nickname=f"User_{proof.nullifier_hash[:6]}",
    )
    logger.info("World ID user resolved", user_id=user.id, created=created)
    return _login_response(user, settings, world_id_verified=True)


def login_with_wallet(
    db: Session,
    request: schemas.WalletLoginRequest,
    nonce_store: NonceStore,
    settings: Settings,
) -> schemas.LoginResponse:
    if not request.wallet_address:
        raise BadRequestError("walletAddress is required")
    if not request.nonce or not nonce_store.consume(request.nonce):
        logger.warning("Wallet login with invalid nonce", wallet_address=_mask(request.wallet_address))
        raise AuthenticationError("Invalid or expired nonce")

    user = crud.get_user_by_wallet(db, request.wallet_address)
    if user is None:
        user = crud.create_user(
            db,
            wallet_address=request.wallet_address,
            nickname=request.nickname,
            profile_picture=request.profile_picture_url,
        )
        logger.info("New wallet user created", user_id=user.id)
    else:
        updates = {}
        if request.nickname:
            updates["nickname"] = request.nickname
        if request.profile_picture_url:
            updates["profile_picture"] = request.profile_picture_url
        crud.update_user_fields(db, user, updates)
        logger.info("Existing wallet user updated", user_id=user.id)
    db.commit()

    return _login_response(user, settings, wallet_address=user.wallet_address)


def demo_login(db: Session, request: schemas.DemoLoginRequest, settings: Settings) -> schemas.LoginResponse:
    """Create a throwaway user with a synthetic wallet address. Never available in production."""
    if settings.is_production:
        raise ForbiddenError("Demo login is disabled")

    wallet_address = f"demo_{secrets.token_hex(6)}"
    nickname = request.nickname or f"DemoUser_{secrets.token_hex(4)}"
    user = crud.create_user(db, nickname=nickname, wallet_address=wallet_address)
    db.commit()
    logger.info("Demo user created", user_id=user.id)
    return _login_response(user, settings, wallet_address=wallet_address, is_demo_user=True)


async def login_with_oauth_code(
    db: Session,
    code: str,
    world_id: WorldIDClient,
    settings: Settings,
) -> str:
    """Exchange a World ID OAuth code and return an access token for the user."""
    token_data = await world_id.get_oauth_token(code, settings.world_id_redirect_uri)
    profile = await world_id.get_user_profile(token_data.get("access_token", ""))

    nullifier_hash = profile.get("nullifier_hash")
    if not nullifier_hash:
        raise AuthenticationError("World ID profile has no nullifier hash")

    user, created = crud.get_or_create_user_by_nullifier(
        db,
        nullifier_hash,
        nickname=profile.get("username"),
        profile_picture=profile.get("profile_picture"),
    )
    logger.info("OAuth user resolved", user_id=user.id, created=created)
    return create_access_token(user.id, settings, nickname=user.nickname, world_id_verified=True)


# ---------------------------------------------------------------------------
# Job catalog
# ---------------------------------------------------------------------------
def load_seed_jobs(path: Path) -> List[dict]:
    """Read the bundled job list; a missing or unreadable file yields no jobs."""
    path = Path(path)
    if not path.exists():
        logger.error("Seed file does not exist", path=str(path))
        return []
    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.error("Failed to read seed file", path=str(path), exc_info=exc)
        return []
    if not isinstance(records, list):
        logger.error("Seed file must contain a JSON list", path=str(path))
        return []
    logger.info("Seed file loaded", path=str(path), count=len(records))
    return records


def seed_jobs(db: Session, path: Path) -> int:
    """Load the seed file into an empty jobs table; returns how many jobs were inserted."""
    existing = crud.count_jobs(db)
    if existing:
        logger.info("Jobs already present, skipping seed", count=existing)
        return 0

    records = load_seed_jobs(path)
    if not records:
        logger.warning("No jobs found to seed")
        return 0

    try:
        crud.create_jobs(db, [schemas.JobSeed.model_validate(record) for record in records])
        db.commit()
        logger.info("Seeded jobs", count=len(records))
        return len(records)
    except (ValidationError, SQLAlchemyError) as exc:
        db.rollback()
        logger.warning("Bulk seed failed, inserting jobs one by one", exc=str(exc))

    inserted = 0
    for index, record in enumerate(records, start=1):
        try:
            crud.create_job(db, schemas.JobSeed.model_validate(record))
            db.commit()
            inserted += 1
        except (ValidationError, SQLAlchemyError) as exc:
            db.rollback()
            logger.error("Failed to insert seed job", index=index, exc=str(exc))
    logger.info("Seeded jobs individually", inserted=inserted, total=len(records))
    return inserted


def list_jobs(
    db: Session,
    filters: schemas.JobFilters,
    page: int,
    limit: int,
    settings: Settings,
) -> schemas.JobList:
    if crud.count_jobs(db) == 0:
        logger.info("No jobs in the database, seeding before query")
        seed_jobs(db, settings.seed_data_path)

    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    jobs, total = crud.search_jobs(db, filters, offset=(page - 1) * limit, limit=limit)
    logger.info("Jobs listed", filters=filters.model_dump(exclude_none=True), total=total, page=page)
    return schemas.JobList(
        jobs=jobs,
        pagination=schemas.Pagination(
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit),
        ),
    )


def list_categories(db: Session, settings: Settings) -> List[str]:
    try:
        categories = crud.get_categories(db)
        if not categories:
            seed_jobs(db, settings.seed_data_path)
            categories = crud.get_categories(db)
        return categories
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to read categories from the database, using seed file", exc_info=exc)
        records = load_seed_jobs(settings.seed_data_path)
        return sorted({record["category"] for record in records if record.get("category")})


def get_job(db: Session, job_id: int) -> models.Job:
    job = crud.get_job(db, job_id)
    if job is None:
        raise NotFoundError("Job", job_id)
    return job


def update_job_status(db: Session, user_id: int, job_id: int, status: str) -> models.UserJob:
    """Mark a job INTERESTED or DISCARDED for the user. No payment involved."""
    allowed = (models.UserJobStatus.INTERESTED, models.UserJobStatus.DISCARDED)
    if status not in {s.value for s in allowed}:
        raise BadRequestError("Invalid status")
    get_job(db, job_id)

    user_job = crud.upsert_user_job(db, user_id, job_id, status=models.UserJobStatus(status))
    db.commit()
    logger.info("Job status updated", user_id=user_id, job_id=job_id, status=status)
    return user_job


def list_user_jobs(db: Session, user_id: int, status: Optional[str] = None) -> List[models.UserJob]:
    if status is not None and status not in {s.value for s in models.UserJobStatus}:
        raise BadRequestError("Invalid status")
    return crud.get_user_jobs(db, user_id, models.UserJobStatus(status) if status else None)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
def generate_reference() -> str:
    return uuid.uuid4().hex


def record_transaction(
    db: Session,
    user_id: int,
    type: models.TransactionType,
    amount: float,
    job_id: Optional[int] = None,
    chat_id: Optional[int] = None,
) -> models.Transaction:
    if job_id is not None:
        get_job(db, job_id)
    transaction = crud.create_transaction(
        db,
        user_id=user_id,
        type=type,
        amount=amount,
        reference=generate_reference(),
        job_id=job_id,
        chat_id=chat_id,
    )
    db.commit()
    logger.info(
        "Transaction recorded",
        transaction_id=transaction.id,
        user_id=user_id,
        type=type.value,
        amount=amount,
    )
    return transaction


def start_paid_action(
    db: Session,
    user_id: int,
    type: models.TransactionType,
    amount: float,
    job_id: Optional[int] = None,
) -> models.Transaction:
    """First phase of a paid action: a PENDING transaction the client pays off-band."""
    return record_transaction(db, user_id, type, amount, job_id=job_id)


def update_transaction_status(
    db: Session,
    reference: str,
    status: models.TransactionStatus,
    world_id_transaction_id: Optional[str],
) -> models.Transaction:
    transaction = crud.get_transaction_by_reference(db, reference)
    if transaction is None:
        raise NotFoundError("Transaction", reference)

    previous = transaction.status
    transaction.status = status
    transaction.world_id_transaction_id = world_id_transaction_id
    db.commit()
    logger.info(
        "Transaction status updated",
        transaction_id=transaction.id,
        previous=previous.value,
        status=status.value,
    )

    if status == models.TransactionStatus.COMPLETED and previous != models.TransactionStatus.COMPLETED:
        _bump_statistic(db, transaction.user_id, "payments_processed")
    return transaction


async def verify_payment(
    db: Session,
    request: schemas.VerifyPaymentRequest,
    world_id: WorldIDClient,
) -> models.Transaction:
    """Ask World ID about a MiniKit transaction and record the outcome."""
    if not request.transaction_id:
        raise BadRequestError("Transaction ID is required")
    if not request.reference:
        raise BadRequestError("Reference is required")
    if crud.get_transaction_by_reference(db, request.reference) is None:
        raise NotFoundError("Transaction", request.reference)

    payload = await world_id.verify_payment(request.transaction_id)

    provider_reference = payload.get("reference")
    if provider_reference and provider_reference != request.reference:
        logger.warning("Payment reference mismatch", reference=request.reference)
        raise BadRequestError("Payment verification failed")

    provider_status = payload.get("status") or payload.get("transaction_status")
    if provider_status in ("success", "mined"):
        return update_transaction_status(
            db, request.reference, models.TransactionStatus.COMPLETED, request.transaction_id
        )
    if provider_status in ("failed", "error"):
        update_transaction_status(db, request.reference, models.TransactionStatus.FAILED, request.transaction_id)
    logger.info("Payment not confirmed", reference=request.reference, provider_status=provider_status)
    raise BadRequestError("Payment verification failed")


def handle_payment_callback(
    db: Session,
    callback: schemas.PaymentCallback,
    settings: Settings,
    provided_secret: Optional[str] = None,
) -> models.Transaction:
    """Apply a provider-pushed status change.

    With `payment_callback_secret` configured, the caller must echo it in the
    callback header or the notification is refused.
    """
    expected = settings.payment_callback_secret
    if expected and not secrets.compare_digest(provided_secret or "", expected):
        logger.warning("Payment callback with invalid secret", reference=callback.reference)
        raise AuthenticationError("Invalid callback signature")
    if not callback.transaction_id or not callback.reference:
        raise BadRequestError("Missing required fields")
    status = (
        models.TransactionStatus.COMPLETED
        if callback.status == "success"
        else models.TransactionStatus.FAILED
    )
    return update_transaction_status(db, callback.reference, status, callback.transaction_id)


def _require_paid_transaction(
    db: Session,
    user_id: int,
    transaction_id: int,
    expected_type: models.TransactionType,
    price: float,
    settings: Settings,
    job_id: Optional[int] = None,
) -> models.Transaction:
    """Load the caller's transaction and check it pays for this action."""
    transaction = crud.get_transaction(db, transaction_id)
    if transaction is None or transaction.user_id != user_id:
        raise NotFoundError("Transaction", transaction_id)
    if transaction.type != expected_type:
        raise BadRequestError("Transaction was not issued for this action")
    if job_id is not None and transaction.job_id is not None and transaction.job_id != job_id:
        raise BadRequestError("Transaction was issued for a different job")
    if transaction.status == models.TransactionStatus.FAILED:
        raise PaymentRequiredError("Payment failed")
    if transaction.amount < price:
        raise PaymentRequiredError("Payment does not cover the price")
    if settings.require_verified_payment and transaction.status != models.TransactionStatus.COMPLETED:
        raise PaymentRequiredError("Payment has not been verified")
    return transaction


# ---------------------------------------------------------------------------
# Paid job links
# ---------------------------------------------------------------------------
def _application_link(settings: Settings, job_id: int) -> str:
    return f"{settings.api_base_url.rstrip('/')}/apply/{job_id}/{secrets.token_hex(8)}"


@metric_scope
async def complete_job_link(
    db: Session,
    user_id: int,
    transaction_id: int,
    job_id: Optional[int],
    settings: Settings,
    metrics=None,
) -> models.UserJob:
    """Second phase of link generation: mark the job APPLIED and stamp a fresh link."""
    metrics.set_namespace(METRICS_NAMESPACE)
    metrics.set_property("user_id", user_id)
    try:
        transaction = _require_paid_transaction(
            db, user_id, transaction_id, models.TransactionType.JOB_LINK,
            settings.job_link_price, settings, job_id=job_id,
        )
    except (NotFoundError, BadRequestError, PaymentRequiredError):
        metrics.put_metric("paid_action_rejected", 1, "Count")
        raise

    job_id = job_id or transaction.job_id
    if job_id is None:
        raise BadRequestError("jobId is required")
    job = get_job(db, job_id)

    consumed_by = crud.get_user_job_by_transaction(db, transaction.id)
    if consumed_by is not None:
        if consumed_by.user_id == user_id and consumed_by.job_id == job.id and consumed_by.generated_link:
            logger.info("Job link already generated for transaction", transaction_id=transaction.id)
            return consumed_by
        raise ConflictError("Transaction has already been used")

    user_job = crud.upsert_user_job(
        db,
        user_id,
        job.id,
        status=models.UserJobStatus.APPLIED,
        generated_link=_application_link(settings, job.id),
        transaction_id=transaction.id,
    )
    db.commit()
    metrics.put_metric("job_links_generated", 1, "Count")
    logger.info("Job link generated", user_id=user_id, job_id=job.id, transaction_id=transaction.id)

    _bump_statistic(db, user_id, "links_generated")
    db.refresh(user_job)
    return user_job


# ---------------------------------------------------------------------------
# AI chat
# ---------------------------------------------------------------------------
@metric_scope
async def complete_chat(
    db: Session,
    user_id: int,
    transaction_id: int,
    job_id: Optional[int],
    settings: Settings,
    metrics=None,
) -> models.Chat:
    """Second phase of chat creation: open the conversation with a greeting."""
    metrics.set_namespace(METRICS_NAMESPACE)
    metrics.set_property("user_id", user_id)
    try:
        transaction = _require_paid_transaction(
            db, user_id, transaction_id, models.TransactionType.CHAT,
            settings.chat_price, settings, job_id=job_id,
        )
    except (NotFoundError, BadRequestError, PaymentRequiredError):
        metrics.put_metric("paid_action_rejected", 1, "Count")
        raise

    if crud.get_chat_by_transaction(db, transaction.id) is not None:
        raise ConflictError("Transaction has already been used")

    job_id = job_id or transaction.job_id
    if job_id is not None:
        get_job(db, job_id)

    chat = crud.create_chat(
        db,
        user_id=user_id,
        transaction_id=transaction.id,
        job_id=job_id,
        greeting=JOB_CHAT_GREETING if job_id else GENERAL_CHAT_GREETING,
    )
    transaction.chat_id = chat.id
    db.commit()
    db.refresh(chat)
    metrics.put_metric("chats_created", 1, "Count")
    logger.info("Chat created", user_id=user_id, chat_id=chat.id, job_id=job_id)
    return chat


def build_chat_context(db: Session, chat: models.Chat) -> str:
    if chat.job_id:
        job = crud.get_job(db, chat.job_id)
        if job:
            return (
                "This conversation is about the following job:\n"
                f"Title: {job.title}\n"
                f"Company: {job.company}\n"
                f"Description: {job.description}\n"
                f"Requirements: {', '.join(job.requirements or [])}\n"
                f"Salary Range: {job.salary_min}-{job.salary_max} {job.salary_currency}\n"
                f"Location: {job.location}\n"
                f"Type: {job.type.value}"
            )
        return ""

    recent_jobs = crud.get_recent_jobs(db, limit=5)
    if not recent_jobs:
        return ""
    lines = ["Here are some recent jobs that might be relevant:"]
    for job in recent_jobs:
        lines.append(
            f"Title: {job.title}\nCompany: {job.company}\nLocation: {job.location}\nType: {job.type.value}\n---"
        )
    return "\n".join(lines)


async def send_chat_message(db: Session, user_id: int, chat_id: int, text: str) -> models.Chat:
    """Store the user's message, ask the AI provider, and store its reply.

    Provider failures never reach the caller: the reply becomes a fixed apology.
    """
    chat = crud.get_chat(db, chat_id)
    if chat is None:
        raise NotFoundError("Chat", chat_id)
    if chat.user_id != user_id:
        raise ForbiddenError("Not authorized to access this chat")

    crud.add_chat_message(db, chat, models.MessageRole.USER, text)
    db.commit()

    context = build_chat_context(db, chat)
    conversation = [
        {"role": ROLE_TO_PROVIDER[message.role], "content": message.content}
        for message in chat.messages
    ]

    try:
        reply = await llm_interaction.call_llm_for_chat(conversation, context)
        if not reply:
            raise ValueError("AI provider returned an empty reply")
    except Exception as exc:
        logger.error("Error getting AI response, using fallback reply", chat_id=chat.id, exc_info=exc)
        reply = llm_interaction.FALLBACK_REPLY

    crud.add_chat_message(db, chat, models.MessageRole.AI, reply)
    db.commit()
    db.refresh(chat)
    return chat


def get_chat(db: Session, user_id: int, chat_id: int) -> models.Chat:
    chat = crud.get_chat_for_user(db, chat_id, user_id)
    if chat is None:
        raise NotFoundError("Chat", chat_id)
    return chat


# ---------------------------------------------------------------------------
# Profile & statistics
# ---------------------------------------------------------------------------
def get_profile(db: Session, user_id: int) -> models.User:
    user = crud.get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def update_profile(db: Session, user_id: int, update: schemas.ProfileUpdate) -> models.User:
    user = get_profile(db, user_id)
    fields = update.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    crud.update_user_fields(db, user, fields)
    db.commit()
    db.refresh(user)
    logger.info("Profile updated", user_id=user_id, fields=sorted(fields))
    return user


def get_statistics(db: Session, user_id: int) -> schemas.UserStatistics:
    user = get_profile(db, user_id)
    by_status = crud.count_user_jobs_by_status(db, user_id)
    total_transactions, total_spent = crud.completed_transaction_totals(db, user_id)
    return schemas.UserStatistics(
        **user.statistics,
        applied_jobs=by_status[models.UserJobStatus.APPLIED],
        interested_jobs=by_status[models.UserJobStatus.INTERESTED],
        discarded_jobs=by_status[models.UserJobStatus.DISCARDED],
        total_transactions=total_transactions,
        total_spent=total_spent,
    )
