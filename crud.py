from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

import models
import schemas


# --- User CRUD ---
def get_user_by_id(db: Session, user_id: int):
    """Get a user by their primary key ID."""
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_nullifier(db: Session, nullifier_hash: str):
    return (
        db.query(models.User)
        .filter(models.User.world_id_nullifier_hash == nullifier_hash)
        .first()
    )


def get_user_by_wallet(db: Session, wallet_address: str):
    return db.query(models.User).filter(models.User.wallet_address == wallet_address).first()


def create_user(db: Session, **fields):
    db_user = models.User(**{k: v for k, v in fields.items() if v is not None})
    db.add(db_user)
    db.flush()  # Assign ID without committing
    db.refresh(db_user)
    return db_user


def get_or_create_user_by_nullifier(db: Session, nullifier_hash: str, **fields) -> Tuple[models.User, bool]:
    """Find the user owning ``nullifier_hash`` or create one.

    Must run before other changes are staged on ``db``: losing the race to a
    concurrent insert rolls the session back and re-reads the winner.
    """
    user = get_user_by_nullifier(db, nullifier_hash)
    if user:
        return user, False
    try:
        user = create_user(db, world_id_nullifier_hash=nullifier_hash, **fields)
        db.commit()
        return user, True
    except IntegrityError:
        db.rollback()
        return get_user_by_nullifier(db, nullifier_hash), False


def update_user_fields(db: Session, user: models.User, fields: dict):
    for key, value in fields.items():
        setattr(user, key, value)
    db.add(user)
    db.flush()
    return user


def increment_user_counter(db: Session, user_id: int, column: str, amount: int = 1) -> int:
    """Atomically bump one of the statistics counters; returns rows matched."""
    counter = getattr(models.User, column)
    result = db.execute(
        update(models.User)
        .where(models.User.id == user_id)
        .values({counter: counter + amount})
    )
    return result.rowcount


# --- Job CRUD ---
def count_jobs(db: Session) -> int:
    return db.query(func.count(models.Job.id)).scalar() or 0


def get_job(db: Session, job_id: int):
    return db.query(models.Job).filter(models.Job.id == job_id).first()


def create_job(db: Session, job: schemas.JobSeed):
    fields = job.model_dump(exclude={"salary", "posted_at"})
    db_job = models.Job(
        **fields,
        salary_min=job.salary.min,
        salary_max=job.salary.max,
        salary_currency=job.salary.currency,
    )
    if job.posted_at:
        db_job.posted_at = job.posted_at
    db.add(db_job)
    return db_job


def create_jobs(db: Session, jobs: Iterable[schemas.JobSeed]) -> List[models.Job]:
    return [create_job(db, job) for job in jobs]


def _apply_job_filters(query, filters: schemas.JobFilters):
    Job = models.Job
    if filters.search:
        term = filters.search
        query = query.filter(
            Job.title.icontains(term, autoescape=True)
            | Job.description.icontains(term, autoescape=True)
            | Job.company.icontains(term, autoescape=True)
            | Job.category.icontains(term, autoescape=True)
        )
    if filters.category:
        query = query.filter(Job.category == filters.category)
    if filters.type:
        query = query.filter(Job.type == filters.type)
    if filters.location:
        query = query.filter(Job.location.icontains(filters.location, autoescape=True))
    if filters.remote is not None:
        query = query.filter(Job.remote == filters.remote)
    if filters.min_salary is not None:
        query = query.filter(Job.salary_min >= filters.min_salary)
    return query.filter(Job.active.is_(True))


def search_jobs(
    db: Session, filters: schemas.JobFilters, offset: int, limit: int
) -> Tuple[List[models.Job], int]:
    query = _apply_job_filters(db.query(models.Job), filters)
    total = query.count()
    jobs = (
        query.order_by(models.Job.posted_at.desc(), models.Job.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return jobs, total


def get_recent_jobs(db: Session, limit: int = 5) -> List[models.Job]:
    return (
        db.query(models.Job)
        .order_by(models.Job.posted_at.desc(), models.Job.id.desc())
        .limit(limit)
        .all()
    )


def get_categories(db: Session) -> List[str]:
    rows = db.query(models.Job.category).distinct().order_by(models.Job.category).all()
    return [row[0] for row in rows]


# --- UserJob CRUD ---
def get_user_job(db: Session, user_id: int, job_id: int):
    return (
        db.query(models.UserJob)
        .filter(models.UserJob.user_id == user_id, models.UserJob.job_id == job_id)
        .first()
    )


def get_user_job_by_transaction(db: Session, transaction_id: int):
    return (
        db.query(models.UserJob)
        .filter(models.UserJob.transaction_id == transaction_id)
        .first()
    )


def upsert_user_job(db: Session, user_id: int, job_id: int, **values):
    """Insert or update the single row for (user, job).

    Like ``get_or_create_user_by_nullifier``, call it before staging other
    changes: a lost insert race rolls the session back before updating.
    """
    user_job = get_user_job(db, user_id, job_id)
    if user_job is None:
        try:
            user_job = models.UserJob(user_id=user_id, job_id=job_id, **values)
            db.add(user_job)
            db.flush()
            return user_job
        except IntegrityError:
            db.rollback()
            user_job = get_user_job(db, user_id, job_id)

    for key, value in values.items():
        setattr(user_job, key, value)
    db.add(user_job)
    db.flush()
    return user_job


def get_user_jobs(db: Session, user_id: int, status: Optional[models.UserJobStatus] = None):
    query = (
        db.query(models.UserJob)
        .options(joinedload(models.UserJob.job))
        .filter(models.UserJob.user_id == user_id)
    )
    if status:
        query = query.filter(models.UserJob.status == status)
    return query.order_by(models.UserJob.updated_at.desc(), models.UserJob.id.desc()).all()


def get_generated_links(db: Session, user_id: int):
    return (
        db.query(models.UserJob)
        .options(joinedload(models.UserJob.job), joinedload(models.UserJob.transaction))
        .filter(
            models.UserJob.user_id == user_id,
            models.UserJob.generated_link.isnot(None),
        )
        .order_by(models.UserJob.updated_at.desc(), models.UserJob.id.desc())
        .all()
    )


def count_user_jobs_by_status(db: Session, user_id: int) -> dict:
    rows = (
        db.query(models.UserJob.status, func.count(models.UserJob.id))
        .filter(models.UserJob.user_id == user_id)
        .group_by(models.UserJob.status)
        .all()
    )
    counts = {status: 0 for status in models.UserJobStatus}
    counts.update({status: count for status, count in rows})
    return counts


# --- Transaction CRUD ---
def create_transaction(
    db: Session,
    user_id: int,
    type: models.TransactionType,
    amount: float,
    reference: str,
    job_id: Optional[int] = None,
    chat_id: Optional[int] = None,
    world_id_transaction_id: Optional[str] = None,
):
    db_transaction = models.Transaction(
        user_id=user_id,
        type=type,
        amount=amount,
        status=models.TransactionStatus.PENDING,
        reference=reference,
        job_id=job_id,
        chat_id=chat_id,
        world_id_transaction_id=world_id_transaction_id,
    )
    db.add(db_transaction)
    db.flush()
    return db_transaction


def get_transaction(db: Session, transaction_id: int):
    return db.query(models.Transaction).filter(models.Transaction.id == transaction_id).first()


def get_transaction_by_reference(db: Session, reference: str):
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.reference == reference)
        .first()
    )


def get_transactions_for_user(db: Session, user_id: int):
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.user_id == user_id)
        .order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
        .all()
    )


def completed_transaction_totals(db: Session, user_id: int) -> Tuple[int, float]:
    count, total = (
        db.query(func.count(models.Transaction.id), func.coalesce(func.sum(models.Transaction.amount), 0))
        .filter(
            models.Transaction.user_id == user_id,
            models.Transaction.status == models.TransactionStatus.COMPLETED,
        )
        .one()
    )
    return count, float(total)


# --- Chat CRUD ---
def create_chat(db: Session, user_id: int, transaction_id: int, job_id: Optional[int], greeting: str):
    db_chat = models.Chat(user_id=user_id, transaction_id=transaction_id, job_id=job_id)
    db_chat.messages.append(models.ChatMessage(role=models.MessageRole.AI, content=greeting))
    db.add(db_chat)
    db.flush()
    return db_chat


def get_chat(db: Session, chat_id: int):
    return db.query(models.Chat).filter(models.Chat.id == chat_id).first()


def get_chat_for_user(db: Session, chat_id: int, user_id: int):
    return (
        db.query(models.Chat)
        .options(joinedload(models.Chat.job))
        .filter(models.Chat.id == chat_id, models.Chat.user_id == user_id)
        .first()
    )


def get_chat_by_transaction(db: Session, transaction_id: int):
    return db.query(models.Chat).filter(models.Chat.transaction_id == transaction_id).first()


def get_chats_for_user(db: Session, user_id: int):
    return (
        db.query(models.Chat)
        .options(joinedload(models.Chat.job))
        .filter(models.Chat.user_id == user_id)
        .order_by(models.Chat.updated_at.desc(), models.Chat.id.desc())
        .all()
    )


def add_chat_message(db: Session, chat: models.Chat, role: models.MessageRole, content: str):
    message = models.ChatMessage(role=role, content=content)
    chat.messages.append(message)
    chat.updated_at = models.utcnow()
    db.add(chat)
    db.flush()
    return message
