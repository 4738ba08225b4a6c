from contextlib import asynccontextmanager
from typing import List, Optional
from urllib.parse import urlencode

import structlog
from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import logic
import models
import schemas
from auth import CurrentUser
from database import SessionLocal, create_db_and_tables, get_db
from exceptions import AppError, BadRequestError, UpstreamError
from nonce_store import NonceStore, get_nonce_store
from observability import init_observability
from request_id_middleware import RequestIdMiddleware
from settings import Settings, get_settings
from world_id import WorldIDClient, get_world_id_client

# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    with SessionLocal() as db:
        logic.seed_jobs(db, get_settings().seed_data_path)
    logger.info("Do Up API started")
    yield
    logger.info("Do Up API stopped")


app = FastAPI(
    title="Do Up",
    description="Backend API for the Do Up job board",
    version="0.1.0",
    lifespan=lifespan,
)

_settings = get_settings()

# --- Edge middleware --- #
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.rate_limit],
    enabled=_settings.rate_limit_enabled,
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


# --- Error mapping --- #
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    content = {"detail": exc.message}
    if isinstance(exc, UpstreamError) and exc.code:
        content["code"] = exc.code
    if exc.status_code >= 500:
        logger.error("Request failed", status_code=exc.status_code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": "Rate limit exceeded. Please try again later."},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    content = {"detail": "Something went wrong!"}
    if get_settings().environment == "development":
        content["message"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


@app.get("/", tags=["Meta"])
async def read_root():
    return {"message": "Welcome to Do Up API"}


@app.get("/health", tags=["Meta"])
async def health_check():
    return {"status": "healthy"}


# --- Auth Endpoints --- #
@app.get("/api/auth/nonce", response_model=schemas.NonceResponse, tags=["Auth"])
def get_nonce(nonce_store: NonceStore = Depends(get_nonce_store)):
    return schemas.NonceResponse(nonce=nonce_store.issue())


@app.post("/api/auth/verify", response_model=schemas.LoginResponse, tags=["Auth"])
async def verify_world_id(
    proof: schemas.WorldIDProof,
    db: Session = Depends(get_db),
    world_id: WorldIDClient = Depends(get_world_id_client),
    settings: Settings = Depends(get_settings),
):
    return await logic.login_with_world_id(db, proof, world_id, settings)


@app.get("/api/auth/callback", tags=["Auth"])
async def oauth_callback(
    code: Optional[str] = None,
    db: Session = Depends(get_db),
    world_id: WorldIDClient = Depends(get_world_id_client),
    settings: Settings = Depends(get_settings),
):
    """Finish the World ID OAuth flow and hand the token to the front-end."""
    if not code:
        raise BadRequestError("Authorization code missing")

    frontend = settings.frontend_url.rstrip("/")
    try:
        token = await logic.login_with_oauth_code(db, code, world_id, settings)
    except (AppError, SQLAlchemyError) as exc:
        logger.error("OAuth callback failed", exc_info=exc)
        return RedirectResponse(url=f"{frontend}/auth-error")
    return RedirectResponse(url=f"{frontend}/auth-success?{urlencode({'token': token})}")


@app.post("/api/auth/login", response_model=schemas.LoginResponse, tags=["Auth"])
def wallet_login(
    request: schemas.WalletLoginRequest,
    db: Session = Depends(get_db),
    nonce_store: NonceStore = Depends(get_nonce_store),
    settings: Settings = Depends(get_settings),
):
    return logic.login_with_wallet(db, request, nonce_store, settings)


@app.post("/api/auth/demo", response_model=schemas.LoginResponse, tags=["Auth"])
def demo_login(
    request: schemas.DemoLoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return logic.demo_login(db, request, settings)


# --- Payment Endpoints --- #
@app.get("/api/payments/uuid", response_model=schemas.UuidResponse, tags=["Payments"])
def generate_uuid():
    return schemas.UuidResponse(id=logic.generate_reference())


@app.post("/api/payments/verify", tags=["Payments"])
async def verify_payment(
    request: schemas.VerifyPaymentRequest,
    db: Session = Depends(get_db),
    world_id: WorldIDClient = Depends(get_world_id_client),
):
    await logic.verify_payment(db, request, world_id)
    return {"status": "success", "message": "Payment verified successfully"}


@app.post(
    "/api/payments/create",
    response_model=schemas.CreatePaymentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Payments"],
)
def create_payment(
    current_user: CurrentUser,
    request: schemas.CreatePaymentRequest,
    db: Session = Depends(get_db),
):
    transaction = logic.record_transaction(
        db,
        user_id=current_user.user_id,
        type=request.type,
        amount=request.amount,
        job_id=request.metadata.job_id,
        chat_id=request.metadata.chat_id,
    )
    return schemas.CreatePaymentResponse(reference=transaction.reference, id=transaction.id)


@app.post("/api/payments/callback", tags=["Payments"])
def payment_callback(
    callback: schemas.PaymentCallback,
    x_callback_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    logic.handle_payment_callback(db, callback, settings, x_callback_secret)
    return {"message": "Callback processed successfully"}


# --- Job Endpoints --- #
@app.get("/api/jobs", response_model=schemas.JobList, tags=["Jobs"])
def get_jobs(
    search: Optional[str] = None,
    category: Optional[str] = None,
    type: Optional[models.JobType] = None,
    location: Optional[str] = None,
    remote: Optional[bool] = None,
    minSalary: Optional[float] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filters = schemas.JobFilters(
        search=search,
        category=category,
        type=type,
        location=location,
        remote=remote,
        min_salary=minSalary,
    )
    return logic.list_jobs(db, filters, page, limit, settings)


@app.get("/api/jobs/categories", response_model=List[str], tags=["Jobs"])
def get_categories(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    return logic.list_categories(db, settings)


@app.get("/api/jobs/user", response_model=List[schemas.UserJob], tags=["Jobs"])
def get_user_jobs(
    current_user: CurrentUser,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return logic.list_user_jobs(db, current_user.user_id, status)


@app.post("/api/jobs/complete-link", response_model=schemas.JobLinkResponse, tags=["Jobs"])
async def complete_job_link(
    current_user: CurrentUser,
    request: schemas.CompleteJobLinkRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user_job = await logic.complete_job_link(
        db, current_user.user_id, request.transaction_id, request.job_id, settings
    )
    return schemas.JobLinkResponse(link=user_job.generated_link)


@app.get("/api/jobs/{job_id}", response_model=schemas.Job, tags=["Jobs"])
def get_job(job_id: int, db: Session = Depends(get_db)):
    return logic.get_job(db, job_id)


@app.post("/api/jobs/{job_id}/status", response_model=schemas.JobStatusResponse, tags=["Jobs"])
def update_job_status(
    current_user: CurrentUser,
    job_id: int,
    request: schemas.JobStatusUpdate,
    db: Session = Depends(get_db),
):
    user_job = logic.update_job_status(db, current_user.user_id, job_id, request.status)
    return schemas.JobStatusResponse(job_status=user_job.status)


@app.post("/api/jobs/{job_id}/link", response_model=schemas.PaymentPending, tags=["Jobs"])
def generate_job_link(
    current_user: CurrentUser,
    job_id: int,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    transaction = logic.start_paid_action(
        db,
        current_user.user_id,
        models.TransactionType.JOB_LINK,
        settings.job_link_price,
        job_id=job_id,
    )
    return schemas.PaymentPending(reference=transaction.reference, transaction_id=transaction.id)


# --- Chat Endpoints --- #
@app.post("/api/chat/create", response_model=schemas.PaymentPending, tags=["Chat"])
def create_chat(
    current_user: CurrentUser,
    request: schemas.CreateChatRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    transaction = logic.start_paid_action(
        db,
        current_user.user_id,
        models.TransactionType.CHAT,
        settings.chat_price,
        job_id=request.job_id,
    )
    return schemas.PaymentPending(reference=transaction.reference, transaction_id=transaction.id)


@app.post("/api/chat/complete", response_model=schemas.ChatCreated, tags=["Chat"])
async def complete_chat(
    current_user: CurrentUser,
    request: schemas.CompleteChatRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    chat = await logic.complete_chat(
        db, current_user.user_id, request.transaction_id, request.job_id, settings
    )
    return schemas.ChatCreated(chat_id=chat.id, messages=chat.messages)


@app.post("/api/chat/message", response_model=schemas.ChatMessages, tags=["Chat"])
async def send_message(
    current_user: CurrentUser,
    request: schemas.ChatMessageIn,
    db: Session = Depends(get_db),
):
    chat = await logic.send_chat_message(db, current_user.user_id, request.chat_id, request.message)
    return schemas.ChatMessages(messages=chat.messages)


@app.get("/api/chat/history", response_model=List[schemas.Chat], tags=["Chat"])
def get_chat_history(current_user: CurrentUser, db: Session = Depends(get_db)):
    return logic.crud.get_chats_for_user(db, current_user.user_id)


@app.get("/api/chat/{chat_id}", response_model=schemas.Chat, tags=["Chat"])
def get_chat(current_user: CurrentUser, chat_id: int, db: Session = Depends(get_db)):
    return logic.get_chat(db, current_user.user_id, chat_id)


# --- Profile Endpoints --- #
@app.get("/api/profile", response_model=schemas.Profile, tags=["Profile"])
def get_profile(current_user: CurrentUser, db: Session = Depends(get_db)):
    return logic.get_profile(db, current_user.user_id)


@app.put("/api/profile", response_model=schemas.Profile, tags=["Profile"])
def update_profile(
    current_user: CurrentUser,
    update: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
):
    return logic.update_profile(db, current_user.user_id, update)


@app.get("/api/profile/statistics", response_model=schemas.UserStatistics, tags=["Profile"])
def get_statistics(current_user: CurrentUser, db: Session = Depends(get_db)):
    return logic.get_statistics(db, current_user.user_id)


@app.get("/api/profile/transactions", response_model=List[schemas.Transaction], tags=["Profile"])
def get_transaction_history(current_user: CurrentUser, db: Session = Depends(get_db)):
    return logic.crud.get_transactions_for_user(db, current_user.user_id)


@app.get("/api/profile/links", response_model=List[schemas.GeneratedLink], tags=["Profile"])
def get_generated_links(current_user: CurrentUser, db: Session = Depends(get_db)):
    return logic.crud.get_generated_links(db, current_user.user_id)


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=_settings.port)
