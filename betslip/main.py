import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request

from betslip.boto_s3 import ObjectStore, S3ObjectStore, create_s3_client
from betslip.compression import supported_formats
from betslip.database import (
    SubmissionTable,
    close_database_conn_pool,
    get_engine,
    init_db,
    open_database_conn_pool,
)
from betslip.logging import configure_logging
from betslip.schema import ImageAsset, SubmissionFailure, SubmissionPost, SubmissionResult
from betslip.submissions import ImageRejectedError, prepare_payment_image, submit_entry
from betslip.utils import Settings, get_settings

# --- ENVIRONMENT VARIABLES ---
if os.environ.get("ENV") == "development":
    print("Loading environment variables from .env file")
    load_dotenv()

MISSING_FIELDS_MESSAGE = (
    "Please fill in all fields, select at least one sport and one team."
)
MISSING_IMAGE_MESSAGE = "Please upload a payment confirmation screenshot."

FAILURE_STATUS = {
    SubmissionFailure.image_rejected: 400,
    SubmissionFailure.duplicate: 409,
    SubmissionFailure.upload_failed: 502,
    SubmissionFailure.insert_failed: 500,
}

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    await open_database_conn_pool()
    await init_db()
    log.info(f"Supported formats: {supported_formats()}")
    _app.state.object_store = S3ObjectStore(
        create_s3_client(settings), public_base_url=settings.public_base_url
    )
    yield
    await close_database_conn_pool()


app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins_list,
    allow_origin_regex=get_settings().allowed_origins_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_submission_table(engine: AsyncEngine = Depends(get_engine)) -> SubmissionTable:
    return SubmissionTable(engine)


@app.post("/submissions", status_code=201)
async def create_submission(
    name: str = Form(""),
    email: str = Form(""),
    sports: list[str] = Form(default=[]),
    teams: list[str] = Form(default=[]),
    payment_confirmation: UploadFile | None = File(None),
    settings: Settings = Depends(get_settings),
    store: ObjectStore = Depends(get_object_store),
    table: SubmissionTable = Depends(get_submission_table),
) -> SubmissionResult:
    try:
        entry = SubmissionPost(name=name, email=email, sports=sports, teams=teams)
    except ValidationError:
        raise HTTPException(status_code=400, detail=MISSING_FIELDS_MESSAGE)

    if payment_confirmation is None:
        raise HTTPException(status_code=400, detail=MISSING_IMAGE_MESSAGE)

    raw = ImageAsset(
        filename=payment_confirmation.filename or "",
        mime_type=payment_confirmation.content_type or "",
        data=await payment_confirmation.read(),
    )
    log.debug(f"Received {raw.filename!r} ({raw.mime_type}, {raw.size} bytes) from {entry.email}")

    try:
        image = await prepare_payment_image(
            raw, settings.preview_compression(), settings.max_image_bytes
        )
    except ImageRejectedError as e:
        raise HTTPException(
            status_code=FAILURE_STATUS[SubmissionFailure.image_rejected], detail=str(e)
        )

    result = await submit_entry(
        entry,
        image,
        store=store,
        table=table,
        upload_options=settings.upload_options(),
        cache_seconds=settings.upload_cache_seconds,
    )
    if not result.success:
        raise HTTPException(status_code=FAILURE_STATUS[result.failure], detail=result.message)
    return result


@app.get("/health")
async def health_check():
    """
    Health check endpoint to verify the service is running
    """
    return {"status": "ok", "message": "Service is running"}
