"""
Tracking Router - tracking pixel, attachment downloads and the owner API over recorded events
"""
import base64
import logging
import re
from functools import lru_cache
from typing import List

from botocore.exceptions import ClientError
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from deps import get_db
from Login_module.Utils.auth_user import CurrentUser, get_current_user
from Login_module.Utils.datetime_utils import to_utc_isoformat
from Login_module.Utils.kv_store import KeyValueStore, get_store
from Login_module.Utils.rate_limiter import check_rate_limit, get_client_ip
from . import Tracking_crud, aggregator
from .attachment_storage import AttachmentNotFound, AttachmentStorage, get_attachment_storage, safe_filename
from .event_recorder import EventRecorder
from .geo_service import GeoResolver
from .ip_classifier import load_ip_rules
from .Tracking_model import generate_tracking_id
from .Tracking_schema import (
    AttachmentView,
    CreateTrackedEmailRequest,
    EmailDetails,
    EmailListResponse,
    HitContext,
    TrackedEmailCreated,
    TrackingStats,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/track", tags=["Tracking"])

# 1x1 transparent PNG
PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

TRACKING_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def is_valid_tracking_id(value: str) -> bool:
    return bool(value and TRACKING_ID_PATTERN.match(value))


def _error(status_code: int, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


def _pixel_response() -> Response:
    return Response(content=PIXEL_PNG, media_type="image/png", headers=NO_CACHE_HEADERS)


def _first_language(accept_language: str) -> str:
    if not accept_language:
        return None
    first = accept_language.split(",")[0].split(";")[0].strip()
    return first or None


def hit_from_request(request: Request) -> HitContext:
    return HitContext(
        ip=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        referer=request.headers.get("Referer"),
        language=_first_language(request.headers.get("Accept-Language")),
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@lru_cache
def get_geo_resolver() -> GeoResolver:
    return GeoResolver()


@lru_cache
def get_event_recorder() -> EventRecorder:
    """One recorder per process; the IP table is loaded once at first use"""
    return EventRecorder(get_geo_resolver(), rules=load_ip_rules(settings.IP_RULES_FILE))


def get_rate_limited_user(
    response: Response,
    current_user: CurrentUser = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> CurrentUser:
    """Authenticated owner, limited per owner id. Store errors reject the request."""
    result = check_rate_limit(
        store,
        "api",
        current_user.id,
        settings.API_RATE_LIMIT_MAX_REQUESTS,
        settings.API_RATE_LIMIT_WINDOW_SECONDS,
        fail_open=False,
    )
    if not result.allowed:
        logger.warning(f"API rate limit exceeded for user {current_user.id}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(result.reset_seconds), **result.headers()},
        )
    for name, value in result.headers().items():
        response.headers[name] = value
    return current_user


def _hit_allowed(store: KeyValueStore, scope: str, ip: str) -> bool:
    """Per-IP limit for the public endpoints; a limited hit is still served, just not recorded"""
    result = check_rate_limit(
        store,
        scope,
        ip,
        settings.PIXEL_RATE_LIMIT_MAX_REQUESTS,
        settings.PIXEL_RATE_LIMIT_WINDOW_SECONDS,
        fail_open=True,
    )
    if not result.allowed:
        logger.warning(f"Rate limit exceeded on {scope} for IP {ip}, hit not recorded")
    return result.allowed


# ---------------------------------------------------------------------------
# Owner API
# ---------------------------------------------------------------------------

@router.post("/create", response_model=TrackedEmailCreated, status_code=status.HTTP_201_CREATED)
def create_tracked_email(
    payload: CreateTrackedEmailRequest,
    current_user: CurrentUser = Depends(get_rate_limited_user),
    db: Session = Depends(get_db),
):
    """
    Register an outgoing email and return the pixel to embed in it.
    """
    email = Tracking_crud.create_tracked_email(
        db,
        user_id=current_user.id,
        subject=payload.subject,
        recipient=payload.recipient,
        sender_email=payload.sender_email or current_user.email,
    )
    return TrackedEmailCreated(
        id=email.id,
        subject=email.subject,
        recipient=email.recipient,
        sender_email=email.sender_email,
        created_at=to_utc_isoformat(email.created_at),
        pixel_url=aggregator.pixel_url(email.id),
        html_snippet=aggregator.html_snippet(email.id),
    )


@router.get("/emails", response_model=EmailListResponse)
def list_tracked_emails(
    page: int = Query(1, description="1-indexed page number"),
    limit: int = Query(20, description="Page size, clamped to 1..100"),
    current_user: CurrentUser = Depends(get_rate_limited_user),
    db: Session = Depends(get_db),
):
    return aggregator.list_emails(db, current_user.id, page=page, limit=limit)


@router.get("/stats", response_model=TrackingStats)
def get_tracking_stats(
    current_user: CurrentUser = Depends(get_rate_limited_user),
    db: Session = Depends(get_db),
):
    return aggregator.get_stats(db, current_user.id)


@router.get("/emails/{email_id}", response_model=EmailDetails)
def get_tracked_email_details(
    email_id: str,
    current_user: CurrentUser = Depends(get_rate_limited_user),
    db: Session = Depends(get_db),
):
    if not is_valid_tracking_id(email_id):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid tracking ID")

    details = aggregator.get_email_details(db, current_user.id, email_id)
    if details is None:
        return _error(status.HTTP_404_NOT_FOUND, "Email not found")
    return details


@router.delete("/emails/{email_id}")
def delete_tracked_email(
    email_id: str,
    current_user: CurrentUser = Depends(get_rate_limited_user),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_attachment_storage),
):
    """
    Delete the email with all its opens, attachments and downloads.
    Stored attachment files are removed afterwards on a best-effort basis.
    """
    if not is_valid_tracking_id(email_id):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid tracking ID")

    storage_keys = [a.storage_key for a in Tracking_crud.get_attachments_by_email(db, email_id)]
    if not Tracking_crud.delete_tracked_email(db, current_user.id, email_id):
        return _error(status.HTTP_404_NOT_FOUND, "Email not found")

    for key in storage_keys:
        if not storage.delete_file(key):
            logger.warning(f"Stored attachment {key} was not deleted for email {email_id}")

    return {"success": True, "message": "Email deleted"}


@router.post(
    "/emails/{email_id}/attachments",
    response_model=AttachmentView,
    status_code=status.HTTP_201_CREATED,
)
def upload_attachment(
    email_id: str,
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_rate_limited_user),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_attachment_storage),
):
    """Store a file and return its tracked download link"""
    if not is_valid_tracking_id(email_id):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid tracking ID")

    email = Tracking_crud.get_user_tracked_email(db, current_user.id, email_id)
    if not email:
        return _error(status.HTTP_404_NOT_FOUND, "Email not found")

    content = file.file.read()
    if not content:
        return _error(status.HTTP_400_BAD_REQUEST, "Empty file")
    if len(content) > settings.MAX_ATTACHMENT_BYTES:
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "File too large")

    attachment_id = generate_tracking_id()
    filename = safe_filename(file.filename)
    key = storage.build_key(attachment_id, filename)
    try:
        storage.put_file(key, content, file.content_type)
    except (ClientError, ValueError) as e:
        logger.error(f"Attachment upload failed for email {email_id}: {e}")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Attachment storage unavailable")

    attachment = Tracking_crud.create_attachment(
        db,
        email,
        filename=filename,
        storage_key=key,
        content_type=file.content_type,
        size_bytes=len(content),
        attachment_id=attachment_id,
    )
    logger.info(f"Attachment created | ID: {attachment.id} | Email: {email_id} | Size: {len(content)}")
    return aggregator.attachment_view(db, attachment)


@router.get("/emails/{email_id}/attachments", response_model=List[AttachmentView])
def list_email_attachments(
    email_id: str,
    current_user: CurrentUser = Depends(get_rate_limited_user),
    db: Session = Depends(get_db),
):
    if not is_valid_tracking_id(email_id):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid tracking ID")

    attachments = aggregator.list_attachments(db, current_user.id, email_id)
    if attachments is None:
        return _error(status.HTTP_404_NOT_FOUND, "Email not found")
    return attachments


# ---------------------------------------------------------------------------
# Public hit endpoints
# ---------------------------------------------------------------------------

@router.get("/download/{attachment_id}")
def download_attachment(
    attachment_id: str,
    request: Request,
    db: Session = Depends(get_db),
    recorder: EventRecorder = Depends(get_event_recorder),
    store: KeyValueStore = Depends(get_store),
    storage: AttachmentStorage = Depends(get_attachment_storage),
):
    """Record the download, then stream the stored file"""
    if not is_valid_tracking_id(attachment_id):
        return _error(status.HTTP_404_NOT_FOUND, "Attachment not found")

    attachment = Tracking_crud.get_attachment(db, attachment_id)
    if not attachment:
        return _error(status.HTTP_404_NOT_FOUND, "Attachment not found")

    hit = hit_from_request(request)
    if _hit_allowed(store, "download", hit.ip):
        try:
            recorder.record_download(db, attachment_id, hit)
        except SQLAlchemyError as e:
            logger.error(f"Download of {attachment_id} served without being recorded: {e}")

    try:
        body = storage.get_file(attachment.storage_key)
    except AttachmentNotFound:
        logger.error(f"Stored file missing for attachment {attachment_id}: {attachment.storage_key}")
        return _error(status.HTTP_404_NOT_FOUND, "Attachment file not found")
    except (ClientError, ValueError) as e:
        logger.error(f"Attachment fetch failed for {attachment_id}: {e}")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Attachment storage unavailable")

    headers = {
        "Content-Disposition": f'attachment; filename="{safe_filename(attachment.filename)}"',
        **NO_CACHE_HEADERS,
    }
    return StreamingResponse(
        body,
        media_type=attachment.content_type or "application/octet-stream",
        headers=headers,
    )


@router.get("/{tracking_id}/pixel.png")
def tracking_pixel(
    tracking_id: str,
    request: Request,
    db: Session = Depends(get_db),
    recorder: EventRecorder = Depends(get_event_recorder),
    store: KeyValueStore = Depends(get_store),
):
    """
    Public tracking pixel. Always answers with the 1x1 PNG, whether or not the
    open could be recorded, so the email client never shows a broken image.
    """
    if not is_valid_tracking_id(tracking_id):
        logger.info(f"Pixel requested with invalid tracking ID: {tracking_id[:64]}")
        return _pixel_response()

    hit = hit_from_request(request)
    if _hit_allowed(store, "pixel", hit.ip):
        try:
            recorder.record_open(db, tracking_id, hit)
        except SQLAlchemyError as e:
            logger.error(f"Open for {tracking_id} served without being recorded: {e}")

    return _pixel_response()
