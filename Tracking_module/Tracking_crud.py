"""
Tracking CRUD operations
"""
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import distinct, func, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from Login_module.Utils.datetime_utils import now_utc
from .Tracking_model import (
    Attachment,
    AttachmentDownload,
    EmailOpen,
    TrackedEmail,
    generate_tracking_id,
)
from .Tracking_schema import LocationInfo, UNKNOWN

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tracked emails
# ---------------------------------------------------------------------------

def create_tracked_email(
    db: Session,
    user_id: str,
    subject: str,
    recipient: str,
    sender_email: Optional[str] = None,
    created_at=None,
) -> TrackedEmail:
    """Register an outgoing email and return it with its generated tracking id."""
    email = TrackedEmail(
        id=generate_tracking_id(),
        user_id=user_id,
        subject=subject,
        recipient=recipient,
        sender_email=sender_email,
        created_at=created_at or now_utc(),
    )
    try:
        db.add(email)
        db.commit()
        db.refresh(email)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create tracked email for user {user_id}: {e}", exc_info=True)
        raise

    logger.info(f"Tracked email created | ID: {email.id} | User: {user_id}")
    return email


def get_tracked_email(db: Session, email_id: str) -> Optional[TrackedEmail]:
    """Lookup without owner check, used by the public pixel endpoint"""
    return db.query(TrackedEmail).filter(TrackedEmail.id == email_id).first()


def get_user_tracked_email(db: Session, user_id: str, email_id: str) -> Optional[TrackedEmail]:
    return db.query(TrackedEmail).filter(
        TrackedEmail.id == email_id,
        TrackedEmail.user_id == user_id,
    ).first()


def list_user_tracked_emails(
    db: Session,
    user_id: str,
    offset: int,
    limit: int,
) -> Tuple[List[TrackedEmail], int]:
    """One page of the owner's emails, newest first, plus the total count."""
    q = db.query(TrackedEmail).filter(TrackedEmail.user_id == user_id)
    total = q.count()
    emails = q.order_by(TrackedEmail.created_at.desc()).offset(offset).limit(limit).all()
    return emails, total


def delete_tracked_email(db: Session, user_id: str, email_id: str) -> bool:
    """
    Delete an email together with its opens, attachments and downloads in one commit.
    Returns False when the email does not exist or belongs to someone else.
    """
    email = get_user_tracked_email(db, user_id, email_id)
    if not email:
        return False
    try:
        db.delete(email)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete tracked email {email_id}: {e}", exc_info=True)
        raise
    logger.info(f"Tracked email deleted | ID: {email_id} | User: {user_id}")
    return True


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

def create_attachment(
    db: Session,
    email: TrackedEmail,
    filename: str,
    storage_key: str,
    content_type: Optional[str] = None,
    size_bytes: Optional[int] = None,
    attachment_id: Optional[str] = None,
) -> Attachment:
    attachment = Attachment(
        id=attachment_id or generate_tracking_id(),
        email_id=email.id,
        user_id=email.user_id,
        filename=filename,
        storage_key=storage_key,
        content_type=content_type,
        size_bytes=size_bytes,
        created_at=now_utc(),
    )
    try:
        db.add(attachment)
        db.commit()
        db.refresh(attachment)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create attachment for email {email.id}: {e}", exc_info=True)
        raise
    return attachment


def get_attachment(db: Session, attachment_id: str) -> Optional[Attachment]:
    return db.query(Attachment).filter(Attachment.id == attachment_id).first()


def get_attachments_by_email(db: Session, email_id: str) -> List[Attachment]:
    return db.query(Attachment).filter(
        Attachment.email_id == email_id
    ).order_by(Attachment.created_at.asc()).all()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

def insert_event(db: Session, event) -> None:
    """Single-row insert; the storage layer's per-insert atomicity is all we rely on."""
    try:
        db.add(event)
        db.commit()
        db.refresh(event)
    except SQLAlchemyError:
        db.rollback()
        raise


def get_opens_for_email(db: Session, email_id: str) -> List[EmailOpen]:
    return db.query(EmailOpen).filter(
        EmailOpen.email_id == email_id
    ).order_by(EmailOpen.timestamp.asc(), EmailOpen.id.asc()).all()


def get_opens_for_emails(db: Session, email_ids: Sequence[str]) -> List[EmailOpen]:
    if not email_ids:
        return []
    return db.query(EmailOpen).filter(
        EmailOpen.email_id.in_(list(email_ids))
    ).order_by(EmailOpen.timestamp.asc(), EmailOpen.id.asc()).all()


def get_downloads_for_attachment(db: Session, attachment_id: str) -> List[AttachmentDownload]:
    return db.query(AttachmentDownload).filter(
        AttachmentDownload.attachment_id == attachment_id
    ).order_by(AttachmentDownload.timestamp.asc(), AttachmentDownload.id.asc()).all()


def count_user_emails(db: Session, user_id: str) -> int:
    return db.query(func.count(TrackedEmail.id)).filter(TrackedEmail.user_id == user_id).scalar() or 0


def count_user_opens(db: Session, user_id: str) -> int:
    return db.query(func.count(EmailOpen.id)).join(
        TrackedEmail, EmailOpen.email_id == TrackedEmail.id
    ).filter(TrackedEmail.user_id == user_id).scalar() or 0


def count_user_opened_emails(db: Session, user_id: str) -> int:
    return db.query(func.count(distinct(EmailOpen.email_id))).join(
        TrackedEmail, EmailOpen.email_id == TrackedEmail.id
    ).filter(TrackedEmail.user_id == user_id).scalar() or 0


def count_user_attachments(db: Session, user_id: str) -> int:
    return db.query(func.count(Attachment.id)).filter(Attachment.user_id == user_id).scalar() or 0


def count_user_downloads(db: Session, user_id: str) -> int:
    return db.query(func.count(AttachmentDownload.id)).join(
        Attachment, AttachmentDownload.attachment_id == Attachment.id
    ).filter(Attachment.user_id == user_id).scalar() or 0


def get_recent_user_opens(db: Session, user_id: str, limit: int = 10) -> List[Tuple[EmailOpen, TrackedEmail]]:
    return db.query(EmailOpen, TrackedEmail).join(
        TrackedEmail, EmailOpen.email_id == TrackedEmail.id
    ).filter(
        TrackedEmail.user_id == user_id
    ).order_by(EmailOpen.timestamp.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# Geolocation backfill
# ---------------------------------------------------------------------------

EVENT_MODELS = (EmailOpen, AttachmentDownload)


def get_unresolved_ips(db: Session, exclude: Iterable[str] = ("Unknown", "::1")) -> List[str]:
    """Distinct IPs that still have at least one event with an Unknown location."""
    excluded = list(exclude)
    ips = set()
    for model in EVENT_MODELS:
        rows = db.query(distinct(model.ip)).filter(
            model.city == UNKNOWN,
            model.ip.notin_(excluded),
        ).all()
        ips.update(row[0] for row in rows if row[0])
    return sorted(ips)


def update_unresolved_location(db: Session, ip: str, location: LocationInfo) -> int:
    """Write `location` into every still-Unknown event from `ip`; returns rows updated."""
    values = {
        "city": location.city,
        "region": location.region,
        "country": location.country,
        "country_code": location.country_code,
        "isp": location.isp,
        "org": location.org,
        "timezone": location.timezone,
        "lat": location.lat,
        "lon": location.lon,
        "is_mobile": location.is_mobile,
        "is_proxy": location.is_proxy,
        "is_hosting": location.is_hosting,
    }
    updated = 0
    try:
        for model in EVENT_MODELS:
            result = db.execute(
                update(model)
                .where(model.ip == ip, model.city == UNKNOWN)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to update location for {ip}: {e}", exc_info=True)
        raise
    return updated
