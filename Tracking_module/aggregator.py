"""
Read-side statistics over recorded opens and downloads.

Nothing here is cached or stored: every call recomputes from the event rows, so
results always reflect what has been recorded so far (no snapshot isolation
against inserts that land mid-request).
"""
import logging
import math
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from config import settings
from Login_module.Utils.datetime_utils import to_utc, to_utc_isoformat
from . import Tracking_crud
from .Tracking_model import Attachment, TrackedEmail
from .Tracking_schema import (
    AttachmentView,
    EmailDetails,
    EmailListItem,
    EmailListResponse,
    EventSummary,
    EventView,
    Pagination,
    ReaderView,
    RecentOpen,
    TrackingStats,
)

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100
RECENT_OPENS_LIMIT = 10


def pixel_url(email_id: str) -> str:
    return f"{settings.BASE_URL.rstrip('/')}/api/track/{email_id}/pixel.png"


def download_url(attachment_id: str) -> str:
    return f"{settings.BASE_URL.rstrip('/')}/api/track/download/{attachment_id}"


def html_snippet(email_id: str) -> str:
    return (
        f'<img src="{pixel_url(email_id)}" width="1" height="1" '
        f'style="display:none" alt="" />'
    )


# ---------------------------------------------------------------------------
# Pure aggregation
# ---------------------------------------------------------------------------

def summarize_events(events: Iterable) -> EventSummary:
    """count, distinct IPs, forward flag and first/last timestamps of an event set"""
    events = list(events)
    if not events:
        return EventSummary()

    timestamps = [to_utc(e.timestamp) for e in events]
    unique_readers = len({e.ip for e in events})
    return EventSummary(
        count=len(events),
        unique_readers=unique_readers,
        forward_detected=unique_readers > 1,
        first_seen=min(timestamps),
        last_seen=max(timestamps),
    )


def build_readers(events: Iterable) -> List[ReaderView]:
    """
    Group events by IP. Location, device and user agent come from the earliest
    event of each group; readers are returned in order of first appearance.
    """
    groups: Dict[str, list] = {}
    for event in sorted(events, key=lambda e: (to_utc(e.timestamp), e.id)):
        groups.setdefault(event.ip, []).append(event)

    readers = []
    for ip, group in groups.items():
        first = group[0]
        readers.append(ReaderView(
            ip=ip,
            location=first.location,
            device=first.device,
            user_agent=first.user_agent,
            count=len(group),
            first_seen=to_utc_isoformat(first.timestamp),
            last_seen=to_utc_isoformat(group[-1].timestamp),
        ))
    return readers


def event_view(event) -> EventView:
    return EventView(
        id=event.id,
        timestamp=to_utc_isoformat(event.timestamp),
        ip=event.ip,
        user_agent=event.user_agent,
        referer=getattr(event, "referer", None),
        language=event.language,
        location=event.location,
        device=event.device,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _email_list_item(email: TrackedEmail, opens: list) -> EmailListItem:
    summary = summarize_events(opens)
    return EmailListItem(
        id=email.id,
        subject=email.subject,
        recipient=email.recipient,
        sender_email=email.sender_email,
        created_at=to_utc_isoformat(email.created_at),
        pixel_url=pixel_url(email.id),
        open_count=summary.count,
        unique_opens=summary.unique_readers,
        forward_detected=summary.forward_detected,
        last_opened_at=to_utc_isoformat(summary.last_seen),
    )


def attachment_view(db: Session, attachment: Attachment) -> AttachmentView:
    downloads = Tracking_crud.get_downloads_for_attachment(db, attachment.id)
    summary = summarize_events(downloads)
    return AttachmentView(
        id=attachment.id,
        email_id=attachment.email_id,
        filename=attachment.filename,
        content_type=attachment.content_type,
        size_bytes=attachment.size_bytes,
        created_at=to_utc_isoformat(attachment.created_at),
        download_url=download_url(attachment.id),
        download_count=summary.count,
        unique_downloads=summary.unique_readers,
        forward_detected=summary.forward_detected,
        last_downloaded_at=to_utc_isoformat(summary.last_seen),
        downloads=[event_view(d) for d in downloads],
        readers=build_readers(downloads),
    )


def get_stats(db: Session, user_id: str) -> TrackingStats:
    total_emails = Tracking_crud.count_user_emails(db, user_id)
    opened_emails = Tracking_crud.count_user_opened_emails(db, user_id)
    open_rate = round(opened_emails / total_emails * 100, 1) if total_emails else 0.0

    recent = [
        RecentOpen(
            id=event.id,
            email_id=email.id,
            subject=email.subject,
            recipient=email.recipient,
            timestamp=to_utc_isoformat(event.timestamp),
            ip=event.ip,
            location=event.location,
            device=event.device,
        )
        for event, email in Tracking_crud.get_recent_user_opens(db, user_id, RECENT_OPENS_LIMIT)
    ]

    return TrackingStats(
        total_emails=total_emails,
        total_opens=Tracking_crud.count_user_opens(db, user_id),
        opened_emails=opened_emails,
        open_rate=open_rate,
        total_attachments=Tracking_crud.count_user_attachments(db, user_id),
        total_downloads=Tracking_crud.count_user_downloads(db, user_id),
        recent_opens=recent,
    )


def get_email_details(db: Session, user_id: str, email_id: str) -> Optional[EmailDetails]:
    email = Tracking_crud.get_user_tracked_email(db, user_id, email_id)
    if not email:
        return None

    opens = Tracking_crud.get_opens_for_email(db, email.id)
    summary = summarize_events(opens)
    item = _email_list_item(email, opens)

    return EmailDetails(
        **item.model_dump(),
        html_snippet=html_snippet(email.id),
        first_opened_at=to_utc_isoformat(summary.first_seen),
        opens=[event_view(o) for o in opens],
        readers=build_readers(opens),
        attachments=[
            attachment_view(db, a)
            for a in Tracking_crud.get_attachments_by_email(db, email.id)
        ],
    )


def list_emails(db: Session, user_id: str, page: int = 1, limit: int = 20) -> EmailListResponse:
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_LIMIT)

    emails, total = Tracking_crud.list_user_tracked_emails(
        db, user_id, offset=(page - 1) * limit, limit=limit
    )

    opens_by_email: Dict[str, list] = {}
    for event in Tracking_crud.get_opens_for_emails(db, [e.id for e in emails]):
        opens_by_email.setdefault(event.email_id, []).append(event)

    return EmailListResponse(
        emails=[_email_list_item(e, opens_by_email.get(e.id, [])) for e in emails],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


def list_attachments(db: Session, user_id: str, email_id: str) -> Optional[List[AttachmentView]]:
    email = Tracking_crud.get_user_tracked_email(db, user_id, email_id)
    if not email:
        return None
    return [attachment_view(db, a) for a in Tracking_crud.get_attachments_by_email(db, email.id)]
