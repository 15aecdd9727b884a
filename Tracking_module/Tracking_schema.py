"""
Tracking Schemas - value objects for events and Pydantic models for request/response validation
"""
import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN = "Unknown"


class LocationInfo(BaseModel):
    """Approximate location of a requester, embedded in every event"""
    model_config = ConfigDict(frozen=True)

    city: str = UNKNOWN
    region: str = UNKNOWN
    country: str = UNKNOWN
    country_code: str = ""
    isp: str = UNKNOWN
    org: str = ""
    timezone: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None
    is_mobile: bool = False
    is_proxy: bool = False
    is_hosting: bool = False

    @property
    def is_unknown(self) -> bool:
        return self.city == UNKNOWN


class DeviceInfo(BaseModel):
    """Device information parsed from the user agent"""
    model_config = ConfigDict(frozen=True)

    browser: str = Field(UNKNOWN, description="Browser or proxy name")
    browser_version: str = ""
    os: str = Field(UNKNOWN, description="Operating system")
    os_version: str = ""
    device_type: str = Field(UNKNOWN, description="Desktop, Mobile, Tablet, Bot or Email Proxy")
    is_bot: bool = False
    is_proxy: bool = False
    proxy_name: Optional[str] = None


class HitContext(BaseModel):
    """Raw request data for one inbound pixel/download hit"""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    language: Optional[str] = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+\-']+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$"


class CreateTrackedEmailRequest(BaseModel):
    """Request schema for registering an outgoing email"""
    subject: str = Field(..., min_length=1, max_length=500)
    recipient: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    sender_email: Optional[str] = Field(None, max_length=255)

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Subject is required")
        return v

    @field_validator("recipient")
    @classmethod
    def normalize_recipient(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("sender_email")
    @classmethod
    def validate_sender_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if not re.match(EMAIL_PATTERN, v):
            raise ValueError("Invalid sender email")
        return v


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class TrackedEmailCreated(BaseModel):
    id: str
    subject: str
    recipient: str
    sender_email: Optional[str] = None
    created_at: Optional[str] = None
    pixel_url: str
    html_snippet: str


class EventView(BaseModel):
    """One open or download as shown to the owner"""
    id: str
    timestamp: Optional[str] = None
    ip: str
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    language: Optional[str] = None
    location: LocationInfo
    device: DeviceInfo


class ReaderView(BaseModel):
    """All events from one IP address for one tracked item"""
    ip: str
    location: LocationInfo
    device: DeviceInfo
    user_agent: Optional[str] = None
    count: int
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None


class EventSummary(BaseModel):
    count: int = 0
    unique_readers: int = 0
    forward_detected: bool = False
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class AttachmentView(BaseModel):
    id: str
    email_id: str
    filename: str
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    created_at: Optional[str] = None
    download_url: str
    download_count: int = 0
    unique_downloads: int = 0
    forward_detected: bool = False
    last_downloaded_at: Optional[str] = None
    downloads: List[EventView] = []
    readers: List[ReaderView] = []


class EmailListItem(BaseModel):
    id: str
    subject: str
    recipient: str
    sender_email: Optional[str] = None
    created_at: Optional[str] = None
    pixel_url: str
    open_count: int = 0
    unique_opens: int = 0
    forward_detected: bool = False
    last_opened_at: Optional[str] = None


class EmailDetails(EmailListItem):
    html_snippet: str
    first_opened_at: Optional[str] = None
    opens: List[EventView] = []
    readers: List[ReaderView] = []
    attachments: List[AttachmentView] = []


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class EmailListResponse(BaseModel):
    success: bool = True
    emails: List[EmailListItem]
    pagination: Pagination


class RecentOpen(BaseModel):
    id: str
    email_id: str
    subject: str
    recipient: str
    timestamp: Optional[str] = None
    ip: str
    location: LocationInfo
    device: DeviceInfo


class TrackingStats(BaseModel):
    total_emails: int
    total_opens: int
    opened_emails: int
    open_rate: float = Field(..., description="Percent of emails opened at least once, one decimal")
    total_attachments: int = 0
    total_downloads: int = 0
    recent_opens: List[RecentOpen] = []
