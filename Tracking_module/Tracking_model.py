"""
Tracking Models - tracked emails, attachments and the open/download events recorded against them
"""
import secrets

from sqlalchemy import Column, String, Boolean, Float, Integer, Text, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import relationship

from database import Base
from .Tracking_schema import DeviceInfo, LocationInfo, UNKNOWN


def generate_tracking_id() -> str:
    """32 lowercase hex chars, used for items and events alike"""
    return secrets.token_hex(16)


class TrackedEmail(Base):
    __tablename__ = "tracked_emails"

    id = Column(String(32), primary_key=True, default=generate_tracking_id)
    user_id = Column(String(64), nullable=False, index=True)  # Owner (sub claim of the access token)
    subject = Column(String(500), nullable=False)
    recipient = Column(String(255), nullable=False)
    sender_email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    opens = relationship(
        "EmailOpen",
        back_populates="email",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EmailOpen.timestamp",
    )
    attachments = relationship(
        "Attachment",
        back_populates="email",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Attachment.created_at",
    )

    __table_args__ = (
        Index("idx_tracked_emails_user_created", "user_id", "created_at"),
    )


class Attachment(Base):
    __tablename__ = "attachments"

    id = Column(String(32), primary_key=True, default=generate_tracking_id)
    email_id = Column(String(32), ForeignKey("tracked_emails.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    storage_key = Column(String(512), nullable=False)
    content_type = Column(String(255), nullable=True)
    size_bytes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    email = relationship("TrackedEmail", back_populates="attachments")
    downloads = relationship(
        "AttachmentDownload",
        back_populates="attachment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AttachmentDownload.timestamp",
    )


class EventColumnsMixin:
    """Columns shared by opens and downloads: raw request data plus embedded Location and DeviceInfo"""

    id = Column(String(32), primary_key=True, default=generate_tracking_id)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    ip = Column(String(45), nullable=False, default=UNKNOWN, index=True)  # String supports both IPv4 and IPv6
    user_agent = Column(Text, nullable=True)
    language = Column(String(35), nullable=True)

    # Location
    city = Column(String(100), nullable=False, default=UNKNOWN)
    region = Column(String(100), nullable=False, default=UNKNOWN)
    country = Column(String(100), nullable=False, default=UNKNOWN)
    country_code = Column(String(8), nullable=False, default="")
    isp = Column(String(255), nullable=False, default=UNKNOWN)
    org = Column(String(255), nullable=False, default="")
    timezone = Column(String(64), nullable=False, default="")
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    is_mobile = Column(Boolean, nullable=False, default=False)
    is_proxy = Column(Boolean, nullable=False, default=False)
    is_hosting = Column(Boolean, nullable=False, default=False)

    # Device
    browser = Column(String(100), nullable=False, default=UNKNOWN)
    browser_version = Column(String(50), nullable=False, default="")
    os = Column(String(100), nullable=False, default=UNKNOWN)
    os_version = Column(String(50), nullable=False, default="")
    device_type = Column(String(20), nullable=False, default=UNKNOWN)
    is_bot = Column(Boolean, nullable=False, default=False)
    device_is_proxy = Column(Boolean, nullable=False, default=False)
    proxy_name = Column(String(100), nullable=True)

    def apply_location(self, location: LocationInfo) -> None:
        self.city = location.city
        self.region = location.region
        self.country = location.country
        self.country_code = location.country_code
        self.isp = location.isp
        self.org = location.org
        self.timezone = location.timezone
        self.lat = location.lat
        self.lon = location.lon
        self.is_mobile = location.is_mobile
        self.is_proxy = location.is_proxy
        self.is_hosting = location.is_hosting

    def apply_device(self, device: DeviceInfo) -> None:
        self.browser = device.browser
        self.browser_version = device.browser_version
        self.os = device.os
        self.os_version = device.os_version
        self.device_type = device.device_type
        self.is_bot = device.is_bot
        self.device_is_proxy = device.is_proxy
        self.proxy_name = device.proxy_name

    @property
    def location(self) -> LocationInfo:
        return LocationInfo(
            city=self.city,
            region=self.region,
            country=self.country,
            country_code=self.country_code or "",
            isp=self.isp,
            org=self.org or "",
            timezone=self.timezone or "",
            lat=self.lat,
            lon=self.lon,
            is_mobile=bool(self.is_mobile),
            is_proxy=bool(self.is_proxy),
            is_hosting=bool(self.is_hosting),
        )

    @property
    def device(self) -> DeviceInfo:
        return DeviceInfo(
            browser=self.browser,
            browser_version=self.browser_version or "",
            os=self.os,
            os_version=self.os_version or "",
            device_type=self.device_type,
            is_bot=bool(self.is_bot),
            is_proxy=bool(self.device_is_proxy),
            proxy_name=self.proxy_name,
        )


class EmailOpen(EventColumnsMixin, Base):
    __tablename__ = "email_opens"

    email_id = Column(String(32), ForeignKey("tracked_emails.id", ondelete="CASCADE"), nullable=False, index=True)
    referer = Column(Text, nullable=True)

    email = relationship("TrackedEmail", back_populates="opens")


class AttachmentDownload(EventColumnsMixin, Base):
    __tablename__ = "attachment_downloads"

    attachment_id = Column(String(32), ForeignKey("attachments.id", ondelete="CASCADE"), nullable=False, index=True)

    attachment = relationship("Attachment", back_populates="downloads")
