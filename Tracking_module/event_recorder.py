"""
Turns one raw pixel/download hit into one enriched, persisted event.

IP classification runs first and decides whether the geolocation provider is
called at all; the user agent is parsed afterwards and then overridden for
known proxies and security scanners.
"""
import logging
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from Login_module.Utils.datetime_utils import now_utc
from . import Tracking_crud
from .geo_service import GeoResolver
from .ip_classifier import (
    IpClassification,
    IpKind,
    IpRule,
    classify_ip,
    sentinel_device,
    sentinel_location,
)
from .Tracking_model import AttachmentDownload, EmailOpen, generate_tracking_id
from .Tracking_schema import DeviceInfo, HitContext, LocationInfo, UNKNOWN
from .user_agent_parser import parse_user_agent

logger = logging.getLogger(__name__)


class EventRecorder:

    def __init__(self, geo_resolver: GeoResolver, rules: Optional[Sequence[IpRule]] = None):
        self.geo_resolver = geo_resolver
        self.rules = rules

    def enrich(self, hit: HitContext):
        """Return (classification, location, device) for a hit without touching the database."""
        classification = classify_ip(hit.ip, self.rules)

        location = sentinel_location(classification)
        if location is None:
            location = self.geo_resolver.resolve(hit.ip)

        device = parse_user_agent(hit.user_agent)
        device = self._override_device(classification, device)
        return classification, location, device

    @staticmethod
    def _override_device(classification: IpClassification, device: DeviceInfo) -> DeviceInfo:
        proxy = sentinel_device(classification)
        if proxy is not None:
            return proxy
        if classification.kind == IpKind.SECURITY_SCANNER:
            return device.model_copy(update={"is_bot": True, "device_type": "Bot"})
        return device

    def _build_event(self, model, hit: HitContext, location: LocationInfo, device: DeviceInfo, **fields):
        event = model(
            id=generate_tracking_id(),
            timestamp=now_utc(),
            ip=hit.ip or UNKNOWN,
            user_agent=hit.user_agent,
            language=hit.language,
            **fields,
        )
        event.apply_location(location)
        event.apply_device(device)
        return event

    def _persist(self, db: Session, event, label: str):
        try:
            Tracking_crud.insert_event(db, event)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record {label}: {e}", exc_info=True)
            raise
        return event

    def record_open(self, db: Session, email_id: str, hit: HitContext) -> Optional[EmailOpen]:
        email = Tracking_crud.get_tracked_email(db, email_id)
        if not email:
            logger.info(f"Open for unknown email {email_id} ignored")
            return None

        classification, location, device = self.enrich(hit)
        event = self._build_event(
            EmailOpen, hit, location, device,
            email_id=email.id,
            referer=hit.referer,
        )
        self._persist(db, event, f"open for email {email_id}")

        logger.info(
            f"Email opened | ID: {email_id} | IP: {event.ip} ({classification.kind.value}) | "
            f"Location: {location.city}, {location.country} | Device: {device.device_type} / {device.browser}"
        )
        return event

    def record_download(self, db: Session, attachment_id: str, hit: HitContext) -> Optional[AttachmentDownload]:
        attachment = Tracking_crud.get_attachment(db, attachment_id)
        if not attachment:
            logger.info(f"Download for unknown attachment {attachment_id} ignored")
            return None

        classification, location, device = self.enrich(hit)
        event = self._build_event(
            AttachmentDownload, hit, location, device,
            attachment_id=attachment.id,
        )
        self._persist(db, event, f"download for attachment {attachment_id}")

        logger.info(
            f"Attachment downloaded | ID: {attachment_id} | IP: {event.ip} ({classification.kind.value}) | "
            f"Location: {location.city}, {location.country} | Device: {device.device_type} / {device.browser}"
        )
        return event
