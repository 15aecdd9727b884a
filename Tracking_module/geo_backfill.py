"""
Re-resolve events whose location is still "Unknown".

Hits recorded while the geolocation provider was down, slow or rate limited are
stored with the Unknown location. This job walks the distinct IPs behind those
rows, resolves each one once and rewrites the location columns of every
still-Unknown row for that IP. Runs from the scheduler or standalone:

    python -m Tracking_module.geo_backfill
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal
from . import Tracking_crud
from .geo_service import GeoResolver
from .ip_classifier import IpKind, IpRule, classify_ip, load_ip_rules, sentinel_location

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    ips_seen: int = 0
    resolved: int = 0
    sentinel: int = 0
    still_unknown: int = 0
    rows_updated: int = 0
    failed_ips: List[str] = field(default_factory=list)


def backfill_unknown_locations(
    db: Session,
    resolver: GeoResolver,
    rules: Optional[Sequence[IpRule]] = None,
    delay_seconds: float = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BackfillReport:
    if delay_seconds is None:
        delay_seconds = settings.GEO_BACKFILL_DELAY_SECONDS

    report = BackfillReport()
    for ip in Tracking_crud.get_unresolved_ips(db):
        classification = classify_ip(ip, rules)
        if classification.kind == IpKind.LOCAL:
            continue
        report.ips_seen += 1

        location = sentinel_location(classification)
        if location is not None:
            report.sentinel += 1
        else:
            location = resolver.resolve(ip)
            # Stay under the provider's free quota (45 requests/minute)
            sleep(delay_seconds)
            if location.is_unknown:
                report.still_unknown += 1
                continue
            report.resolved += 1

        try:
            report.rows_updated += Tracking_crud.update_unresolved_location(db, ip, location)
        except SQLAlchemyError:
            # Already rolled back and logged; the next sweep retries this IP
            report.failed_ips.append(ip)

    logger.info(
        f"Geo backfill finished | IPs: {report.ips_seen} | resolved: {report.resolved} | "
        f"sentinel: {report.sentinel} | still unknown: {report.still_unknown} | "
        f"rows updated: {report.rows_updated} | failed: {len(report.failed_ips)}"
    )
    return report


def run_backfill_job():
    """Scheduler entry point: own session, own resolver, never raises into the scheduler thread"""
    db = SessionLocal()
    try:
        backfill_unknown_locations(
            db,
            GeoResolver(),
            rules=load_ip_rules(settings.IP_RULES_FILE),
        )
    except Exception as e:
        logger.error(f"Geo backfill job failed: {e}", exc_info=True)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run_backfill_job()
