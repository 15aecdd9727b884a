from datetime import datetime, timedelta, timezone

import pytest

from Tracking_module import Tracking_crud, aggregator
from Tracking_module.Tracking_model import (
    Attachment, AttachmentDownload, EmailOpen, TrackedEmail, generate_tracking_id,
)
from Tracking_module.Tracking_schema import DeviceInfo, HitContext, LocationInfo

from conftest import OTHER_OWNER_ID, OWNER_ID

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def make_open(ip, minutes, city="Berlin", user_agent=None):
    event = EmailOpen(
        id=generate_tracking_id(),
        email_id="e" * 32,
        ip=ip,
        timestamp=T0 + timedelta(minutes=minutes),
        user_agent=user_agent,
    )
    event.apply_location(LocationInfo(city=city))
    event.apply_device(DeviceInfo(browser="Chrome", device_type="Desktop"))
    return event


# --- summarize_events / build_readers ---

def test_summary_of_no_events():
    summary = aggregator.summarize_events([])
    assert summary.count == 0
    assert summary.unique_readers == 0
    assert not summary.forward_detected
    assert summary.first_seen is None
    assert summary.last_seen is None


def test_same_ip_many_times_is_one_reader():
    events = [make_open("81.2.69.160", m) for m in (0, 5, 10)]
    summary = aggregator.summarize_events(events)

    assert summary.count == 3
    assert summary.unique_readers == 1
    assert not summary.forward_detected
    assert summary.first_seen == T0
    assert summary.last_seen == T0 + timedelta(minutes=10)


def test_two_ips_means_forwarded():
    summary = aggregator.summarize_events([make_open("81.2.69.160", 0), make_open("8.8.4.4", 1)])
    assert summary.unique_readers == 2
    assert summary.forward_detected


def test_readers_use_earliest_event_per_ip():
    events = [
        make_open("81.2.69.160", 30, city="Hamburg", user_agent="later"),
        make_open("8.8.4.4", 10, city="Paris", user_agent="paris"),
        make_open("81.2.69.160", 0, city="Berlin", user_agent="first"),
    ]
    readers = aggregator.build_readers(events)

    assert [r.ip for r in readers] == ["81.2.69.160", "8.8.4.4"]
    berlin = readers[0]
    assert berlin.count == 2
    assert berlin.location.city == "Berlin"
    assert berlin.user_agent == "first"
    assert berlin.first_seen == T0.isoformat()
    assert berlin.last_seen == (T0 + timedelta(minutes=30)).isoformat()
    assert readers[1].count == 1


# --- Queries ---

@pytest.fixture
def emails(db_session):
    created = []
    for i in range(3):
        created.append(Tracking_crud.create_tracked_email(
            db_session, OWNER_ID, f"Subject {i}", f"r{i}@example.com",
            created_at=T0 + timedelta(hours=i),
        ))
    return created


def test_tracked_email_columns():
    assert set(TrackedEmail.__table__.columns.keys()) == {
        "id", "user_id", "subject", "recipient", "sender_email", "created_at",
    }


def test_stats_with_no_emails(db_session):
    stats = aggregator.get_stats(db_session, OWNER_ID)
    assert stats.total_emails == 0
    assert stats.total_opens == 0
    assert stats.opened_emails == 0
    assert stats.open_rate == 0.0
    assert stats.recent_opens == []


def test_stats_counts_and_open_rate(db_session, recorder, emails):
    recorder.record_open(db_session, emails[0].id, HitContext(ip="81.2.69.160"))
    recorder.record_open(db_session, emails[0].id, HitContext(ip="81.2.69.160"))
    recorder.record_open(db_session, emails[1].id, HitContext(ip="8.8.4.4"))
    # Someone else's email does not count
    other = Tracking_crud.create_tracked_email(db_session, OTHER_OWNER_ID, "Other", "x@example.com")
    recorder.record_open(db_session, other.id, HitContext(ip="8.8.4.4"))

    stats = aggregator.get_stats(db_session, OWNER_ID)

    assert stats.total_emails == 3
    assert stats.total_opens == 3
    assert stats.opened_emails == 2
    assert stats.open_rate == 66.7
    assert len(stats.recent_opens) == 3
    assert {o.email_id for o in stats.recent_opens} == {emails[0].id, emails[1].id}
    assert stats.recent_opens[0].subject in {"Subject 0", "Subject 1"}


def test_recent_opens_are_capped(db_session, recorder, emails):
    for _ in range(12):
        recorder.record_open(db_session, emails[0].id, HitContext(ip="10.0.0.1"))

    stats = aggregator.get_stats(db_session, OWNER_ID)
    assert stats.total_opens == 12
    assert len(stats.recent_opens) == aggregator.RECENT_OPENS_LIMIT


def test_stats_include_attachments_and_downloads(db_session, recorder, emails):
    attachment = Tracking_crud.create_attachment(db_session, emails[0], "a.pdf", "k/a.pdf")
    recorder.record_download(db_session, attachment.id, HitContext(ip="81.2.69.160"))

    stats = aggregator.get_stats(db_session, OWNER_ID)
    assert stats.total_attachments == 1
    assert stats.total_downloads == 1


def test_email_details(db_session, recorder, emails):
    email = emails[0]
    recorder.record_open(db_session, email.id, HitContext(ip="81.2.69.160"))
    recorder.record_open(db_session, email.id, HitContext(ip="81.2.69.160"))
    recorder.record_open(db_session, email.id, HitContext(ip="8.8.4.4"))

    details = aggregator.get_email_details(db_session, OWNER_ID, email.id)

    assert details.id == email.id
    assert details.open_count == 3
    assert details.unique_opens == 2
    assert details.forward_detected
    assert len(details.opens) == 3
    assert len(details.readers) == 2
    assert details.pixel_url.endswith(f"/api/track/{email.id}/pixel.png")
    assert details.pixel_url in details.html_snippet
    assert details.first_opened_at is not None
    assert details.last_opened_at is not None


def test_details_of_unopened_email(db_session, emails):
    details = aggregator.get_email_details(db_session, OWNER_ID, emails[0].id)
    assert details.open_count == 0
    assert not details.forward_detected
    assert details.first_opened_at is None
    assert details.readers == []


def test_details_require_ownership(db_session, emails):
    assert aggregator.get_email_details(db_session, OTHER_OWNER_ID, emails[0].id) is None
    assert aggregator.get_email_details(db_session, OWNER_ID, "0" * 32) is None


def test_delete_removes_email_and_events(db_session, recorder, emails):
    email = emails[0]
    recorder.record_open(db_session, email.id, HitContext(ip="81.2.69.160"))
    attachment = Tracking_crud.create_attachment(db_session, email, "a.pdf", "k/a.pdf")
    recorder.record_download(db_session, attachment.id, HitContext(ip="81.2.69.160"))

    assert Tracking_crud.delete_tracked_email(db_session, OWNER_ID, email.id)

    assert aggregator.get_email_details(db_session, OWNER_ID, email.id) is None
    assert db_session.query(EmailOpen).filter(EmailOpen.email_id == email.id).count() == 0
    assert db_session.query(Attachment).count() == 0
    assert db_session.query(AttachmentDownload).count() == 0


def test_delete_of_someone_elses_email_is_refused(db_session, emails):
    assert not Tracking_crud.delete_tracked_email(db_session, OTHER_OWNER_ID, emails[0].id)
    assert aggregator.get_email_details(db_session, OWNER_ID, emails[0].id) is not None


def test_list_emails_newest_first_with_pagination(db_session, recorder, emails):
    recorder.record_open(db_session, emails[0].id, HitContext(ip="81.2.69.160"))

    first_page = aggregator.list_emails(db_session, OWNER_ID, page=1, limit=2)
    assert [e.subject for e in first_page.emails] == ["Subject 2", "Subject 1"]
    assert first_page.pagination.total == 3
    assert first_page.pagination.total_pages == 2

    second_page = aggregator.list_emails(db_session, OWNER_ID, page=2, limit=2)
    assert [e.subject for e in second_page.emails] == ["Subject 0"]
    assert second_page.emails[0].open_count == 1
    assert second_page.emails[0].unique_opens == 1


def test_list_emails_clamps_paging(db_session, emails):
    result = aggregator.list_emails(db_session, OWNER_ID, page=0, limit=1000)
    assert result.pagination.page == 1
    assert result.pagination.limit == aggregator.MAX_PAGE_LIMIT
    assert len(result.emails) == 3

    result = aggregator.list_emails(db_session, OWNER_ID, page=1, limit=0)
    assert result.pagination.limit == 1
    assert len(result.emails) == 1


def test_list_emails_empty(db_session):
    result = aggregator.list_emails(db_session, OWNER_ID)
    assert result.emails == []
    assert result.pagination.total == 0
    assert result.pagination.total_pages == 0


def test_list_attachments(db_session, recorder, emails):
    attachment = Tracking_crud.create_attachment(db_session, emails[0], "a.pdf", "k/a.pdf", "application/pdf", 3)
    recorder.record_download(db_session, attachment.id, HitContext(ip="81.2.69.160"))
    recorder.record_download(db_session, attachment.id, HitContext(ip="8.8.4.4"))

    views = aggregator.list_attachments(db_session, OWNER_ID, emails[0].id)

    assert len(views) == 1
    view = views[0]
    assert view.download_count == 2
    assert view.unique_downloads == 2
    assert view.forward_detected
    assert view.download_url.endswith(f"/api/track/download/{attachment.id}")
    assert len(view.readers) == 2
    assert aggregator.list_attachments(db_session, OTHER_OWNER_ID, emails[0].id) is None
