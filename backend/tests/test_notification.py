from __future__ import annotations

import asyncio
import random
import smtplib
from datetime import date

import pytest

from rivalwatch.notification import (
    CATEGORY_SUMMARIES,
    NotificationService,
    date_from_week,
    email_bodies,
    email_subject,
    report_to_email_params,
)
from rivalwatch.schemas.email import DiffReportEmail, EmailCategory, WaitlistOffboardingEmail, WaitlistOnboardingEmail
from rivalwatch.schemas.report import AggregatedReport, ReportCategory, ReportMetadata, RunRange


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host: str, port: int, timeout: float | None = None, rejected: set[str] | None = None) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.rejected = rejected or {"bounce@example.com"}
        self.tls = False
        self.login_args: tuple[str, str] | None = None
        self.sent: list[tuple[str, list[str], str]] = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def starttls(self, context=None) -> None:
        self.tls = True

    def login(self, user: str, password: str) -> None:
        self.login_args = (user, password)

    def sendmail(self, from_addr: str, to_addrs: list[str], msg: str) -> dict:
        if to_addrs[0] in self.rejected:
            raise smtplib.SMTPRecipientsRefused({to_addrs[0]: (550, b"no such user")})
        self.sent.append((from_addr, to_addrs, msg))
        return {}


def _report(pricing_summary: str | None = None) -> AggregatedReport:
    return AggregatedReport(
        categories={
            "pricing": ReportCategory(changes=["Pro now $49"], urls={"u": ["Pro now $49"]}, summary=pricing_summary),
            "branding": ReportCategory(),
        },
        metadata=ReportMetadata(
            generated_at="2024-03-20T00:00:00+00:00",
            week_number="12",
            run_range=RunRange(from_run="1", to_run="7"),
            competitor="Rival",
            url_count=1,
        ),
    )


def _diff_email() -> DiffReportEmail:
    return DiffReportEmail(
        competitor="Rival",
        week_number="12",
        from_date="17 Mar 2024",
        to_date="23 Mar 2024",
        data={"pricing": EmailCategory(changes=["Pro now $49"], summary="Pricier.")},
    )


def test_subjects_per_template_kind() -> None:
    assert email_subject(_diff_email()) == "Rival Weekly Roundup #12"
    assert email_subject(WaitlistOnboardingEmail(name="Sam")) == "You're Almost There"
    assert email_subject(WaitlistOffboardingEmail(login_url="https://app.example/login")) == "Welcome to RivalWatch"


def test_unknown_template_kind_raises() -> None:
    with pytest.raises(ValueError):
        email_subject({"kind": "trial-0-day"})  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        email_bodies({"kind": "trial-0-day"})  # type: ignore[arg-type]


def test_diff_report_body_escapes_html_and_lists_changes() -> None:
    params = _diff_email()
    params.data["pricing"].changes.append("<script>alert(1)</script>")
    text, html_body = email_bodies(params)
    assert "Pro now $49" in text
    assert "<script>" not in html_body
    assert "&lt;script&gt;" in html_body


def test_report_to_email_params_fills_missing_summaries() -> None:
    email = report_to_email_params(_report(), year=2024, rng=random.Random(0))

    assert email.competitor == "Rival"
    assert email.week_number == "12"
    assert set(email.data) == set(CATEGORY_SUMMARIES)
    assert email.data["pricing"].summary in CATEGORY_SUMMARIES["pricing"]["changes"]
    assert email.data["branding"].summary in CATEGORY_SUMMARIES["branding"]["no_changes"]
    assert email.from_date == "18 Mar 2024"
    assert email.to_date == "23 Mar 2024"


def test_report_to_email_params_keeps_enrichment_summary() -> None:
    email = report_to_email_params(_report("Prices climbing."), year=2024)
    assert email.data["pricing"].summary == "Prices climbing."


def test_date_from_week_uses_sunday_based_weeks() -> None:
    # 2024-01-01 is a Monday, so week 1 opens on Sunday 2023-12-31.
    assert date_from_week(1, 2024, 1) == date(2024, 1, 1)
    assert date_from_week(2, 2024, 1) == date(2024, 1, 8)


def test_send_reports_per_recipient_outcomes() -> None:
    FakeSMTP.instances.clear()
    service = NotificationService(
        host="smtp.example",
        port=587,
        from_email="reports@example.com",
        user="bot",
        password="secret",
        smtp_factory=FakeSMTP,
    )

    results = asyncio.run(service.send(_diff_email(), ["a@example.com", "bounce@example.com", "b@example.com"]))

    assert results.successful == ["a@example.com", "b@example.com"]
    assert results.failed == ["bounce@example.com"]
    smtp = FakeSMTP.instances[0]
    assert smtp.tls is True
    assert smtp.login_args == ("bot", "secret")
    assert "Subject: Rival Weekly Roundup #12" in smtp.sent[0][2]


def test_send_without_recipients_opens_no_connection() -> None:
    FakeSMTP.instances.clear()
    service = NotificationService(host="smtp.example", port=25, from_email="r@example.com", smtp_factory=FakeSMTP)
    results = asyncio.run(service.send(WaitlistOnboardingEmail(name="Sam"), []))
    assert results.successful == [] and results.failed == []
    assert FakeSMTP.instances == []


def test_date_from_week_agrees_with_current_week_number() -> None:
    from rivalwatch.paths import current_week_number

    saturday = date_from_week(12, 2024, 6)
    assert saturday == date(2024, 3, 23)
    assert current_week_number(saturday) == "12"
    assert current_week_number(date_from_week(12, 2024, 1)) == "12"


class DroppingSMTP(FakeSMTP):
    """Accepts the first message, then loses the connection."""

    def sendmail(self, from_addr: str, to_addrs: list[str], msg: str) -> dict:
        if self.sent:
            raise smtplib.SMTPServerDisconnected("Connection unexpectedly closed")
        return super().sendmail(from_addr, to_addrs, msg)


def test_dropped_connection_raises_for_retry() -> None:
    service = NotificationService(host="smtp.example", port=587, from_email="r@example.com", smtp_factory=DroppingSMTP)

    with pytest.raises(smtplib.SMTPServerDisconnected):
        asyncio.run(service.send(_diff_email(), ["a@example.com", "b@example.com", "c@example.com"]))


def test_sending_stops_at_deadline() -> None:
    FakeSMTP.instances.clear()
    ticks = iter([0.0, 1.0, 20.0, 20.0])
    service = NotificationService(
        host="smtp.example",
        port=587,
        from_email="r@example.com",
        connect_timeout_s=5,
        send_deadline_s=10,
        smtp_factory=FakeSMTP,
        clock=lambda: next(ticks),
    )

    with pytest.raises(TimeoutError):
        asyncio.run(service.send(_diff_email(), ["a@example.com", "b@example.com", "c@example.com"]))
    smtp = FakeSMTP.instances[0]
    assert smtp.timeout == 5
    assert [to for _, (to,), _ in smtp.sent] == ["a@example.com"]
