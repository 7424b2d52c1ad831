"""Email notifications over SMTP.

Templates are a tagged union (``kind``); subject and body are picked by an
isinstance dispatch and an unknown kind raises. Sending is per recipient: one
failed address never prevents delivery to the others.
"""
from __future__ import annotations

import asyncio
import html
import logging
import random
import smtplib
import ssl
import time
from datetime import date, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable

from rivalwatch.metrics import NOTIFICATIONS_SENT_TOTAL
from rivalwatch.models.diff import CATEGORIES
from rivalwatch.paths import current_week_number
from rivalwatch.schemas.email import (
    DiffReportEmail,
    EmailCategory,
    EmailTemplateParams,
    NotificationResults,
    WaitlistOffboardingEmail,
    WaitlistOnboardingEmail,
)
from rivalwatch.schemas.report import AggregatedReport

logger = logging.getLogger(__name__)

CATEGORY_TITLES = {
    "branding": "Branding",
    "integration": "Integrations",
    "pricing": "Pricing",
    "product": "Product",
    "positioning": "Positioning",
    "partnership": "Partnerships",
}

CATEGORY_SUMMARIES = {
    "branding": {
        "changes": [
            "Fresh paint job! They've switched up their look",
            "Brand refresh in the works. Interesting timing.",
            "They're trying something new with their look. Keep an eye out.",
        ],
        "no_changes": [
            "No makeover this week, same look as before",
            "Brand's holding steady, no new surprises",
        ],
    },
    "integration": {
        "changes": [
            "Fresh integrations just dropped",
            "New tools in their toolkit. Smart to watch which ones get attention.",
            "Building bridges to new platforms. Let's see who uses them.",
        ],
        "no_changes": [
            "Integration scene's quiet this week",
            "No new tech hookups to report",
        ],
    },
    "pricing": {
        "changes": [
            "Money moves! Price tags are shifting",
            "Prices are moving. Let's see who they're after.",
            "They're testing what people will pay. Smart to keep an eye on this.",
        ],
        "no_changes": [
            "Price tags staying put this round",
            "No surprises in the pricing department",
        ],
    },
    "product": {
        "changes": [
            "Feature factory's been busy",
            "Fresh features dropping. Worth watching what catches on.",
            "They're building new stuff. Keep an eye on what sticks.",
        ],
        "no_changes": [
            "Workshop's quiet this week. No new tools",
            "Same tools in the toolbox. No new features",
        ],
    },
    "positioning": {
        "changes": [
            "They're telling a new story. Wonder who's listening.",
            "Fresh pitch, fresh angle. Let's see if it lands.",
            "Changed how they talk about themselves. Keep an eye on this.",
        ],
        "no_changes": [
            "Same story, same stage",
            "Still singing the same tune",
        ],
    },
    "partnership": {
        "changes": [
            "New partnerships brewing. Could be interesting.",
            "They're teaming up. Smart to keep an eye on this.",
            "New names in their circle. Let's watch what happens.",
        ],
        "no_changes": [
            "Partnership dance floor's quiet",
            "No new alliance alerts",
        ],
    },
}

FALLBACK_SUMMARY = "Something's cooking, we're keeping tabs"


def default_summary(category: str, has_changes: bool, rng: random.Random | None = None) -> str:
    pool = CATEGORY_SUMMARIES.get(category, {}).get("changes" if has_changes else "no_changes")
    if not pool:
        return FALLBACK_SUMMARY
    return (rng or random).choice(pool)


def date_from_week(week_number: int, year: int, day_of_week: int = 1) -> date:
    """Calendar date ``day_of_week`` days after the Sunday that opens ``week_number``.

    Matches ``current_week_number``: week 1 starts on the Sunday on or before
    January 1st, so day 1 is that week's Monday and day 6 its Saturday.
    """
    jan1 = date(year, 1, 1)
    week_one_sunday = jan1 - timedelta(days=(jan1.weekday() + 1) % 7)
    return week_one_sunday + timedelta(days=(week_number - 1) * 7 + day_of_week)


def _run_day(run_id: str, default: int) -> int:
    # Runs go Monday ("1") to Saturday ("7"), never past the week's end.
    try:
        return min(max(int(run_id), 1), 6)
    except (TypeError, ValueError):
        return default


def report_to_email_params(
    report: AggregatedReport,
    *,
    year: int | None = None,
    rng: random.Random | None = None,
) -> DiffReportEmail:
    """Render-ready diff report: every category gets a summary and the date range is resolved."""
    meta = report.metadata
    week = int(meta.week_number or current_week_number())
    year = year or date.today().year
    from_date = date_from_week(week, year, _run_day(meta.run_range.from_run, 1))
    to_date = date_from_week(week, year, _run_day(meta.run_range.to_run, 6))

    data: dict[str, EmailCategory] = {}
    for name in CATEGORIES:
        category = report.categories.get(name)
        changes = list(category.changes) if category else []
        urls = dict(category.urls) if category else {}
        summary = category.summary if category and changes and category.summary else None
        data[name] = EmailCategory(
            changes=changes,
            urls=urls,
            summary=summary or default_summary(name, bool(changes), rng),
        )

    return DiffReportEmail(
        competitor=meta.competitor,
        week_number=f"{week:02d}",
        from_date=from_date.strftime("%d %b %Y"),
        to_date=to_date.strftime("%d %b %Y"),
        data=data,
    )


def email_subject(params: EmailTemplateParams) -> str:
    if isinstance(params, DiffReportEmail):
        return f"{params.competitor} Weekly Roundup #{params.week_number}"
    if isinstance(params, WaitlistOnboardingEmail):
        return "You're Almost There"
    if isinstance(params, WaitlistOffboardingEmail):
        return "Welcome to RivalWatch"
    raise ValueError(f"Unhandled template kind: {getattr(params, 'kind', params)!r}")


def _diff_report_bodies(params: DiffReportEmail) -> tuple[str, str]:
    text_lines = [
        f"{params.competitor} weekly roundup",
        f"{params.from_date} to {params.to_date}",
        "",
    ]
    html_parts = [
        f"<h1>{html.escape(params.competitor)} weekly roundup</h1>",
        f"<p>{html.escape(params.from_date)} to {html.escape(params.to_date)}</p>",
    ]
    for name in CATEGORIES:
        category = params.data.get(name)
        if category is None:
            continue
        title = CATEGORY_TITLES[name]
        text_lines.append(f"{title}: {category.summary}")
        text_lines.extend(f"  - {change}" for change in category.changes)
        text_lines.append("")
        html_parts.append(f"<h2>{title}</h2><p><em>{html.escape(category.summary)}</em></p>")
        if category.changes:
            items = "".join(f"<li>{html.escape(change)}</li>" for change in category.changes)
            html_parts.append(f"<ul>{items}</ul>")
    return "\n".join(text_lines), "\n".join(html_parts)


def email_bodies(params: EmailTemplateParams) -> tuple[str, str]:
    """(plain text, html) for a template."""
    if isinstance(params, DiffReportEmail):
        return _diff_report_bodies(params)
    if isinstance(params, WaitlistOnboardingEmail):
        greeting = f"Hi {params.name}," if params.name else "Hi there,"
        text = (
            f"{greeting}\n\nYou're on the list. We'll let you know as soon as "
            "your competitor tracking is ready."
        )
        return text, "<p>" + html.escape(text).replace("\n\n", "</p><p>") + "</p>"
    if isinstance(params, WaitlistOffboardingEmail):
        greeting = f"Hi {params.name}," if params.name else "Hi there,"
        text = (
            f"{greeting}\n\nYour account is ready. Log in to start tracking your "
            f"competitors: {params.login_url}"
        )
        return text, (
            f"<p>{html.escape(greeting)}</p><p>Your account is ready. "
            f'<a href="{html.escape(params.login_url)}">Log in</a> to start tracking your competitors.</p>'
        )
    raise ValueError(f"Unhandled template kind: {getattr(params, 'kind', params)!r}")


# Refusals scoped to one message; anything else (a dropped connection
# included) aborts the batch so the caller's retry policy applies.
PER_RECIPIENT_ERRORS = (
    smtplib.SMTPRecipientsRefused,
    smtplib.SMTPSenderRefused,
    smtplib.SMTPDataError,
)


class NotificationService:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        from_email: str,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        connect_timeout_s: float = 30,
        send_deadline_s: float = 540,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host = host
        self.port = port
        self.from_email = from_email
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.connect_timeout_s = connect_timeout_s
        self.send_deadline_s = send_deadline_s
        self._smtp_factory = smtp_factory
        self._clock = clock

    def _build_message(self, subject: str, text: str, html_body: str, to: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.from_email
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def _send_all(self, subject: str, text: str, html_body: str, recipients: list[str]) -> NotificationResults:
        # Runs in a worker thread that outlives a cancelled await, so it
        # stops on its own deadline instead of racing the step's retry.
        deadline = self._clock() + self.send_deadline_s
        results = NotificationResults()
        with self._smtp_factory(self.host, self.port, timeout=self.connect_timeout_s) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.user:
                server.login(self.user, self.password)
            for to in recipients:
                if self._clock() > deadline:
                    raise TimeoutError(
                        f"Send deadline of {self.send_deadline_s}s passed after "
                        f"{len(results.successful) + len(results.failed)} of {len(recipients)} recipients"
                    )
                try:
                    server.sendmail(self.from_email, [to], self._build_message(subject, text, html_body, to).as_string())
                except PER_RECIPIENT_ERRORS as exc:
                    logger.error("Failed to send email to %s: %s", to, exc)
                    results.failed.append(to)
                else:
                    results.successful.append(to)
        return results

    async def send(self, params: EmailTemplateParams, recipients: list[str]) -> NotificationResults:
        """Send one template to every recipient.

        Connection, login and mid-batch disconnect failures raise (the
        caller's retry policy applies); per-address rejections are reported
        in ``failed``.
        """
        subject = email_subject(params)
        text, html_body = email_bodies(params)
        if not recipients:
            return NotificationResults()

        results = await asyncio.to_thread(self._send_all, subject, text, html_body, list(recipients))
        NOTIFICATIONS_SENT_TOTAL.labels(template=params.kind, outcome="sent").inc(len(results.successful))
        NOTIFICATIONS_SENT_TOTAL.labels(template=params.kind, outcome="failed").inc(len(results.failed))
        logger.info(
            "Sent %s to %d recipients (%d failed)",
            params.kind,
            len(results.successful),
            len(results.failed),
        )
        return results
