"""Email template parameters: one variant per template kind, tagged by `kind`.

The pipeline itself only sends `diff-report`. The waitlist variants are
catalog entries for the account and signup surface, which sends them
through the same `NotificationService.send`.
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from rivalwatch.schemas.base import CamelModel


class EmailCategory(BaseModel):
    changes: list[str] = Field(default_factory=list)
    urls: dict[str, list[str]] = Field(default_factory=dict)
    summary: str


class DiffReportEmail(CamelModel):
    kind: Literal["diff-report"] = "diff-report"
    competitor: str
    week_number: str
    from_date: str
    to_date: str
    data: dict[str, EmailCategory]


class WaitlistOnboardingEmail(CamelModel):
    kind: Literal["waitlist-onboarding"] = "waitlist-onboarding"
    name: str = ""


class WaitlistOffboardingEmail(CamelModel):
    kind: Literal["waitlist-offboarding"] = "waitlist-offboarding"
    name: str = ""
    login_url: str


EmailTemplateParams = Annotated[
    Union[DiffReportEmail, WaitlistOnboardingEmail, WaitlistOffboardingEmail],
    Field(discriminator="kind"),
]


class NotificationResults(BaseModel):
    successful: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
