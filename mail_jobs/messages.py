"""
Plain-text email bodies, one builder per EmailType.

Each builder takes the decoded payload plus the app settings (for names
and links) and returns (to, subject, body).
"""
from __future__ import annotations

from typing import Callable

from config.settings import AppConfig
from models.jobs import (
    DailyUsageRecapPayload, EmailPayload, EmailType, RecapPayload,
    RegisterPayload,
)

OutgoingEmail = tuple[str, str, str]


def registration(app: AppConfig, data: RegisterPayload) -> OutgoingEmail:
    subject = "Verify your email address"
    body = (
        f"Hi {data.username},\n\n"
        f"Welcome to {app.name}! Please confirm your email address by opening this link:\n"
        f"{app.frontend_url}/#/verify-email?token={data.token}\n\n"
        f"If you did not create an account, you can ignore this email.\n\n"
        f"Cheers,\n{app.name} Team"
    )
    return data.email, subject, body


def reset_password(app: AppConfig, data: RegisterPayload) -> OutgoingEmail:
    subject = f"{app.name} - Reset your password {data.username}"
    reset_link = f"{app.base_url}/api/auth/reset-password?token={data.token}"
    body = (
        f"Hey {data.username}.\n"
        f"We received a request to reset your password. If you didn't make this request, "
        f"you can safely ignore this email.\n"
        f"Please reset your password by clicking the following link: {reset_link} "
        f"(this link will expire in 1 hour)\n\n"
        f"Cheers,\n{app.name}"
    )
    return data.email, subject, body


def email_change(app: AppConfig, data: RegisterPayload) -> OutgoingEmail:
    subject = "Verify your new email address"
    body = (
        f"Hi {data.username},\n\n"
        f"You have requested to change your email address.\n\n"
        f"Please click on the following link to verify your new email address:\n"
        f"{app.frontend_url}/#/verify-email?token={data.token}\n\n"
        f"This link will expire in 2 hours.\n\n"
        f"Note: Your login email will remain the same until you verify the new email.\n\n"
        f"If you didn't request this change, please ignore this email.\n\n"
        f"Best regards,\n{app.name} Team"
    )
    return data.email, subject, body


def _recap(period: str, highlights: list[str]) -> Callable[[AppConfig, RecapPayload], OutgoingEmail]:
    def build(app: AppConfig, data: RecapPayload) -> OutgoingEmail:
        subject = f"{app.name} - Your {period} Recap, {data.username}"
        lines = "\n".join(f"- {h}" for h in highlights)
        body = (
            f"Hey {data.username}.\n\n"
            f"This is your {period.lower()} recap for {app.name}!\n\n"
            f"{lines}\n\n"
            f"Keep up the great work!\n\n"
            f"Cheers,\n{app.name} Team"
        )
        return data.email, subject, body
    build.__name__ = f"{period.lower()}_recap"
    return build


monthly_recap = _recap("Monthly", ["Total workouts", "Weight change", "Meals logged"])
weekly_recap = _recap("Weekly", ["Workouts completed", "Weight change", "Meals logged", "Daily average calories"])
yearly_recap = _recap("Yearly", ["Workouts this year", "Weight change", "Meals logged", "Longest streak"])


def daily_usage_recap(app: AppConfig, data: DailyUsageRecapPayload) -> OutgoingEmail:
    subject = f"{app.name} - Daily Usage Recap for {data.date}"
    body = (
        f"Daily Usage Recap for {data.date}\n\n"
        f"{data.usage_summary}\n\n"
        f"Cheers,\n{app.name} Team"
    )
    return data.email, subject, body


BUILDERS: dict[EmailType, Callable[[AppConfig, EmailPayload], OutgoingEmail]] = {
    EmailType.REGISTRATION: registration,
    EmailType.RESET_PASSWORD: reset_password,
    EmailType.EMAIL_CHANGE: email_change,
    EmailType.MONTHLY_RECAP: monthly_recap,
    EmailType.WEEKLY_RECAP: weekly_recap,
    EmailType.YEARLY_RECAP: yearly_recap,
    EmailType.DAILY_USAGE_RECAP: daily_usage_recap,
}
