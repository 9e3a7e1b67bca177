"""
Job envelopes — the tagged-union wire format placed on the dispatch queue.

Wire shape (UTF-8 JSON):

    {"task_type": "Email",
     "data": {"email_type": "Registration",
              "data": {"email": "...", "username": "...", "token": "..."}}}

The outer Job only knows its task_type; the payload stays an opaque
object until the matching task family decodes it. New task families or
email types are added by registering them in TASK_TYPES / EMAIL_PAYLOADS,
which leaves the wire shape of existing variants untouched.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Callable, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from job_queue.errors import MalformedEnvelope


# ──────────────────────────────────────────────────────────────
#  Tags
# ──────────────────────────────────────────────────────────────

class TaskType(str, Enum):
    EMAIL = "Email"


class EmailType(str, Enum):
    REGISTRATION = "Registration"
    RESET_PASSWORD = "ResetPassword"
    EMAIL_CHANGE = "EmailChange"
    MONTHLY_RECAP = "MonthlyRecap"
    WEEKLY_RECAP = "WeeklyRecap"
    YEARLY_RECAP = "YearlyRecap"
    DAILY_USAGE_RECAP = "DailyUsageRecap"


class DeliveryGuarantee(str, Enum):
    AT_MOST_ONCE = "at_most_once"
    AT_LEAST_ONCE_ENQUEUE = "at_least_once_enqueue"


# ──────────────────────────────────────────────────────────────
#  Payloads
# ──────────────────────────────────────────────────────────────

class _Payload(BaseModel):
    # Every field is required and typed; nothing is defaulted on decode.
    model_config = ConfigDict(extra="forbid", frozen=True, strict=True)


class RegisterPayload(_Payload):
    """Shared by Registration, ResetPassword and EmailChange."""
    email: str
    username: str
    token: str


class RecapPayload(_Payload):
    """Shared by the monthly, weekly and yearly digests."""
    email: str
    username: str


class DailyUsageRecapPayload(_Payload):
    email: str
    date: str
    usage_summary: str


EmailPayload = Union[RegisterPayload, RecapPayload, DailyUsageRecapPayload]

EMAIL_PAYLOADS: dict[EmailType, type[_Payload]] = {
    EmailType.REGISTRATION: RegisterPayload,
    EmailType.RESET_PASSWORD: RegisterPayload,
    EmailType.EMAIL_CHANGE: RegisterPayload,
    EmailType.MONTHLY_RECAP: RecapPayload,
    EmailType.WEEKLY_RECAP: RecapPayload,
    EmailType.YEARLY_RECAP: RecapPayload,
    EmailType.DAILY_USAGE_RECAP: DailyUsageRecapPayload,
}

DELIVERY_GUARANTEES: dict[EmailType, DeliveryGuarantee] = {
    EmailType.REGISTRATION: DeliveryGuarantee.AT_MOST_ONCE,
    EmailType.RESET_PASSWORD: DeliveryGuarantee.AT_MOST_ONCE,
    EmailType.EMAIL_CHANGE: DeliveryGuarantee.AT_MOST_ONCE,
    EmailType.DAILY_USAGE_RECAP: DeliveryGuarantee.AT_MOST_ONCE,
    EmailType.MONTHLY_RECAP: DeliveryGuarantee.AT_LEAST_ONCE_ENQUEUE,
    EmailType.WEEKLY_RECAP: DeliveryGuarantee.AT_LEAST_ONCE_ENQUEUE,
    EmailType.YEARLY_RECAP: DeliveryGuarantee.AT_LEAST_ONCE_ENQUEUE,
}


def delivery_guarantee(email_type: EmailType) -> DeliveryGuarantee:
    return DELIVERY_GUARANTEES[email_type]


# ──────────────────────────────────────────────────────────────
#  Envelopes
# ──────────────────────────────────────────────────────────────

class JobEmail(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    email_type: EmailType
    data: dict[str, Any]

    @classmethod
    def build(cls, email_type: EmailType, payload: EmailPayload) -> JobEmail:
        expected = EMAIL_PAYLOADS[email_type]
        if type(payload) is not expected:
            raise TypeError(
                f"{email_type.value} expects {expected.__name__}, "
                f"got {type(payload).__name__}"
            )
        return cls(email_type=email_type, data=payload.model_dump())

    def payload(self) -> EmailPayload:
        """Decode data under the payload shape of email_type."""
        model = EMAIL_PAYLOADS[self.email_type]
        try:
            return model.model_validate(self.data)
        except ValidationError as e:
            raise MalformedEnvelope(
                f"{self.email_type.value} payload does not match {model.__name__}: "
                f"{e.error_count()} error(s)"
            ) from e


class Job(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    task_type: TaskType
    data: dict[str, Any]

    @classmethod
    def email(cls, email_type: EmailType, payload: EmailPayload) -> Job:
        job_email = JobEmail.build(email_type, payload)
        return cls(task_type=TaskType.EMAIL, data=job_email.model_dump(mode="json"))

    def email_job(self) -> JobEmail:
        if self.task_type is not TaskType.EMAIL:
            raise MalformedEnvelope(f"{self.task_type.value} job is not an email job")
        try:
            return JobEmail.model_validate(self.data)
        except ValidationError as e:
            raise MalformedEnvelope(
                f"Email job data is not a JobEmail: {e.error_count()} error(s)"
            ) from e

    def describe(self) -> dict[str, str]:
        """Log-friendly tags; assumes the job already passed decode()."""
        tags = {"task_type": self.task_type.value}
        if self.task_type is TaskType.EMAIL:
            tags["email_type"] = str(self.data.get("email_type", ""))
        return tags


def _validate_email_job(job: Job) -> None:
    job.email_job().payload()


TASK_TYPES: dict[TaskType, Callable[[Job], None]] = {
    TaskType.EMAIL: _validate_email_job,
}


# ──────────────────────────────────────────────────────────────
#  Codec
# ──────────────────────────────────────────────────────────────

def encode(job: Job) -> bytes:
    return json.dumps(job.model_dump(mode="json"), ensure_ascii=False).encode("utf-8")


def decode(raw: Union[bytes, str]) -> Job:
    """
    Parse a queued body into a Job, validating every nesting level.

    Raises MalformedEnvelope if the body is not UTF-8 JSON, the outer or
    nested tag is unknown, or the innermost payload does not match its tag.
    """
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEnvelope("Envelope is not valid UTF-8") from e
    else:
        text = raw

    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedEnvelope(f"Envelope is not JSON: {e.msg}", raw=text) from e

    try:
        job = Job.model_validate(obj)
    except ValidationError as e:
        raise MalformedEnvelope(
            f"Envelope does not match Job: {e.error_count()} error(s)", raw=text
        ) from e

    try:
        TASK_TYPES[job.task_type](job)
    except MalformedEnvelope as e:
        e.raw = text
        raise
    return job
