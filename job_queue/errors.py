"""Exception hierarchy for queued work."""
from __future__ import annotations


class JobError(Exception):
    """Base exception for job dispatch failures."""


class MalformedEnvelope(JobError):
    """A queued body that does not decode as a well-formed job envelope.

    Never retried: a malformed message cannot become well-formed.
    """

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


class QueueTransportError(JobError):
    """The shared list store could not be reached."""


class UnknownJobType(JobError):
    """A decoded job has no registered handler."""
