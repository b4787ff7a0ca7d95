from __future__ import annotations


class QueuewatchError(Exception):
    """Base error for the Queuewatch agent."""


class ReportingNotConfiguredError(QueuewatchError):
    """No API key is configured, so the remote service cannot be called."""


class CommandSerializationError(QueuewatchError):
    """A job command blob could not be produced or decoded."""


class JobReconstructionError(QueuewatchError):
    """A retried job could not be rebuilt from its payload or re-enqueued."""


class UnknownJobClassError(JobReconstructionError):
    """The job class named by a retry request is not registered with this agent."""


class UnknownConnectionError(JobReconstructionError):
    """A queue connection name does not map to a configured Redis DSN."""
