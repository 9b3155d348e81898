"""Errors raised by the escalation engine."""


class EscalationError(Exception):
    """Base class for escalation workflow errors."""


class NotFoundError(EscalationError):
    """A reminder, medicine, patient or occurrence does not exist."""


class TransportFailure(EscalationError):
    """The message or voice provider could not deliver."""
