"""Custom exceptions for amcheck."""


class AmcheckError(Exception):
    """Base exception for all amcheck errors."""


class ConfigurationError(AmcheckError):
    """Exception raised for configuration related errors."""


class AuthenticationError(AmcheckError):
    """Exception raised when the IMAP server refuses the login."""


class ImapError(AmcheckError):
    """Exception raised when an IMAP command fails or returns garbage."""


class MailFormatError(AmcheckError):
    """Exception raised for a malformed mail header.

    Never escapes header normalisation: the mail is dropped with a warning.
    """


class DateSubtractionError(AmcheckError):
    """Exception raised when a day offset cannot be subtracted from now."""

    def __init__(self, days: int) -> None:
        super().__init__(f"Could not subtract {days} days from now.")
        self.days = days


class BodyFetchError(AmcheckError):
    """Exception raised when a body batch comes back incomplete."""


class BodyDecodeError(AmcheckError):
    """Exception raised when a mail body is not valid UTF-8."""
