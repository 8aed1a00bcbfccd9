"""Exception hierarchy for the translation-to-Scala generator."""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from i18n_codegen.models import ValidationReport


class CodegenError(Exception):
    """Base class for every error raised by the generator."""


class ConfigError(CodegenError):
    """Raised when the configuration cannot produce a runnable pipeline."""


class FetchError(CodegenError):
    """Raised when translations could not be retrieved from Lokalise."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(FetchError):
    """Transport failure, timeout or an unexpected HTTP status."""


class AuthError(FetchError):
    """Missing, blank or rejected API token."""


class MalformedResponseError(FetchError):
    """The service answered, but not with the payload shape we expect."""


class ValidationFailedError(CodegenError):
    """Raised when the validation report contains at least one error."""

    def __init__(self, report: "ValidationReport"):
        self.report = report
        errors = report.errors
        lines = [f"Validation failed with {len(errors)} error(s):"]
        lines.extend(f"  - {problem}" for problem in errors)
        super().__init__("\n".join(lines))


class MalformedPlaceholderError(CodegenError):
    """Raised when a translation value does not follow the placeholder grammar."""

    def __init__(self, key: str, locale: str, offset: int, reason: str):
        self.key = key
        self.locale = locale
        self.offset = offset
        self.reason = reason
        super().__init__(f"Malformed placeholder in '{key}' [{locale}] at byte {offset}: {reason}")


class UnrenderableKeyError(CodegenError):
    """Raised when a translation key cannot become a valid Scala declaration."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Cannot render key '{key}': {reason}")
