"""Exception taxonomy shared by the maniforge core and CLI."""

from __future__ import annotations

from typing import Sequence


class ManiforgeError(RuntimeError):
    """Base class for every error the CLI reports without a traceback."""


class ManifestFormatError(ManiforgeError):
    """Raised when manifest text is empty, unparseable or of an unknown kind."""


class InputValidationError(ManiforgeError):
    """Raised when command input is rejected before any external call."""


class LocaleError(InputValidationError):
    """Raised for malformed, duplicate, missing or unknown locale tags."""


class InstallerArgumentError(InputValidationError):
    """Raised when an installer URL argument carries invalid modifiers."""


class DownloadError(ManiforgeError):
    """Base class for installer download failures."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class DownloadSizeExceededError(DownloadError):
    def __init__(self, url: str, max_size_mb: int) -> None:
        super().__init__(
            f"Download of {url} exceeds the configured limit of {max_size_mb} MB",
            url,
        )
        self.max_size_mb = max_size_mb


class InvalidUrlError(DownloadError):
    pass


class DownloadHttpError(DownloadError):
    def __init__(self, url: str, status: int, reason: str = "") -> None:
        detail = f" {reason}" if reason else ""
        super().__init__(f"Download of {url} failed with HTTP {status}{detail}", url)
        self.status = status


class DownloadTimeoutError(DownloadError):
    pass


class ForgeError(ManiforgeError):
    """Base class for failures reported by the forge (GitHub) API."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(ForgeError):
    pass


class RateLimitExceededError(ForgeError):
    pass


class ForbiddenError(ForgeError):
    pass


class ValidationRejectedError(ForgeError):
    pass


class BranchMergeConflictError(ForgeError):
    pass


class GenericSyncError(ForgeError):
    pass


class ForgeNetworkError(ForgeError):
    pass


class PackageParseError(ManiforgeError):
    """Raised when no installer metadata can be sniffed from downloaded files."""

    def __init__(self, urls: Sequence[str]) -> None:
        self.urls = list(urls)
        joined = ", ".join(self.urls)
        super().__init__(f"Unable to parse installer package(s): {joined}")
