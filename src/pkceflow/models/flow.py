"""Authorization callback model."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AuthorizationResponse:
    """Query parameters carried by the redirect back from the provider."""

    code: str | None = field(default=None, repr=False)
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None

    def describe_error(self) -> str:
        return (
            f"{self.error} ({self.error_description or ''})"
            f"{' See: ' + self.error_uri if self.error_uri else ''}"
        )
