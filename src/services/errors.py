"""Domain errors carrying a stable machine-readable code.

Services raise these; :mod:`src.main` renders them as
``{"success": false, "error": <message>, "code": <code>}`` with the
error's HTTP status.  Messages are citizen/staff-facing Indonesian text.
"""

from __future__ import annotations


class SatuPintuError(Exception):
    """Base class for every error surfaced to an API caller."""

    status_code: int = 400
    default_code: str = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationFailed(SatuPintuError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class Unauthorized(SatuPintuError):
    status_code = 401
    default_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", code: str | None = None) -> None:
        super().__init__(message, code)


class Forbidden(SatuPintuError):
    status_code = 403
    default_code = "FORBIDDEN"

    def __init__(
        self,
        message: str = "Anda tidak memiliki akses ke tiket ini",
        code: str | None = None,
    ) -> None:
        super().__init__(message, code)


class NotFound(SatuPintuError):
    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, message: str = "Tiket tidak ditemukan", code: str | None = None) -> None:
        super().__init__(message, code)


class Conflict(SatuPintuError):
    status_code = 409
    default_code = "CONFLICT"


class CooldownActive(SatuPintuError):
    status_code = 429
    default_code = "COOLDOWN"

    def __init__(self, wait_seconds: int) -> None:
        super().__init__(f"Tunggu {wait_seconds} detik sebelum meminta OTP baru")
        self.wait_seconds = wait_seconds

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["waitSeconds"] = self.wait_seconds
        return body


class DatastoreError(SatuPintuError):
    status_code = 500
    default_code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str = "Terjadi kesalahan pada basis data",
        code: str | None = None,
    ) -> None:
        super().__init__(message, code)


class ServiceUnavailable(SatuPintuError):
    status_code = 503
    default_code = "SERVICE_UNAVAILABLE"

    def __init__(
        self,
        message: str = "Layanan belum siap. Silakan coba lagi nanti.",
        code: str | None = None,
    ) -> None:
        super().__init__(message, code)
