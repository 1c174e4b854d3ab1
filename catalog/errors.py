"""
Error taxonomy for the catalog service.

Every error carries a ``kind`` (rendered to clients as ``{"error": kind}``)
and the HTTP status it maps to. ``UpstreamFailure`` and ``CacheFailure`` never
reach a client: the first is logged and skipped by ingestion, the second is
absorbed by the cache-aside layer.
"""
from typing import Optional


class CatalogError(Exception):
    kind = "InternalError"
    status_code = 500

    def __init__(self, detail: Optional[str] = None, *, status_code: Optional[int] = None):
        super().__init__(detail or self.kind)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.kind}
        if self.detail:
            body["detail"] = self.detail
        return body


class ValidationError(CatalogError):
    kind = "ValidationError"
    status_code = 400


class AuthError(CatalogError):
    kind = "AuthError"
    status_code = 401


class QuotaExceeded(CatalogError):
    kind = "QuotaExceeded"
    status_code = 429


class NotFound(CatalogError):
    kind = "NotFound"
    status_code = 404


class StoreFailure(CatalogError):
    kind = "StoreFailure"
    status_code = 500


class UpstreamFailure(CatalogError):
    kind = "UpstreamFailure"
    status_code = 502


class CacheFailure(CatalogError):
    kind = "CacheFailure"
    status_code = 500
