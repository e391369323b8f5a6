# errors.py
from dataclasses import dataclass, field
from functools import wraps
import logging

from flask import jsonify

from core import db

logger = logging.getLogger(__name__)


class ShopError(Exception):
    kind = "error"
    status = 400

    def __init__(self, message, **data):
        self.message = message
        self.data = data  # extra detail for the caller, e.g. per-entry reasons
        super().__init__(message)


class ValidationError(ShopError):
    """Bad quantity, missing field or malformed identifier."""
    kind = "validation"
    status = 400


class AuthorizationError(ShopError):
    """Acting on somebody else's cart or order, or lacking a role."""
    kind = "authorization"
    status = 403


class NotFoundError(ShopError):
    kind = "not_found"
    status = 404


class ConflictError(ShopError):
    """The request is well formed but the current state does not allow it."""
    kind = "conflict"
    status = 409


class MailError(Exception):
    """Raised when a transactional email cannot be handed to the SMTP server."""


@dataclass
class Result:
    ok: bool
    message: str
    kind: str = "ok"
    data: dict = field(default_factory=dict)
    warnings: list = field(default_factory=list)

    @property
    def status(self):
        if self.ok:
            return 200
        return {
            ValidationError.kind: ValidationError.status,
            AuthorizationError.kind: AuthorizationError.status,
            NotFoundError.kind: NotFoundError.status,
            ConflictError.kind: ConflictError.status,
        }.get(self.kind, 400)

    @classmethod
    def success(cls, message, **data):
        return cls(ok=True, message=message, data=data)

    @classmethod
    def failure(cls, exc):
        return cls(ok=False, message=exc.message, kind=exc.kind, data=dict(exc.data))

    def to_dict(self):
        payload = {"success": self.ok, "message": self.message}
        if not self.ok:
            payload["error"] = self.kind
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        payload.update(self.data)
        return payload


def outcome(func):
    """Run a shop operation as one unit of work and report a ``Result``."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ShopError as exc:
            db.session.rollback()
            logger.warning("%s rejected (%s): %s", func.__name__, exc.kind, exc.message)
            return Result.failure(exc)

    return wrapper


def respond(result):
    """JSON body plus the HTTP status matching the outcome."""
    return jsonify(result.to_dict()), result.status
