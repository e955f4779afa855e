"""
Error taxonomy shared by every service module.

Each error carries the HTTP status it maps to; main.py renders them as
{"error": message}.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class PermissionDenied(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404


class ServerError(AppError):
    status_code = 500
