"""Errors raised by the upload and retrieval handlers.

Each error carries the HTTP status code it is reported with. Upload errors are
rendered as JSON ``{"error": message}``; retrieval errors as plain text.
"""


class GatewayError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(GatewayError):
    status_code = 401


class PayloadTooLarge(GatewayError):
    status_code = 413


class NotFound(GatewayError):
    status_code = 404


class MethodNotAllowed(GatewayError):
    status_code = 405


class MissingInput(GatewayError):
    status_code = 500
