"""
DRF exceptions for refused allocation mutations and the project-wide
exception handler (``REST_FRAMEWORK['EXCEPTION_HANDLER']``).

Every error body has the shape ``{"ok": false, "error": {...}}``.
"""
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


class ConflictError(APIException):
    """A bed/ward mutation was refused by the allocation guard."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = 'conflict'

    def __init__(self, report):
        self.report = report
        super().__init__(detail=report.message, code=report.code)


class ResourceNotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'not_found'

    def __init__(self, missing):
        self.missing = missing
        super().__init__(detail=missing.message, code='not_found')


def _error(body, status_code):
    return Response({'ok': False, 'error': body}, status=status_code)


def api_exception_handler(exc, context):
    # Conflict and not-found payloads keep every field the guard produced
    if isinstance(exc, ConflictError):
        return _error(exc.report.to_payload(), exc.status_code)
    if isinstance(exc, ResourceNotFound):
        return _error(exc.missing.to_payload(), exc.status_code)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        return _error({'code': 'server_error', 'message': 'Internal server error.'}, 500)
    message = resp.data
    if isinstance(message, dict) and 'detail' in message:
        message = message['detail']
    return _error({'code': 'api_error', 'message': message}, resp.status_code)
