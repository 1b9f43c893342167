import logging

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist, PermissionDenied, ValidationError
from django.http import Http404
from django.utils.deprecation import MiddlewareMixin

from .api import ApiError, send_error

logger = logging.getLogger(__name__)


class ApiExceptionMiddleware(MiddlewareMixin):
    """Renders exceptions escaping API views as the JSON error envelope."""

    def process_exception(self, request, exception):
        if isinstance(exception, ApiError):
            extra = {'code': exception.code} if exception.code else {}
            return send_error(exception.status, exception.message, exception.error, **extra)

        if isinstance(exception, ValidationError):
            if hasattr(exception, 'message_dict'):
                error = exception.message_dict
            else:
                error = exception.messages
            return send_error(400, 'Validation failed', error)

        if isinstance(exception, PermissionDenied):
            return send_error(403, str(exception) or 'You do not have permission to perform this action')

        if isinstance(exception, (Http404, ObjectDoesNotExist)):
            return send_error(404, str(exception) or 'Resource not found')

        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return send_error(500, 'Internal server error', str(exception) if settings.DEBUG else None)
