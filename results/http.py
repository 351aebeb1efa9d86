"""
JSON request parsing and error responses shared by the results and exams views.
"""
import json
import logging
from functools import wraps

from django.http import JsonResponse

from .exceptions import ResultsError, ValidationError

logger = logging.getLogger(__name__)


def parse_json_body(request):
    """Decoded JSON object of a POST body; an empty body gives {}."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError('Request body is not valid JSON.')
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object.')
    return data


def error_response(exc):
    return JsonResponse(exc.to_dict(), status=exc.status_code)


def json_errors(view_func):
    """
    Turn a ResultsError raised by a view into its JSON error body and status.
    Anything else propagates to Django's handler.
    """
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except ResultsError as e:
            logger.warning(
                f"{view_func.__name__} rejected ({e.error_type}): {e.message} {e.context}"
            )
            return error_response(e)
    return wrapper
