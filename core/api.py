import json
import math
from functools import wraps

from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt


class ApiError(Exception):
    """Raised from views and services; rendered by ApiExceptionMiddleware."""

    def __init__(self, status, message, error=None, code=None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.error = error
        self.code = code


def send_success(message, data=None, status=200, **extra):
    payload = {'success': True, 'message': message}
    if data is not None:
        payload['data'] = data
    payload.update(extra)
    return JsonResponse(payload, status=status)


def send_created(message, data=None, **extra):
    return send_success(message, data, status=201, **extra)


def send_error(status, message, error=None, **extra):
    payload = {'success': False, 'message': message}
    if error is not None:
        payload['error'] = error
    payload.update(extra)
    return JsonResponse(payload, status=status)


def parse_json(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ApiError(400, 'Request body must be valid JSON')
    if not isinstance(data, dict):
        raise ApiError(400, 'Request body must be a JSON object')
    return data


def _positive_int(value, default):
    try:
        value = int(value)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def paginate(request, queryset, serializer, default_limit=10, max_limit=100):
    """
    Slices a queryset by ?page=&limit= and returns (items, pagination).
    """
    page = _positive_int(request.GET.get('page'), 1)
    limit = min(_positive_int(request.GET.get('limit'), default_limit), max_limit)
    total = queryset.count()
    offset = (page - 1) * limit
    items = [serializer(obj) for obj in queryset[offset:offset + limit]]
    pagination = {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': math.ceil(total / limit) if total else 0,
    }
    return items, pagination


def form_errors(form):
    return {field: [str(e) for e in errors] for field, errors in form.errors.items()}


def validate_form(form):
    if not form.is_valid():
        raise ApiError(400, 'Validation failed', form_errors(form))
    return form


def api_view(methods, login=True):
    """
    JSON endpoint decorator: restricts methods, requires a session user
    unless login=False, and exposes the parsed body as request.data.
    """
    def decorator(view_func):
        @wraps(view_func)
        def _wrapped_view(request, *args, **kwargs):
            if request.method not in methods:
                return send_error(405, f'Method {request.method} not allowed')
            if login and not request.user.is_authenticated:
                return send_error(401, 'Authentication required')
            if request.method in ('POST', 'PUT', 'PATCH', 'DELETE') and request.content_type == 'application/json':
                request.data = parse_json(request)
            elif request.method in ('POST', 'PUT', 'PATCH'):
                request.data = request.POST.dict()
            else:
                request.data = {}
            return view_func(request, *args, **kwargs)
        return csrf_exempt(_wrapped_view)
    return decorator


def bind_form(form_class, data, instance=None, **kwargs):
    """
    Binds JSON data to a ModelForm. On update, fields missing from the
    payload keep the instance's current values; on create they take the
    model field defaults (unchecked checkboxes would otherwise read False).
    """
    if instance is not None and instance.pk:
        current = model_to_dict(instance, fields=form_class._meta.fields)
        data = {**current, **data}
    else:
        fields = form_class._meta.fields
        defaults = {
            field.name: field.get_default()
            for field in form_class._meta.model._meta.concrete_fields
            if field.has_default() and field.name in fields
        }
        data = {**defaults, **data}
    return form_class(data, instance=instance, **kwargs)
