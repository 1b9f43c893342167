from functools import wraps
from threading import local

from django.shortcuts import get_object_or_404

from core.api import ApiError, send_error

_thread_locals = local()


def get_current_gym():
    return getattr(_thread_locals, 'gym', None)


def set_current_gym(gym):
    _thread_locals.gym = gym


def has_gym_permission(user, gym, required_roles):
    """
    Checks that the user belongs to the gym with one of the required roles.
    Super admins pass for any gym.
    """
    if not user.is_authenticated:
        return False

    if user.is_super_admin:
        return True

    if gym is None or user.gym_id != gym.id:
        return False

    if gym.owner_id == user.id:
        return 'owner' in required_roles
    return user.role in required_roles


def gym_role_required(roles, gym_required=True):
    """
    Restricts a view to the given roles within request.gym.
    Super admins must name a gym (X-Gym-Id) on gym-scoped views.
    """
    def decorator(view_func):
        @wraps(view_func)
        def _wrapped_view(request, *args, **kwargs):
            user = request.user
            gym = getattr(request, 'gym', None)

            if user.is_super_admin:
                if gym_required and gym is None:
                    return send_error(400, 'Gym context is required (X-Gym-Id header or gymId parameter)')
                return view_func(request, *args, **kwargs)

            if gym is None:
                return send_error(403, 'No gym associated with this account')

            if has_gym_permission(user, gym, roles):
                return view_func(request, *args, **kwargs)
            return send_error(403, 'You do not have permission to access this resource')
        return _wrapped_view
    return decorator


def super_admin_required(view_func):
    @wraps(view_func)
    def _wrapped_view(request, *args, **kwargs):
        if not request.user.is_super_admin:
            return send_error(403, 'Super admin access required')
        return view_func(request, *args, **kwargs)
    return _wrapped_view


def feature_required(feature):
    """Blocks the view when the current gym has the module switched off."""
    def decorator(view_func):
        @wraps(view_func)
        def _wrapped_view(request, *args, **kwargs):
            gym = getattr(request, 'gym', None)
            if gym is not None and not gym.has_feature(feature):
                return send_error(
                    403,
                    f"The '{feature}' feature is not available in your plan",
                    code='FEATURE_NOT_AVAILABLE',
                )
            return view_func(request, *args, **kwargs)
        return _wrapped_view
    return decorator


def require_gym(request):
    gym = getattr(request, 'gym', None)
    if gym is None:
        raise ApiError(400, 'Gym context is required')
    return gym


def get_gym_object_or_404(model_or_queryset, request, **lookup):
    """Fetches an object that belongs to request.gym."""
    return get_object_or_404(model_or_queryset, gym=require_gym(request), **lookup)
