from functools import wraps

from django.utils.deprecation import MiddlewareMixin

from core.api import send_error
from .services import get_subscription_state

API_PREFIX = '/api/v1/'

EXEMPT_PREFIXES = (
    '/api/v1/auth/',
    '/api/v1/subscriptions/',
    '/api/v1/subscription-plans/',
    '/api/v1/pay/',
    '/api/v1/notifications/',
    '/api/v1/health',
)


class SubscriptionGuardMiddleware(MiddlewareMixin):
    """
    Blocks gym users once their gym's subscription is past its grace period.

    Sets request.subscription_status (active, trial, grace, expired, none)
    for every gym-scoped API request so views can surface renewal banners.
    """

    def process_request(self, request):
        request.subscription_status = None
        request.subscription_state = None

        if not request.path.startswith(API_PREFIX):
            return
        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated or user.is_super_admin:
            return
        gym = getattr(request, 'gym', None)
        if gym is None:
            return

        state = get_subscription_state(gym)
        request.subscription_state = state
        request.subscription_status = state.status

        if request.path.startswith(EXEMPT_PREFIXES):
            return
        if request.method == 'GET' and request.path.rstrip('/') == '/api/v1/gyms/me':
            return

        if not state.allows_access:
            return send_error(
                403,
                'Your gym subscription has expired. Please renew to continue.',
                code='SUBSCRIPTION_EXPIRED',
                subscription_status=state.status,
            )


def subscription_required(features=None):
    """
    Requires a usable subscription whose plan grants every listed feature.
    Super admins are not restricted.
    """
    features = features or []

    def decorator(view_func):
        @wraps(view_func)
        def _wrapped_view(request, *args, **kwargs):
            if request.user.is_super_admin:
                return view_func(request, *args, **kwargs)

            state = getattr(request, 'subscription_state', None)
            if state is None and getattr(request, 'gym', None) is not None:
                state = get_subscription_state(request.gym)
            if state is None or not state.allows_access:
                return send_error(403, 'An active subscription is required', code='SUBSCRIPTION_EXPIRED')

            plan = state.subscription.plan
            missing = [name for name in features if not plan.has_feature(name)]
            if missing:
                return send_error(
                    403,
                    f"Your plan does not include: {', '.join(missing)}",
                    code='FEATURE_NOT_AVAILABLE',
                    missing_features=missing,
                )
            return view_func(request, *args, **kwargs)
        return _wrapped_view
    return decorator
