import logging

from django.utils.deprecation import MiddlewareMixin

from core.api import send_error
from .models import Gym
from .utils import set_current_gym

logger = logging.getLogger(__name__)

LOGIN_DISABLED_MESSAGE = 'Your login access has been disabled. Please contact your gym administrator.'


class GymMiddleware(MiddlewareMixin):
    """
    Resolves the gym a request acts on.

    Gym users are pinned to their own gym. Super admins may pick one with
    the X-Gym-Id header or the gymId query parameter. Members whose login
    the gym has switched off are turned away on every request.
    """

    def process_request(self, request):
        request.gym = None
        user = getattr(request, 'user', None)

        if user is not None and user.is_authenticated:
            if user.is_super_admin:
                gym_id = request.headers.get('X-Gym-Id') or request.GET.get('gymId')
                if gym_id:
                    try:
                        request.gym = Gym.objects.get(pk=int(gym_id))
                    except (ValueError, Gym.DoesNotExist):
                        logger.warning("Super admin %s requested unknown gym %s", user.pk, gym_id)
            elif user.gym_id:
                request.gym = user.gym

        set_current_gym(request.gym)

        if user is not None and user.is_authenticated and user.is_gym_member:
            profile = getattr(user, 'member_profile', None)
            if profile is not None and not profile.can_login:
                return send_error(403, LOGIN_DISABLED_MESSAGE, code='LOGIN_DISABLED')

    def process_response(self, request, response):
        set_current_gym(None)
        return response
