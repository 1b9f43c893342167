from functools import wraps

from core.api import send_error
from .models import Member, MemberAccessConfig


def member_access_required(feature, methods=None):
    """
    Applies the gym's member-portal rules to member users, optionally
    only for some HTTP methods. Owners, staff and super admins are not
    affected.
    """
    def decorator(view_func):
        @wraps(view_func)
        def _wrapped_view(request, *args, **kwargs):
            if request.user.is_gym_member and (methods is None or request.method in methods):
                member = Member.objects.filter(user=request.user).select_related('gym').first()
                if member is not None:
                    reason = MemberAccessConfig.for_gym(member.gym).denial_for(member, feature)
                    if reason:
                        return send_error(403, reason, code='MEMBER_ACCESS_DENIED')
            return view_func(request, *args, **kwargs)
        return _wrapped_view
    return decorator
