import logging

from django.contrib.auth import authenticate, login, logout, update_session_auth_hash

from core.api import ApiError, api_view, send_success, validate_form
from tenants.middleware import LOGIN_DISABLED_MESSAGE
from .forms import ChangePasswordForm, LoginForm
from .models import User

logger = logging.getLogger(__name__)


@api_view(['POST'], login=False)
def login_view(request):
    form = validate_form(LoginForm(request.data))
    username = form.cleaned_data['username']

    # Accept an email address in place of the username
    if '@' in username:
        match = User.objects.filter(email__iexact=username).first()
        if match:
            username = match.username

    user = authenticate(request, username=username, password=form.cleaned_data['password'])
    if user is None:
        logger.warning("Failed login for %s", form.cleaned_data['username'])
        raise ApiError(401, 'Invalid credentials')
    if user.gym_id and not user.gym.is_active and not user.is_super_admin:
        raise ApiError(403, 'This gym has been deactivated')
    if user.is_gym_member and not _member_can_login(user):
        raise ApiError(403, LOGIN_DISABLED_MESSAGE)

    login(request, user)
    return send_success('Login successful', _profile(user))


@api_view(['POST'])
def logout_view(request):
    logout(request)
    return send_success('Logged out')


@api_view(['GET'])
def me(request):
    return send_success('Profile retrieved', _profile(request.user))


@api_view(['POST'])
def change_password(request):
    form = validate_form(ChangePasswordForm(request.user, request.data))
    request.user.set_password(form.cleaned_data['new_password'])
    request.user.save()
    update_session_auth_hash(request, request.user)
    return send_success('Password changed')


def _profile(user):
    data = user.to_dict()
    data['gym'] = user.gym.to_summary() if user.gym_id else None
    return data


def _member_can_login(user):
    profile = getattr(user, 'member_profile', None)
    return profile is None or profile.can_login
