from django.utils.crypto import get_random_string

from .models import User


def create_account(form, role, gym=None, password=None):
    """
    Saves a validated AccountForm as a new user with the given role.
    Returns (user, password); the password is generated when not supplied.
    """
    password = password or get_random_string(12)
    user = form.save(commit=False)
    user.username = _unique_username(user.email)
    user.role = role
    user.gym = gym
    user.set_password(password)
    user.save()
    return user, password


def _unique_username(email):
    base = email.split('@')[0][:140] or 'user'
    username = base
    while User.objects.filter(username=username).exists():
        username = f"{base}{get_random_string(4, '0123456789')}"
    return username
