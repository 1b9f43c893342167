import logging

from django.db import transaction
from django.db.models import Q
from django.shortcuts import get_object_or_404

from accounts.forms import AccountForm
from accounts.models import User
from accounts.services import create_account
from core.api import ApiError, api_view, bind_form, paginate, send_created, send_success, validate_form
from .forms import GymFeaturesForm, GymForm
from .models import Gym
from .utils import gym_role_required, require_gym, super_admin_required

logger = logging.getLogger(__name__)


@api_view(['GET', 'POST'])
@super_admin_required
def gym_list(request):
    if request.method == 'POST':
        return _create_gym(request)

    gyms = Gym.objects.select_related('owner').order_by('-created_at')
    search = request.GET.get('search')
    if search:
        gyms = gyms.filter(Q(name__icontains=search) | Q(owner__email__icontains=search))
    is_active = request.GET.get('isActive')
    if is_active in ('true', 'false'):
        gyms = gyms.filter(is_active=is_active == 'true')

    items, pagination = paginate(request, gyms, Gym.to_dict)
    return send_success('Gyms retrieved', items, pagination=pagination)


def _create_gym(request):
    gym_form = validate_form(bind_form(GymForm, request.data))
    owner_data = request.data.get('owner') or {}
    owner_form = validate_form(AccountForm(owner_data))

    with transaction.atomic():
        owner, password = create_account(owner_form, User.Role.OWNER, password=owner_data.get('password'))
        gym = gym_form.save(commit=False)
        gym.owner = owner
        gym.save()
        owner.gym = gym
        owner.save(update_fields=['gym'])

    logger.info("Gym %s created with owner %s", gym.pk, owner.email)
    data = gym.to_dict()
    if not owner_data.get('password'):
        data['owner_temporary_password'] = password
    return send_created('Gym created', data)


@api_view(['GET', 'PUT', 'DELETE'])
@super_admin_required
def gym_detail(request, pk):
    gym = get_object_or_404(Gym.objects.select_related('owner'), pk=pk)

    if request.method == 'PUT':
        form = validate_form(bind_form(GymForm, request.data, instance=gym))
        gym = form.save()
        if 'is_active' in request.data:
            gym.is_active = bool(request.data['is_active'])
            gym.save(update_fields=['is_active', 'updated_at'])
        return send_success('Gym updated', gym.to_dict())

    if request.method == 'DELETE':
        gym.is_active = False
        gym.save(update_fields=['is_active', 'updated_at'])
        logger.info("Gym %s deactivated by %s", gym.pk, request.user.pk)
        return send_success('Gym deactivated')

    return send_success('Gym retrieved', gym.to_dict())


@api_view(['PUT'])
@super_admin_required
def gym_features(request, pk):
    gym = get_object_or_404(Gym, pk=pk)
    form = validate_form(bind_form(GymFeaturesForm, request.data, instance=gym))
    gym = form.save()
    return send_success('Gym features updated', gym.features)


@api_view(['GET', 'PUT'])
@gym_role_required(['owner', 'staff', 'member'])
def my_gym(request):
    gym = require_gym(request)

    if request.method == 'PUT':
        if not request.user.can_manage_finance:
            raise ApiError(403, 'Only the gym owner can update gym settings')
        form = validate_form(bind_form(GymForm, request.data, instance=gym))
        gym = form.save()
        return send_success('Gym updated', gym.to_dict())

    return send_success('Gym retrieved', gym.to_dict())
