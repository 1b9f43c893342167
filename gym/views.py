import logging

from django.db import transaction
from django.db.models import Q
from django.shortcuts import get_object_or_404
from django.utils import timezone

from accounts.forms import AccountForm
from accounts.models import User
from accounts.services import create_account
from core.api import ApiError, api_view, bind_form, paginate, send_created, send_success, validate_form
from subscriptions.middleware import subscription_required
from tenants.models import Gym
from tenants.utils import feature_required, get_gym_object_or_404, gym_role_required, require_gym, super_admin_required
from . import services
from .forms import (
    AttendanceConfigForm, AvailableMethodsForm, BulkMemberAccessForm, MemberAccessConfigForm, MemberAccessForm,
    MemberForm, MemberProfileForm, NewMemberForm, PlanForm, StaffForm,
)
from .models import (
    Attendance, AttendanceConfig, AttendanceMethod, AttendanceOverrideLog, Member, MemberAccessConfig, Plan, Staff,
)
from .utils import member_access_required

logger = logging.getLogger(__name__)


def _member_profile(request):
    member = Member.objects.select_related('user', 'plan', 'gym').filter(user=request.user).first()
    if member is None:
        raise ApiError(404, 'Member profile not found')
    return member


# =============================================================================
# Members
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff'])
def member_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        account_form = validate_form(AccountForm(request.data))
        form = validate_form(NewMemberForm(request.data, gym=gym))
        member, invoice, password = services.create_member(
            gym,
            account_form,
            form.cleaned_data['plan'],
            user=request.user,
            start=form.cleaned_data['subscription_start'],
            profile=form.profile,
            password=request.data.get('password'),
        )
        data = member.to_dict()
        data['invoice'] = invoice.to_dict()
        if not request.data.get('password'):
            data['temporary_password'] = password
        return send_created('Member created', data)

    members = Member.objects.filter(gym=gym).select_related('user', 'plan')
    search = request.GET.get('search')
    if search:
        members = members.filter(
            Q(user__first_name__icontains=search) | Q(user__last_name__icontains=search)
            | Q(user__email__icontains=search) | Q(member_code__icontains=search)
        )
    if request.GET.get('status'):
        members = members.filter(status=request.GET['status'])
    if request.GET.get('planId'):
        members = members.filter(plan_id=request.GET['planId'])

    items, pagination = paginate(request, members, Member.to_dict)
    return send_success('Members retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
def member_stats(request):
    return send_success('Member statistics retrieved', services.member_stats(require_gym(request)))


@api_view(['GET', 'PUT', 'DELETE'])
@gym_role_required(['owner', 'staff'])
def member_detail(request, pk):
    member = get_gym_object_or_404(Member.objects.select_related('user', 'plan'), request, pk=pk)

    if request.method == 'PUT':
        form = validate_form(bind_form(MemberForm, request.data, instance=member, gym=member.gym))
        with transaction.atomic():
            member = form.save()
            account = request.data.get('user')
            if account:
                account_form = validate_form(bind_form(AccountForm, account, instance=member.user))
                account_form.save()
        return send_success('Member updated', member.to_dict())

    if request.method == 'DELETE':
        with transaction.atomic():
            member.status = Member.Status.CANCELLED
            member.save(update_fields=['status', 'updated_at'])
            member.user.is_active = False
            member.user.save(update_fields=['is_active'])
        logger.info("Member %s deactivated by user %s", member.member_code, request.user.pk)
        return send_success('Member deactivated')

    return send_success('Member retrieved', member.to_dict())


@api_view(['POST'])
@gym_role_required(['owner', 'staff'])
def member_renew(request, pk):
    member = get_gym_object_or_404(Member.objects.select_related('user', 'plan'), request, pk=pk)
    plan = None
    if request.data.get('plan_id'):
        plan = get_gym_object_or_404(Plan, request, pk=request.data['plan_id'])
    member, invoice = services.renew_member(member, plan=plan, user=request.user)
    data = member.to_dict()
    data['invoice'] = invoice.to_dict()
    return send_success('Membership renewed', data)


@api_view(['GET', 'PUT'])
@gym_role_required(['member'])
@member_access_required('view_profile', methods=['GET'])
@member_access_required('edit_profile', methods=['PUT'])
def my_membership(request):
    member = _member_profile(request)
    if request.method == 'PUT':
        member = validate_form(bind_form(MemberProfileForm, request.data, instance=member)).save()
        return send_success('Profile updated', member.to_dict())
    return send_success('Membership retrieved', member.to_dict())


# =============================================================================
# Plans
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff', 'member'])
def plan_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        if not request.user.can_manage_gym:
            raise ApiError(403, 'Only gym owners and staff can create plans')
        form = validate_form(bind_form(PlanForm, request.data))
        plan = form.save(commit=False)
        plan.gym = gym
        plan.save()
        return send_created('Plan created', plan.to_dict())

    plans = Plan.objects.filter(gym=gym)
    if request.user.is_gym_member or request.GET.get('isActive') == 'true':
        plans = plans.filter(is_active=True)
    elif request.GET.get('isActive') == 'false':
        plans = plans.filter(is_active=False)
    return send_success('Plans retrieved', [plan.to_dict() for plan in plans])


@api_view(['GET', 'PUT', 'DELETE'])
@gym_role_required(['owner', 'staff'])
def plan_detail(request, pk):
    plan = get_gym_object_or_404(Plan, request, pk=pk)

    if request.method == 'PUT':
        form = validate_form(bind_form(PlanForm, request.data, instance=plan))
        plan = form.save()
        return send_success('Plan updated', plan.to_dict())

    if request.method == 'DELETE':
        if plan.members.exists():
            # Members keep a protected reference to their plan.
            plan.is_active = False
            plan.save(update_fields=['is_active'])
            return send_success('Plan is in use by members and was deactivated instead', plan.to_dict())
        plan.delete()
        return send_success('Plan deleted')

    data = plan.to_dict()
    data['active_members'] = plan.members.filter(status=Member.Status.ACTIVE).count()
    return send_success('Plan retrieved', data)


# =============================================================================
# Staff
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner'])
@feature_required('staff')
def staff_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        account_form = validate_form(AccountForm(request.data))
        form = validate_form(bind_form(StaffForm, request.data))
        with transaction.atomic():
            account, password = create_account(account_form, User.Role.STAFF, gym=gym, password=request.data.get('password'))
            staff = form.save(commit=False)
            staff.gym = gym
            staff.user = account
            staff.save()
        data = staff.to_dict()
        if not request.data.get('password'):
            data['temporary_password'] = password
        return send_created('Staff member created', data)

    staff = Staff.objects.filter(gym=gym).select_related('user')
    if request.GET.get('isActive') in ('true', 'false'):
        staff = staff.filter(is_active=request.GET['isActive'] == 'true')
    search = request.GET.get('search')
    if search:
        staff = staff.filter(
            Q(user__first_name__icontains=search) | Q(user__last_name__icontains=search)
            | Q(user__email__icontains=search) | Q(specialty__icontains=search)
        )
    items, pagination = paginate(request, staff, Staff.to_dict)
    return send_success('Staff retrieved', items, pagination=pagination)


@api_view(['GET', 'PUT', 'DELETE'])
@gym_role_required(['owner'])
@feature_required('staff')
def staff_detail(request, pk):
    staff = get_gym_object_or_404(Staff.objects.select_related('user'), request, pk=pk)

    if request.method == 'PUT':
        form = validate_form(bind_form(StaffForm, request.data, instance=staff))
        with transaction.atomic():
            staff = form.save()
            account = request.data.get('user')
            if account:
                validate_form(bind_form(AccountForm, account, instance=staff.user)).save()
            if 'is_active' in request.data:
                staff.user.is_active = staff.is_active
                staff.user.save(update_fields=['is_active'])
        return send_success('Staff member updated', staff.to_dict())

    if request.method == 'DELETE':
        with transaction.atomic():
            staff.is_active = False
            staff.save(update_fields=['is_active'])
            staff.user.is_active = False
            staff.user.save(update_fields=['is_active'])
        return send_success('Staff member deactivated')

    return send_success('Staff member retrieved', staff.to_dict())


# =============================================================================
# Attendance
# =============================================================================

def _filter_attendance(request, records):
    params = request.GET
    if params.get('memberId'):
        records = records.filter(member_id=params['memberId'])
    if params.get('date'):
        records = records.filter(check_in__date=params['date'])
    if params.get('startDate'):
        records = records.filter(check_in__date__gte=params['startDate'])
    if params.get('endDate'):
        records = records.filter(check_in__date__lte=params['endDate'])
    if params.get('status'):
        records = records.filter(status=params['status'])
    if params.get('method'):
        records = records.filter(method=params['method'])
    return records


@api_view(['POST'])
@gym_role_required(['owner', 'staff', 'member'])
@feature_required('attendance')
def check_in(request):
    if request.user.is_gym_member:
        member = _member_profile(request)
    else:
        member_id = request.data.get('member_id')
        if not member_id:
            raise ApiError(400, 'member_id is required')
        member = get_gym_object_or_404(Member.objects.select_related('user', 'gym'), request, pk=member_id)

    method = request.data.get('method') or AttendanceMethod.MANUAL
    if method == AttendanceMethod.QR:
        raise ApiError(400, 'Use the QR check-in endpoint for QR codes')
    if method not in AttendanceMethod.values:
        raise ApiError(400, f"method must be one of {', '.join(AttendanceMethod.values)}")
    attendance = services.check_in(member, method=method, request=request, notes=request.data.get('notes', ''))
    return send_created('Checked in successfully', attendance.to_dict())


@api_view(['POST'])
@gym_role_required(['owner', 'staff', 'member'])
@feature_required('attendance')
def qr_check_in(request):
    gym = require_gym(request)
    code = request.data.get('qr_code')
    if not code:
        raise ApiError(400, 'qr_code is required')

    config = AttendanceConfig.for_gym(gym)
    if AttendanceMethod.QR not in config.active_methods:
        raise ApiError(400, 'QR check-in is not enabled for this gym')
    member_id = services.parse_qr_string(code, gym, config)
    member = Member.objects.select_related('user', 'gym').filter(gym=gym, pk=member_id).first()
    if member is None:
        raise ApiError(404, 'Member not found')
    if request.user.is_gym_member and member.user_id != request.user.id:
        raise ApiError(403, 'This QR code belongs to another member')

    attendance = services.check_in(member, method=AttendanceMethod.QR, request=request, qr_code=code)
    return send_created('Checked in successfully', attendance.to_dict())


@api_view(['POST'])
@gym_role_required(['owner', 'staff', 'member'])
@feature_required('attendance')
def check_out(request, pk):
    records = Attendance.objects.visible().select_related('member__user')
    attendance = get_gym_object_or_404(records, request, pk=pk)
    if request.user.is_gym_member and attendance.member.user_id != request.user.id:
        raise ApiError(403, 'You can only check yourself out')
    attendance = services.check_out(attendance)
    return send_success('Checked out successfully', attendance.to_dict())


@api_view(['GET'])
@gym_role_required(['owner', 'staff', 'member'])
@feature_required('attendance')
@member_access_required('view_attendance')
def generate_qr(request, member_id=None):
    gym = require_gym(request)
    if request.user.is_gym_member:
        member = _member_profile(request)
    else:
        member = get_gym_object_or_404(Member, request, pk=member_id or request.GET.get('memberId'))

    config = AttendanceConfig.for_gym(gym)
    code = services.generate_qr_string(gym.id, member.id, config.qr_type)
    return send_success('QR code generated', {
        'qr_code': code,
        'qr_image': f"data:image/png;base64,{services.qr_png_base64(code)}",
        'type': config.qr_type,
        'expires_in_minutes': config.qr_expiry_minutes if config.qr_type == AttendanceConfig.QRType.DYNAMIC else None,
    })


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
@feature_required('attendance')
def attendance_list(request):
    records = Attendance.objects.visible().filter(gym=require_gym(request)).select_related('member__user')
    if request.GET.get('includeDeleted') == 'true':
        records = Attendance.objects.filter(gym=require_gym(request)).select_related('member__user')
    records = _filter_attendance(request, records)
    items, pagination = paginate(request, records, Attendance.to_dict, default_limit=20)
    return send_success('Attendance retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
@feature_required('attendance')
def today_stats(request):
    return send_success("Today's attendance retrieved", services.today_stats(require_gym(request)))


@api_view(['GET'])
@gym_role_required(['member'])
@feature_required('attendance')
@member_access_required('view_attendance')
def my_attendance(request):
    member = _member_profile(request)
    records = _filter_attendance(request, Attendance.objects.visible().filter(member=member).select_related('member__user'))
    items, pagination = paginate(request, records, Attendance.to_dict, default_limit=20)
    return send_success('Attendance retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
@feature_required('attendance')
def member_attendance(request, pk):
    member = get_gym_object_or_404(Member, request, pk=pk)
    records = _filter_attendance(request, Attendance.objects.visible().filter(member=member).select_related('member__user'))
    items, pagination = paginate(request, records, Attendance.to_dict, default_limit=20)
    return send_success('Attendance retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
@feature_required('attendance')
@subscription_required(['reports'])
def attendance_report(request):
    start_date, end_date = services.period_range(
        request.GET.get('period', 'daily'), request.GET.get('startDate'), request.GET.get('endDate'),
    )
    return send_success('Attendance report generated', services.attendance_report(require_gym(request), start_date, end_date))


@api_view(['POST'])
@gym_role_required(['owner', 'staff'])
@feature_required('attendance')
def staff_override(request, pk):
    attendance = get_gym_object_or_404(Attendance.objects.select_related('member__user'), request, pk=pk)
    action = request.data.get('action')
    if action not in AttendanceOverrideLog.Action.values:
        raise ApiError(400, f"action must be one of {', '.join(AttendanceOverrideLog.Action.values)}")
    log = services.staff_override(
        attendance,
        action,
        request.data.get('reason'),
        request.user,
        request=request,
        check_in_at=request.data.get('check_in'),
        check_out_at=request.data.get('check_out'),
    )
    return send_success('Attendance updated', {'attendance': attendance.to_dict(), 'log': log.to_dict()})


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
@feature_required('attendance')
def override_logs(request):
    logs = AttendanceOverrideLog.objects.filter(gym=require_gym(request)).select_related('staff')
    if request.GET.get('attendanceId'):
        logs = logs.filter(attendance_id=request.GET['attendanceId'])
    if request.GET.get('memberId'):
        logs = logs.filter(member_id=request.GET['memberId'])
    items, pagination = paginate(request, logs, AttendanceOverrideLog.to_dict, default_limit=20)
    return send_success('Override logs retrieved', items, pagination=pagination)


@api_view(['GET', 'PUT'])
@gym_role_required(['owner', 'staff', 'member'])
def attendance_config(request):
    config = AttendanceConfig.for_gym(require_gym(request))

    if request.method == 'PUT':
        if not (request.user.is_super_admin or request.user.is_gym_owner):
            raise ApiError(403, 'Only the gym owner can change attendance settings')
        form = validate_form(bind_form(AttendanceConfigForm, request.data, instance=config))
        config = form.save()
        return send_success('Attendance configuration updated', config.to_dict())

    return send_success('Attendance configuration retrieved', config.to_dict())


@api_view(['PUT'])
@super_admin_required
def available_methods(request, gym_id):
    config = AttendanceConfig.for_gym(get_object_or_404(Gym, pk=gym_id))
    form = validate_form(AvailableMethodsForm(request.data))
    methods = form.cleaned_data['available_methods']
    config.available_methods = methods
    config.active_methods = [method for method in config.active_methods if method in methods]
    config.save()
    return send_success('Available attendance methods updated', config.to_dict())



# =============================================================================
# Member portal access
# =============================================================================

@api_view(['GET', 'PUT'])
@gym_role_required(['owner'])
def member_access_settings(request):
    config = MemberAccessConfig.for_gym(require_gym(request))

    if request.method == 'PUT':
        config = validate_form(bind_form(MemberAccessConfigForm, request.data, instance=config)).save()
        logger.info("Member access settings for gym %s updated by user %s", config.gym_id, request.user.pk)
        return send_success('Member access settings updated', config.to_dict())

    return send_success('Member access settings retrieved', config.to_dict())


@api_view(['GET', 'PUT'])
@gym_role_required(['owner', 'staff'])
def member_access_detail(request, pk):
    member = get_gym_object_or_404(Member.objects.select_related('user', 'gym'), request, pk=pk)
    config = MemberAccessConfig.for_gym(member.gym)

    if request.method == 'PUT':
        if not (request.user.is_super_admin or request.user.is_gym_owner):
            raise ApiError(403, 'Only the gym owner can change member access')
        member = validate_form(bind_form(MemberAccessForm, request.data, instance=member)).save()

    return send_success('Member access retrieved' if request.method == 'GET' else 'Member access updated', {
        'member': member.user.to_dict(),
        **member.access_dict(),
        'permissions': config.permissions_for(member),
        'gym_defaults': config.default_feature_access,
        'permission_levels': config.permission_levels,
    })


@api_view(['POST'])
@gym_role_required(['owner'])
def member_access_bulk(request):
    form = validate_form(BulkMemberAccessForm(request.data))
    members = Member.objects.filter(gym=require_gym(request), pk__in=form.cleaned_data['member_ids'])
    matched = members.count()
    updated = members.update(**form.changes, updated_at=timezone.now())
    return send_success(f'Updated {updated} members successfully', {'matched': matched, 'updated': updated})


@api_view(['GET'])
@gym_role_required(['member'])
def my_access(request):
    member = _member_profile(request)
    config = MemberAccessConfig.for_gym(member.gym)
    data = {**member.access_dict(), 'permissions': config.permissions_for(member)}
    return send_success('Member access retrieved', data)
