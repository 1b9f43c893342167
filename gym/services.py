import base64
import hashlib
import hmac
import io
import logging
import time as clock
from datetime import datetime, timedelta

import qrcode
from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count
from django.db.models.functions import ExtractHour, TruncDate
from django.utils import timezone

from accounts.models import User
from accounts.services import create_account
from billing.services import membership_invoice
from core.api import ApiError
from core.models import Notification
from core.notifications import notify
from core.utils import get_client_ip
from subscriptions.services import check_member_limit
from .models import Attendance, AttendanceConfig, AttendanceMethod, AttendanceOverrideLog, Member

logger = logging.getLogger(__name__)

MIN_OVERRIDE_REASON = 10


# =============================================================================
# QR codes
# =============================================================================

def _qr_signature(gym_id, member_id, timestamp):
    message = f"{gym_id}-{member_id}-{timestamp}".encode('utf-8')
    return hmac.new(settings.SECRET_KEY.encode('utf-8'), message, hashlib.sha256).hexdigest()[:12]


def generate_qr_string(gym_id, member_id, qr_type=AttendanceConfig.QRType.STATIC, timestamp=None):
    """
    Static codes are GYM-{gym}-MEM-{member}. Dynamic codes append a
    timestamp and a keyed signature so they expire and cannot be forged.
    """
    base = f"GYM-{gym_id}-MEM-{member_id}"
    if qr_type != AttendanceConfig.QRType.DYNAMIC:
        return base
    timestamp = int(timestamp if timestamp is not None else clock.time())
    return f"{base}-{timestamp}-{_qr_signature(gym_id, member_id, timestamp)}"


def parse_qr_string(code, gym, config, now=None):
    """Returns the member id encoded in a QR code for `gym`, or raises ApiError."""
    parts = (code or '').strip().split('-')
    if len(parts) < 4 or parts[0] != 'GYM' or parts[2] != 'MEM':
        raise ApiError(400, 'Invalid QR code format')
    gym_id, member_id = parts[1], parts[3]
    if gym_id != str(gym.id):
        raise ApiError(400, 'QR code is not valid for this gym')

    if config.qr_type == AttendanceConfig.QRType.DYNAMIC:
        if len(parts) != 6:
            raise ApiError(400, 'Invalid QR code format')
        timestamp, signature = parts[4], parts[5]
        if not timestamp.isdigit():
            raise ApiError(400, 'Invalid QR code format')
        if not hmac.compare_digest(_qr_signature(gym_id, member_id, timestamp), signature):
            raise ApiError(400, 'QR code signature is invalid')
        now = now if now is not None else clock.time()
        if now - int(timestamp) > config.qr_expiry_minutes * 60:
            raise ApiError(400, 'QR code has expired')

    if not member_id.isdigit():
        raise ApiError(400, 'Invalid QR code format')
    return int(member_id)


def qr_png_base64(data):
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode('ascii')


# =============================================================================
# Check-in / check-out
# =============================================================================

def _ensure_can_check_in(member, config, now):
    if not config.is_enabled:
        raise ApiError(400, 'Attendance is disabled for this gym')
    if member.status != Member.Status.ACTIVE:
        raise ApiError(400, f'Membership is {member.status}; check-in is not allowed')
    if member.subscription_end < timezone.localdate(now):
        raise ApiError(400, 'Membership has expired')

    if not config.is_open_at(timezone.localtime(now).time()):
        raise ApiError(400, 'Check-in is only allowed during working hours')

    today = Attendance.objects.visible().filter(member=member).on_date(timezone.localdate(now))
    if today.filter(status=Attendance.Status.ACTIVE).exists():
        raise ApiError(400, 'Member already checked in today')
    if not config.allow_multiple_checkins and today.filter(status=Attendance.Status.COMPLETED).exists():
        raise ApiError(400, 'Member has already checked in and out today. Multiple check-ins not allowed.')


def check_in(member, method=AttendanceMethod.MANUAL, request=None, notes='', qr_code=''):
    config = AttendanceConfig.for_gym(member.gym)
    if method != AttendanceMethod.MANUAL and method not in config.active_methods:
        raise ApiError(400, f"{method.upper()} check-in is not an active method for this gym")

    now = timezone.now()
    with transaction.atomic():
        Member.objects.select_for_update().filter(pk=member.pk).first()
        _ensure_can_check_in(member, config, now)
        attendance = Attendance.objects.create(
            gym=member.gym,
            member=member,
            check_in=now,
            method=method,
            notes=notes or '',
            qr_code=qr_code,
            ip_address=get_client_ip(request) if request is not None else None,
            user_agent=request.headers.get('User-Agent', '')[:255] if request is not None else '',
        )
    logger.info("Member %s checked in at gym %s via %s", member.member_code, member.gym_id, method)
    return attendance


def check_out(attendance, when=None):
    if attendance.status == Attendance.Status.COMPLETED:
        raise ApiError(400, 'Member already checked out')
    attendance.check_out = when or timezone.now()
    attendance.save()
    return attendance


# =============================================================================
# Staff overrides
# =============================================================================

def _parse_datetime(value, field):
    if not value:
        return None
    parsed = value if isinstance(value, datetime) else None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ApiError(400, f'{field} must be an ISO 8601 datetime')
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def staff_override(attendance, action, reason, user, request=None, check_in_at=None, check_out_at=None):
    """
    Corrects an attendance record on a member's behalf. Every override
    needs a reason and leaves a before/after entry in the override log.
    """
    reason = (reason or '').strip()
    if len(reason) < MIN_OVERRIDE_REASON:
        raise ApiError(400, f'Reason must be at least {MIN_OVERRIDE_REASON} characters')

    previous = attendance.snapshot()
    Action = AttendanceOverrideLog.Action

    if action in (Action.MANUAL_CHECKOUT, Action.FORCE_CHECKOUT):
        if attendance.status == Attendance.Status.COMPLETED:
            raise ApiError(400, 'Attendance is already completed')
        attendance.check_out = _parse_datetime(check_out_at, 'check_out') or timezone.now()
    elif action == Action.MODIFY_TIME:
        new_in = _parse_datetime(check_in_at, 'check_in')
        new_out = _parse_datetime(check_out_at, 'check_out')
        if new_in is None and new_out is None:
            raise ApiError(400, 'check_in or check_out is required to modify times')
        attendance.check_in = new_in or attendance.check_in
        attendance.check_out = new_out or attendance.check_out
    elif action == Action.DELETE:
        if attendance.is_deleted:
            raise ApiError(400, 'Attendance is already deleted')
        attendance.is_deleted = True
    elif action == Action.RESTORE:
        if not attendance.is_deleted:
            raise ApiError(400, 'Attendance is not deleted')
        attendance.is_deleted = False
    else:
        raise ApiError(400, f'Unknown override action: {action}')

    if attendance.check_out and attendance.check_out < attendance.check_in:
        raise ApiError(400, 'Check-out cannot be before check-in')

    with transaction.atomic():
        attendance.save()
        log = AttendanceOverrideLog.objects.create(
            gym=attendance.gym,
            attendance=attendance,
            member=attendance.member,
            staff=user,
            action=action,
            reason=reason,
            previous_value=previous,
            new_value=attendance.snapshot(),
            ip_address=get_client_ip(request) if request is not None else None,
            user_agent=request.headers.get('User-Agent', '')[:255] if request is not None else '',
        )
    logger.info("Attendance %s override %s by user %s", attendance.pk, action, user.pk)
    return log


def auto_checkout(now=None):
    """Closes sessions left open longer than each gym's configured limit."""
    now = now or timezone.now()
    closed = 0
    for config in AttendanceConfig.objects.filter(auto_checkout_enabled=True):
        cutoff = now - timedelta(hours=config.auto_checkout_after_hours)
        stale = Attendance.objects.visible().filter(
            gym_id=config.gym_id, status=Attendance.Status.ACTIVE, check_in__lt=cutoff,
        )
        for attendance in stale:
            attendance.check_out = attendance.check_in + timedelta(hours=config.auto_checkout_after_hours)
            attendance.notes = (attendance.notes + '\nAuto checked out').strip()
            attendance.save()
            closed += 1
    return closed


# =============================================================================
# Reports
# =============================================================================

def period_range(period, start=None, end=None, today=None):
    """Resolves a report period to an inclusive (start_date, end_date)."""
    today = today or timezone.localdate()
    if period == 'daily':
        return today, today
    if period == 'weekly':
        return today - timedelta(days=today.weekday()), today
    if period == 'monthly':
        return today.replace(day=1), today
    if period == 'custom':
        try:
            start_date = datetime.strptime(start, '%Y-%m-%d').date()
            end_date = datetime.strptime(end, '%Y-%m-%d').date()
        except (TypeError, ValueError):
            raise ApiError(400, 'startDate and endDate (YYYY-MM-DD) are required for custom reports')
        if end_date < start_date:
            raise ApiError(400, 'endDate must not be before startDate')
        return start_date, end_date
    raise ApiError(400, 'period must be one of daily, weekly, monthly, custom')


def attendance_report(gym, start_date, end_date):
    records = Attendance.objects.visible().filter(
        gym=gym, check_in__date__gte=start_date, check_in__date__lte=end_date,
    )
    completed = records.filter(status=Attendance.Status.COMPLETED)
    avg_duration = completed.aggregate(avg=Avg('duration'))['avg']

    method_breakdown = {method: 0 for method in AttendanceMethod.values}
    for row in records.values('method').annotate(count=Count('id')):
        method_breakdown[row['method']] = row['count']

    daily = (
        records.annotate(day=TruncDate('check_in'))
        .values('day')
        .annotate(total=Count('id'), avg_duration=Avg('duration'))
        .order_by('day')
    )
    daily_breakdown = [
        {
            'date': row['day'],
            'total': row['total'],
            'avg_duration': round(row['avg_duration']) if row['avg_duration'] is not None else 0,
        }
        for row in daily
    ]

    peak = (
        records.annotate(hour=ExtractHour('check_in'))
        .values('hour')
        .annotate(count=Count('id'))
        .order_by('-count', 'hour')
        .first()
    )

    return {
        'period': {'start': start_date, 'end': end_date},
        'summary': {
            'total_check_ins': records.count(),
            'unique_members': records.values('member').distinct().count(),
            'completed_sessions': completed.count(),
            'active_sessions': records.filter(status=Attendance.Status.ACTIVE).count(),
            'avg_duration_minutes': round(avg_duration) if avg_duration is not None else 0,
            'peak_hour': f"{peak['hour']}:00 - {peak['hour'] + 1}:00" if peak else None,
        },
        'method_breakdown': method_breakdown,
        'daily_breakdown': daily_breakdown,
    }


def today_stats(gym):
    today = timezone.localdate()
    records = Attendance.objects.visible().filter(gym=gym).on_date(today)
    active_members = Member.objects.filter(gym=gym, status=Member.Status.ACTIVE).count()
    unique = records.values('member').distinct().count()
    return {
        'date': today,
        'total_check_ins': records.count(),
        'currently_in_gym': records.filter(status=Attendance.Status.ACTIVE).count(),
        'completed': records.filter(status=Attendance.Status.COMPLETED).count(),
        'unique_members': unique,
        'active_members': active_members,
        'attendance_rate': round(unique / active_members * 100, 1) if active_members else 0,
    }


# =============================================================================
# Memberships
# =============================================================================

def expire_memberships(today=None):
    """Marks members whose paid period ended as expired and tells them."""
    today = today or timezone.localdate()
    expired = list(
        Member.objects.select_related('user', 'gym').filter(status=Member.Status.ACTIVE, subscription_end__lt=today)
    )
    for member in expired:
        member.status = Member.Status.EXPIRED
        member.save(update_fields=['status', 'updated_at'])
        notify(
            member.user,
            'Membership expired',
            f"Your membership at {member.gym.name} expired on {member.subscription_end:%d %b %Y}. Renew to keep training.",
            gym=member.gym,
            notification_type=Notification.Type.WARNING,
            category=Notification.Category.PAYMENT,
        )
    return expired


def create_member(gym, account_form, plan, user=None, start=None, profile=None, password=None):
    """
    Creates the member's login and profile and bills the first period.
    Returns (member, invoice, password).
    """
    check_member_limit(gym)
    if plan.gym_id != gym.id or not plan.is_active:
        raise ApiError(400, 'Plan is not available for this gym')

    start = start or timezone.localdate()
    with transaction.atomic():
        account, password = create_account(account_form, User.Role.MEMBER, gym=gym, password=password)
        member = Member.objects.create(
            gym=gym,
            user=account,
            plan=plan,
            subscription_start=start,
            subscription_end=start + timedelta(days=plan.duration_days),
            **(profile or {}),
        )
        invoice = membership_invoice(member, plan, user=user)
    logger.info("Member %s joined gym %s on plan %s", member.member_code, gym.pk, plan.pk)
    return member, invoice, password


def renew_member(member, plan=None, user=None):
    """Extends the membership from the later of today and the current end date."""
    plan = plan or member.plan
    if plan.gym_id != member.gym_id or not plan.is_active:
        raise ApiError(400, 'Plan is not available for this gym')
    if member.status == Member.Status.CANCELLED:
        raise ApiError(400, 'A cancelled membership cannot be renewed')

    today = timezone.localdate()
    start = max(today, member.subscription_end)
    with transaction.atomic():
        member.plan = plan
        member.subscription_end = start + timedelta(days=plan.duration_days)
        if member.subscription_start > today or member.status == Member.Status.EXPIRED:
            member.subscription_start = start
        member.status = Member.Status.ACTIVE
        member.save()
        invoice = membership_invoice(member, plan, user=user, description=f"{plan.name} membership renewal")
    return member, invoice


def member_stats(gym, today=None):
    today = today or timezone.localdate()
    members = Member.objects.filter(gym=gym)
    counts = {row['status']: row['count'] for row in members.values('status').annotate(count=Count('id'))}
    return {
        'total': members.count(),
        'active': counts.get(Member.Status.ACTIVE, 0),
        'expired': counts.get(Member.Status.EXPIRED, 0),
        'suspended': counts.get(Member.Status.SUSPENDED, 0),
        'cancelled': counts.get(Member.Status.CANCELLED, 0),
        'expiring_this_week': members.filter(
            status=Member.Status.ACTIVE, subscription_end__gte=today, subscription_end__lte=today + timedelta(days=7),
        ).count(),
        'joined_this_month': members.filter(created_at__date__gte=today.replace(day=1)).count(),
    }
