import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404

from core.api import ApiError, api_view, bind_form, paginate, send_created, send_success, validate_form
from core.utils import parse_bool
from tenants.utils import gym_role_required, require_gym, super_admin_required
from . import services
from .forms import SubscriptionPlanForm, VerifyPaymentForm
from .models import Subscription, SubscriptionAuditLog, SubscriptionInvoice, SubscriptionPayment, SubscriptionPlan

logger = logging.getLogger(__name__)

Action = SubscriptionAuditLog.Action


def _scoped_to_gym(request, queryset):
    """Super admins see everything (or ?gymId); gym users see their own gym."""
    if request.user.is_super_admin:
        gym_id = request.GET.get('gymId')
        return queryset.filter(gym_id=gym_id) if gym_id else queryset
    return queryset.filter(gym=require_gym(request))


# =============================================================================
# Plans
# =============================================================================

@api_view(['GET', 'POST'])
@super_admin_required
def plan_list(request):
    if request.method == 'POST':
        form = validate_form(bind_form(SubscriptionPlanForm, request.data))
        plan = form.save(commit=False)
        plan.created_by = request.user
        plan.save()
        services.audit(Action.PLAN_CREATED, gym=plan.gym, plan=plan, request=request,
                       details={'name': plan.name, 'price': str(plan.price)})
        return send_created('Subscription plan created', plan.to_dict())

    plans = SubscriptionPlan.objects.select_related('gym').all()
    if request.GET.get('gymId'):
        plans = plans.filter(gym_id=request.GET['gymId'])
    for param, field in (('isPaid', 'is_paid'), ('isActive', 'is_active')):
        if request.GET.get(param) in ('true', 'false'):
            plans = plans.filter(**{field: request.GET[param] == 'true'})

    items, pagination = paginate(request, plans, SubscriptionPlan.to_dict)
    return send_success('Subscription plans retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner'])
def my_plans(request):
    plans = SubscriptionPlan.objects.filter(gym=require_gym(request), is_active=True)
    return send_success('Subscription plans retrieved', [plan.to_dict() for plan in plans])


@api_view(['GET', 'PUT', 'DELETE'])
def plan_detail(request, pk):
    plan = get_object_or_404(SubscriptionPlan.objects.select_related('gym'), pk=pk)
    user = request.user

    if request.method == 'GET':
        if not user.is_super_admin and not (user.is_gym_owner and user.gym_id == plan.gym_id):
            raise ApiError(403, 'You can only view plans for your own gym')
        return send_success('Subscription plan retrieved', plan.to_dict())

    if not user.is_super_admin:
        raise ApiError(403, 'Super admin access required')

    if request.method == 'DELETE':
        if plan.is_paid:
            raise ApiError(400, 'Cannot delete a plan that has been paid. Deactivate it instead.')
        services.audit(Action.PLAN_DELETED, gym=plan.gym, request=request, details={'plan_id': plan.id, 'name': plan.name})
        plan.delete()
        return send_success('Subscription plan deleted')

    if plan.is_paid:
        changed = set(request.data) - {'is_active'}
        if changed or parse_bool(request.data.get('is_active')) is not False:
            raise ApiError(400, 'A paid plan can only be deactivated')
        plan.is_active = False
        plan.save(update_fields=['is_active', 'updated_at'])
        services.audit(Action.PLAN_DEACTIVATED, gym=plan.gym, plan=plan, request=request)
        return send_success('Subscription plan deactivated', plan.to_dict())

    data = {key: value for key, value in request.data.items() if key != 'gym'}
    form = validate_form(bind_form(SubscriptionPlanForm, data, instance=plan))
    plan = form.save()
    action = Action.PLAN_DEACTIVATED if not plan.is_active else Action.PLAN_UPDATED
    services.audit(action, gym=plan.gym, plan=plan, request=request, details={'fields': sorted(data)})
    return send_success('Subscription plan updated', plan.to_dict())


@api_view(['POST'])
@super_admin_required
def regenerate_payment_link(request, pk):
    plan = get_object_or_404(SubscriptionPlan, pk=pk)
    plan.regenerate_token()
    services.audit(Action.PAYMENT_LINK_GENERATED, gym=plan.gym, plan=plan, request=request)
    return send_success('Payment link regenerated', {
        'payment_link': plan.payment_link,
        'payment_link_token': plan.payment_link_token,
    })


# =============================================================================
# Public payment link
# =============================================================================

def _plan_for_token(token):
    plan = SubscriptionPlan.objects.select_related('gym').filter(payment_link_token=token, is_active=True).first()
    if plan is None:
        raise ApiError(404, 'Invalid or expired payment link')
    return plan


@api_view(['GET'], login=False)
def plan_by_token(request, token):
    plan = _plan_for_token(token)
    services.audit(Action.LINK_ACCESSED, gym=plan.gym, plan=plan, request=request)
    data = plan.to_dict()
    data.pop('payment_link_token')
    data['gym'] = plan.gym.to_summary()
    data['proration'] = services.calculate_proration(plan.gym, plan).to_dict()
    return send_success('Subscription plan retrieved', data)


@api_view(['POST'], login=False)
def order_by_token(request, token):
    plan = _plan_for_token(token)
    user = request.user if request.user.is_authenticated else None
    result = services.create_payment_order(plan, request=request, user=user)
    return send_created('Payment order created', result)


# =============================================================================
# Subscription lifecycle
# =============================================================================

@api_view(['POST'])
@gym_role_required(['owner'])
def create_order(request):
    plan_id = request.data.get('plan_id')
    if not plan_id:
        raise ApiError(400, 'plan_id is required')
    plan = get_object_or_404(SubscriptionPlan.objects.select_related('gym'), pk=plan_id)
    if not request.user.is_super_admin and plan.gym_id != request.user.gym_id:
        raise ApiError(403, 'You can only pay for plans of your own gym')
    result = services.create_payment_order(plan, request=request)
    return send_created('Payment order created', result)


@api_view(['POST'], login=False)
def verify_payment(request):
    form = validate_form(VerifyPaymentForm(request.data))
    subscription = services.verify_payment(
        form.cleaned_data['razorpay_order_id'],
        form.cleaned_data['razorpay_payment_id'],
        form.cleaned_data['razorpay_signature'],
        request=request,
    )
    return send_success('Payment verified and subscription activated', subscription.to_dict())


@api_view(['POST'], login=False)
def webhook(request):
    result = services.process_webhook(
        request.body,
        request.headers.get('X-Razorpay-Signature', ''),
        event_id=request.headers.get('X-Razorpay-Event-Id'),
    )
    return send_success('Webhook processed', result)


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
def my_subscription(request):
    state = services.get_subscription_state(require_gym(request))
    return send_success('Subscription retrieved', state.to_dict())


@api_view(['GET'])
@gym_role_required(['owner'])
def proration_preview(request):
    plan = get_object_or_404(SubscriptionPlan, pk=request.GET.get('plan_id'), gym=require_gym(request))
    return send_success('Proration calculated', services.calculate_proration(plan.gym, plan).to_dict())


@api_view(['POST'])
@gym_role_required(['owner'])
def start_trial(request):
    gym = require_gym(request)
    plan = get_object_or_404(SubscriptionPlan, pk=request.data.get('plan_id'))
    subscription = services.start_trial(gym, plan, request=request)
    return send_created('Trial started', subscription.to_dict())


@api_view(['PUT'])
@gym_role_required(['owner'])
def auto_renew(request):
    subscription = Subscription.objects.filter(gym=require_gym(request)).first()
    if subscription is None:
        raise ApiError(404, 'No subscription found')
    enabled = parse_bool(request.data.get('enabled'))
    if enabled is None:
        raise ApiError(400, 'enabled is required')
    services.set_auto_renew(subscription, enabled, request=request)
    return send_success('Auto-renew enabled' if enabled else 'Auto-renew disabled', subscription.to_dict())


@api_view(['GET'])
@super_admin_required
def subscription_list(request):
    subscriptions = Subscription.objects.select_related('gym', 'plan').order_by('-created_at')
    if request.GET.get('status'):
        subscriptions = subscriptions.filter(status=request.GET['status'])
    if request.GET.get('gymId'):
        subscriptions = subscriptions.filter(gym_id=request.GET['gymId'])
    if request.GET.get('search'):
        subscriptions = subscriptions.filter(
            Q(gym__name__icontains=request.GET['search']) | Q(plan__name__icontains=request.GET['search'])
        )

    def serialize(subscription):
        data = subscription.to_dict()
        data['gym'] = subscription.gym.to_summary()
        return data

    items, pagination = paginate(request, subscriptions, serialize)
    return send_success('Subscriptions retrieved', items, pagination=pagination)


@api_view(['POST'])
@super_admin_required
def cancel(request, pk):
    subscription = get_object_or_404(Subscription.objects.select_related('gym', 'plan'), pk=pk)
    if subscription.status == Subscription.Status.CANCELLED:
        raise ApiError(400, 'Subscription is already cancelled')
    services.cancel_subscription(subscription, request=request, reason=request.data.get('reason', ''))
    return send_success('Subscription cancelled', subscription.to_dict())


@api_view(['POST'])
@super_admin_required
def suspend(request, pk):
    subscription = get_object_or_404(Subscription.objects.select_related('gym', 'plan'), pk=pk)
    services.suspend_subscription(subscription, request=request, reason=request.data.get('reason', ''))
    return send_success('Subscription suspended', subscription.to_dict())


@api_view(['GET'])
@gym_role_required(['owner'], gym_required=False)
def payment_history(request):
    payments = _scoped_to_gym(request, SubscriptionPayment.objects.select_related('gym', 'plan', 'invoice'))
    if request.GET.get('status'):
        payments = payments.filter(status=request.GET['status'])
    items, pagination = paginate(request, payments, SubscriptionPayment.to_dict)
    return send_success('Payment history retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner'], gym_required=False)
def invoice_list(request):
    invoices = _scoped_to_gym(request, SubscriptionInvoice.objects.select_related('gym', 'plan'))
    if request.GET.get('status'):
        invoices = invoices.filter(status=request.GET['status'])
    items, pagination = paginate(request, invoices, SubscriptionInvoice.to_dict)
    return send_success('Invoices retrieved', items, pagination=pagination)


@api_view(['GET'])
@super_admin_required
def audit_logs(request):
    logs = SubscriptionAuditLog.objects.all()
    if request.GET.get('gymId'):
        logs = logs.filter(gym_id=request.GET['gymId'])
    if request.GET.get('action'):
        logs = logs.filter(action=request.GET['action'])
    items, pagination = paginate(request, logs, SubscriptionAuditLog.to_dict, default_limit=20)
    return send_success('Audit logs retrieved', items, pagination=pagination)
