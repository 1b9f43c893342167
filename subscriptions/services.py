"""
Subscription lifecycle: order creation, payment settlement, proration,
webhook reconciliation and expiry.

Every path that turns money into access goes through `settle_payment`,
which locks the invoice row and only activates while the invoice is
still unpaid. That keeps client verification, `payment.captured` and
`order.paid` deliveries from activating the same payment twice.
"""
import hashlib
import json
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from core.api import ApiError
from core.models import Notification
from core.notifications import notify_gym_owner
from core.utils import get_client_ip, money_str, to_money
from gym.models import Member
from . import gateway
from .models import (
    Subscription, SubscriptionAuditLog, SubscriptionInvoice, SubscriptionPayment,
    WebhookEvent, grace_period, invoice_due_date,
)

logger = logging.getLogger(__name__)

Action = SubscriptionAuditLog.Action
ZERO = Decimal('0.00')

KIND_ACTIONS = {
    SubscriptionInvoice.Kind.NEW: Action.SUBSCRIPTION_ACTIVATED,
    SubscriptionInvoice.Kind.RENEWAL: Action.SUBSCRIPTION_RENEWED,
    SubscriptionInvoice.Kind.UPGRADE: Action.SUBSCRIPTION_UPGRADED,
    SubscriptionInvoice.Kind.DOWNGRADE: Action.SUBSCRIPTION_DOWNGRADED,
}


def audit(action, gym=None, plan=None, subscription=None, payment=None, request=None, user=None, details=None):
    if user is None and request is not None and request.user.is_authenticated:
        user = request.user
    return SubscriptionAuditLog.objects.create(
        action=action,
        gym=gym,
        plan=plan,
        subscription=subscription,
        payment=payment,
        performed_by=user,
        performed_by_role=user.role if user is not None else 'system',
        details=details or {},
        ip_address=get_client_ip(request) if request is not None else None,
        user_agent=request.headers.get('User-Agent', '')[:255] if request is not None else '',
    )


# =============================================================================
# Subscription state
# =============================================================================

@dataclass
class SubscriptionState:
    status: str
    subscription: Subscription = None
    grace_days_left: int = 0

    @property
    def allows_access(self):
        return self.status in ('active', 'trial', 'grace')

    def to_dict(self):
        return {
            'subscription_status': self.status,
            'grace_days_left': self.grace_days_left,
            'subscription': self.subscription.to_dict() if self.subscription else None,
        }


def get_subscription_state(gym, now=None):
    """
    active/trial while the paid or trial period runs, grace for
    SUBSCRIPTION_GRACE_PERIOD_DAYS after it, then expired.
    """
    now = now or timezone.now()
    subscription = Subscription.objects.filter(gym=gym).select_related('plan').first()
    if subscription is None or subscription.status == Subscription.Status.PENDING:
        return SubscriptionState('none', subscription)

    if subscription.status not in (Subscription.Status.ACTIVE, Subscription.Status.TRIAL):
        return SubscriptionState('expired', subscription)

    end = subscription.period_end
    if end is None:
        return SubscriptionState('expired', subscription)
    if end > now:
        return SubscriptionState(subscription.status, subscription)

    grace_end = end + grace_period()
    if grace_end > now:
        days_left = math.ceil((grace_end - now).total_seconds() / 86400)
        return SubscriptionState('grace', subscription, days_left)
    return SubscriptionState('expired', subscription)


def check_member_limit(gym):
    """Refuses a new member once the gym reaches its plan's max_members."""
    subscription = Subscription.objects.filter(gym=gym).select_related('plan').first()
    if subscription is None:
        return
    limit = subscription.plan.max_members
    count = Member.objects.filter(gym=gym).exclude(status=Member.Status.CANCELLED).count()
    if count >= limit:
        raise ApiError(403, f"Your plan allows up to {limit} members. Upgrade to add more.", code='PLAN_LIMIT_REACHED')


# =============================================================================
# Proration
# =============================================================================

@dataclass
class Proration:
    kind: str
    amount: Decimal
    credit: Decimal
    discount: Decimal
    total: Decimal
    credit_remaining: Decimal
    remaining_days: int = 0

    def to_dict(self):
        return {
            'kind': self.kind,
            'amount': money_str(self.amount),
            'credit': money_str(self.credit),
            'discount': money_str(self.discount),
            'total': money_str(self.total),
            'credit_remaining': money_str(self.credit_remaining),
            'remaining_days': self.remaining_days,
        }


def _change_kind(old_plan, new_plan):
    if new_plan.daily_rate > old_plan.daily_rate:
        return SubscriptionInvoice.Kind.UPGRADE
    if new_plan.daily_rate < old_plan.daily_rate:
        return SubscriptionInvoice.Kind.DOWNGRADE
    if new_plan.duration_days > old_plan.duration_days:
        return SubscriptionInvoice.Kind.UPGRADE
    return SubscriptionInvoice.Kind.DOWNGRADE


def calculate_proration(gym, plan, now=None):
    """
    Prices paying for `plan` against the gym's current subscription.

    Switching plans mid-period credits the unused days of the old plan
    (old daily rate x remaining days, capped at its price) against the
    new plan's full price. Credit beyond the new price is carried on the
    subscription and consumed by the next invoice.
    """
    now = now or timezone.now()
    amount = to_money(plan.price)
    current = Subscription.objects.filter(gym=gym).select_related('plan').first()
    carried = to_money(current.credit_balance) if current else ZERO

    kind = SubscriptionInvoice.Kind.NEW
    credit = ZERO
    remaining_days = 0

    if current is not None and current.status == Subscription.Status.ACTIVE and current.end_date:
        if current.plan_id == plan.id:
            kind = SubscriptionInvoice.Kind.RENEWAL
        elif current.end_date > now:
            kind = _change_kind(current.plan, plan)
            remaining_days = math.ceil((current.end_date - now).total_seconds() / 86400)
            credit = min(to_money(current.plan.daily_rate * remaining_days), to_money(current.plan.price))

    available = credit + carried
    discount = min(available, amount)
    return Proration(
        kind=kind,
        amount=amount,
        credit=credit,
        discount=discount,
        total=amount - discount,
        credit_remaining=available - discount,
        remaining_days=remaining_days,
    )


# =============================================================================
# Order creation
# =============================================================================

def _cancel_stale_orders(gym, plan):
    stale = SubscriptionInvoice.objects.filter(gym=gym, plan=plan, status=SubscriptionInvoice.Status.PENDING)
    SubscriptionPayment.objects.filter(invoice__in=stale, status=SubscriptionPayment.Status.CREATED).update(
        status=SubscriptionPayment.Status.FAILED,
        error_code='SUPERSEDED',
        error_description='Replaced by a newer payment order',
        updated_at=timezone.now(),
    )
    stale.update(status=SubscriptionInvoice.Status.CANCELLED)


def create_payment_order(plan, request=None, user=None, client=None):
    """
    Issues a subscription invoice for `plan` and opens a gateway order for
    its total. A fully credited invoice activates straight away.
    """
    if not plan.is_active:
        raise ApiError(400, 'This subscription plan is no longer active')
    gym = plan.gym
    if not gym.is_active:
        raise ApiError(400, 'This gym has been deactivated')

    proration = calculate_proration(gym, plan)
    current = Subscription.objects.filter(gym=gym).first()

    with transaction.atomic():
        _cancel_stale_orders(gym, plan)
        invoice = SubscriptionInvoice.objects.create(
            gym=gym,
            plan=plan,
            subscription=current,
            kind=proration.kind,
            amount=proration.amount,
            discount=proration.discount,
            total=proration.total,
            credit_remaining=proration.credit_remaining,
            currency=settings.SUBSCRIPTION_CURRENCY,
            due_date=invoice_due_date(),
            notes=_proration_note(proration),
        )

    if proration.total == ZERO:
        with transaction.atomic():
            invoice = SubscriptionInvoice.objects.select_for_update().get(pk=invoice.pk)
            subscription = activate_subscription(invoice, request=request, user=user)
        logger.info("Invoice %s fully credited; subscription activated without payment", invoice.invoice_number)
        return {
            'activated': True,
            'invoice': invoice.to_dict(),
            'proration': proration.to_dict(),
            'subscription': subscription.to_dict(),
        }

    client = client or gateway.get_client()
    try:
        order = client.create_order(
            amount=gateway.to_subunits(proration.total),
            currency=invoice.currency,
            receipt=invoice.invoice_number,
            notes={
                'gym_id': str(gym.id),
                'plan_id': str(plan.id),
                'invoice_id': str(invoice.id),
                'kind': proration.kind,
            },
        )
    except gateway.GatewayError as e:
        invoice.status = SubscriptionInvoice.Status.FAILED
        invoice.notes = f"{invoice.notes}\nOrder creation failed: {e}".strip()
        invoice.save(update_fields=['status', 'notes'])
        raise ApiError(502, 'Failed to create payment order', str(e))

    payment = SubscriptionPayment.objects.create(
        gym=gym,
        plan=plan,
        invoice=invoice,
        subscription=current,
        gateway_order_id=order['id'],
        amount=proration.total,
        currency=invoice.currency,
    )
    audit(Action.PAYMENT_INITIATED, gym=gym, plan=plan, subscription=current, payment=payment,
          request=request, user=user,
          details={'order_id': payment.gateway_order_id, 'amount': money_str(payment.amount), 'kind': proration.kind})
    logger.info("Payment order %s created for gym %s plan %s (%s)", payment.gateway_order_id, gym.pk, plan.pk, proration.kind)

    return {
        'activated': False,
        'order_id': payment.gateway_order_id,
        'amount': order.get('amount', gateway.to_subunits(proration.total)),
        'currency': payment.currency,
        'key_id': client.key_id,
        'invoice': invoice.to_dict(),
        'proration': proration.to_dict(),
        'plan': plan.to_summary(),
        'gym': gym.to_summary(),
    }


def _proration_note(proration):
    if proration.credit:
        return (f"{proration.kind.title()}: credit {money_str(proration.credit)} for "
                f"{proration.remaining_days} unused days")
    return ''


# =============================================================================
# Settlement and activation
# =============================================================================

def activate_subscription(invoice, payment=None, request=None, user=None):
    """
    Marks a locked, unpaid invoice paid and grants its plan to the gym.
    Must run inside a transaction.
    """
    now = timezone.now()
    plan = invoice.plan
    gym = invoice.gym
    period = timedelta(days=plan.duration_days)

    invoice.status = SubscriptionInvoice.Status.PAID
    invoice.paid_at = now

    if not plan.is_paid:
        plan.is_paid = True
        plan.paid_at = now
        plan.save(update_fields=['is_paid', 'paid_at', 'updated_at'])

    subscription = Subscription.objects.select_for_update().filter(gym=gym).first()
    if subscription is None:
        subscription = Subscription(gym=gym, plan=plan, start_date=now, end_date=now + period)
    elif (invoice.kind == SubscriptionInvoice.Kind.RENEWAL and subscription.plan_id == plan.id
          and subscription.status == Subscription.Status.ACTIVE and subscription.end_date):
        base = subscription.end_date if subscription.end_date > now else now
        subscription.end_date = base + period
    else:
        subscription.plan = plan
        subscription.start_date = now
        subscription.end_date = now + period

    subscription.status = Subscription.Status.ACTIVE
    subscription.cancelled_at = None
    subscription.credit_balance = invoice.credit_remaining
    subscription.save()

    invoice.subscription = subscription
    invoice.save(update_fields=['status', 'paid_at', 'subscription'])
    if payment is not None:
        payment.subscription = subscription
        payment.save(update_fields=['subscription', 'updated_at'])

    gym.apply_features(plan)

    action = KIND_ACTIONS[invoice.kind]
    if payment is not None:
        audit(Action.PAYMENT_SUCCESS, gym=gym, plan=plan, subscription=subscription, payment=payment,
              request=request, user=user,
              details={'order_id': payment.gateway_order_id, 'payment_id': payment.gateway_payment_id,
                       'amount': money_str(payment.amount)})
    audit(action, gym=gym, plan=plan, subscription=subscription, payment=payment, request=request, user=user,
          details={'invoice': invoice.invoice_number, 'end_date': subscription.end_date.isoformat()})

    notify_gym_owner(
        gym,
        'Subscription active',
        f"Your {plan.name} subscription is active until {subscription.end_date:%d %b %Y}.",
        notification_type=Notification.Type.SUCCESS,
        category=Notification.Category.SUBSCRIPTION,
        link='/subscription',
    )
    logger.info("Subscription for gym %s %s on plan %s until %s", gym.pk, action, plan.pk, subscription.end_date)
    return subscription


def _record_gateway_details(payment, entity):
    payment.gateway_payment_id = entity.get('id') or payment.gateway_payment_id
    payment.method = entity.get('method') or ''
    payment.bank = entity.get('bank') or ''
    payment.wallet = entity.get('wallet') or ''
    payment.vpa = entity.get('vpa') or ''
    payment.email = entity.get('email') or ''
    payment.contact = entity.get('contact') or ''


def settle_payment(payment, entity, status, request=None, user=None, signature=''):
    """
    Applies a successful gateway payment to a locked SubscriptionPayment.
    Activation only happens the first time the invoice is seen unpaid.
    """
    invoice = SubscriptionInvoice.objects.select_for_update().select_related('plan', 'gym').get(pk=payment.invoice_id)

    if (payment.status == SubscriptionPayment.Status.REFUNDED
            or invoice.status == SubscriptionInvoice.Status.REFUNDED):
        logger.warning("Payment %s was refunded; ignoring late capture", payment.gateway_order_id)
        return Subscription.objects.filter(gym=invoice.gym).first()

    if payment.status != SubscriptionPayment.Status.CAPTURED:
        _record_gateway_details(payment, entity)
        payment.status = status
        payment.error_code = ''
        payment.error_description = ''
        if signature:
            payment.gateway_signature = signature
        payment.paid_at = payment.paid_at or timezone.now()
        payment.save()

    if invoice.status == SubscriptionInvoice.Status.PAID:
        logger.info("Payment %s already settled; skipping activation", payment.gateway_order_id)
        return Subscription.objects.filter(gym=invoice.gym).first()

    return activate_subscription(invoice, payment=payment, request=request, user=user)


def mark_payment_failed(payment, code, description, request=None, user=None):
    if payment.status in (SubscriptionPayment.Status.CAPTURED, SubscriptionPayment.Status.REFUNDED):
        logger.warning("Ignoring failure for settled payment %s", payment.gateway_order_id)
        return payment

    payment.status = SubscriptionPayment.Status.FAILED
    payment.error_code = code or ''
    payment.error_description = description or ''
    payment.save(update_fields=['status', 'error_code', 'error_description', 'updated_at'])

    SubscriptionInvoice.objects.filter(pk=payment.invoice_id, status=SubscriptionInvoice.Status.PENDING).update(
        status=SubscriptionInvoice.Status.FAILED,
    )
    audit(Action.PAYMENT_FAILED, gym=payment.gym, plan=payment.plan, subscription=payment.subscription,
          payment=payment, request=request, user=user,
          details={'order_id': payment.gateway_order_id, 'code': payment.error_code,
                   'description': payment.error_description})
    logger.warning("Payment %s failed: %s %s", payment.gateway_order_id, code, description)
    return payment


def verify_payment(order_id, payment_id, signature, request=None, client=None):
    """
    Confirms a Checkout callback: signature first, then the gateway's own
    view of the payment, then settlement.
    """
    try:
        payment = SubscriptionPayment.objects.select_related('gym', 'plan').get(gateway_order_id=order_id)
    except SubscriptionPayment.DoesNotExist:
        raise ApiError(404, 'Payment order not found')

    user = request.user if request is not None and request.user.is_authenticated else None
    if user is not None and not user.is_super_admin and user.gym_id != payment.gym_id:
        raise ApiError(403, 'This payment belongs to another gym')

    if not gateway.verify_payment_signature(order_id, payment_id, signature):
        logger.warning("Signature mismatch for order %s", order_id)
        with transaction.atomic():
            locked = SubscriptionPayment.objects.select_for_update().get(pk=payment.pk)
            mark_payment_failed(locked, 'SIGNATURE_MISMATCH', 'Payment signature verification failed',
                                request=request, user=user)
        raise ApiError(400, 'Payment verification failed: invalid signature')

    client = client or gateway.get_client()
    try:
        entity = client.fetch_payment(payment_id)
    except gateway.GatewayError as e:
        raise ApiError(502, 'Could not confirm payment with the gateway', str(e))

    if entity.get('order_id') and entity['order_id'] != order_id:
        raise ApiError(400, 'Payment does not belong to this order')
    if entity.get('status') not in ('captured', 'authorized'):
        raise ApiError(400, f"Payment not completed (status: {entity.get('status')})")
    if entity.get('amount') is not None and int(entity['amount']) != gateway.to_subunits(payment.amount):
        logger.warning("Amount mismatch for order %s: expected %s got %s",
                       order_id, gateway.to_subunits(payment.amount), entity['amount'])
        raise ApiError(400, 'Payment amount does not match the order')

    with transaction.atomic():
        locked = SubscriptionPayment.objects.select_for_update().get(pk=payment.pk)
        subscription = settle_payment(locked, entity, entity['status'], request=request, user=user,
                                      signature=signature)
    return subscription


# =============================================================================
# Webhooks
# =============================================================================

def _payment_entity(event):
    return ((event.get('payload') or {}).get('payment') or {}).get('entity') or {}


def _lock_payment(**lookup):
    return SubscriptionPayment.objects.select_for_update().select_related('gym', 'plan').filter(**lookup).first()


def _on_payment_captured(event):
    entity = _payment_entity(event)
    payment = _lock_payment(gateway_order_id=entity.get('order_id'))
    if payment is None:
        logger.warning("Webhook %s for unknown order %s", event.get('event'), entity.get('order_id'))
        return
    settle_payment(payment, entity, SubscriptionPayment.Status.CAPTURED)


def _on_payment_failed(event):
    entity = _payment_entity(event)
    payment = _lock_payment(gateway_order_id=entity.get('order_id'))
    if payment is None:
        logger.warning("payment.failed for unknown order %s", entity.get('order_id'))
        return
    if entity.get('id') and not payment.gateway_payment_id:
        payment.gateway_payment_id = entity['id']
        payment.save(update_fields=['gateway_payment_id', 'updated_at'])
    mark_payment_failed(payment, entity.get('error_code'), entity.get('error_description'))


def _on_refund(event):
    payload = event.get('payload') or {}
    refund = (payload.get('refund') or {}).get('entity') or {}
    payment_id = refund.get('payment_id') or _payment_entity(event).get('id')
    payment = _lock_payment(gateway_payment_id=payment_id) if payment_id else None
    if payment is None:
        logger.warning("Refund webhook for unknown payment %s", payment_id)
        return
    if payment.status == SubscriptionPayment.Status.REFUNDED:
        return

    payment.status = SubscriptionPayment.Status.REFUNDED
    payment.refunded_at = timezone.now()
    payment.save(update_fields=['status', 'refunded_at', 'updated_at'])
    SubscriptionInvoice.objects.filter(pk=payment.invoice_id).update(status=SubscriptionInvoice.Status.REFUNDED)
    audit(Action.REFUND_PROCESSED, gym=payment.gym, plan=payment.plan, subscription=payment.subscription,
          payment=payment, details={'refund_id': refund.get('id'), 'amount': refund.get('amount')})
    logger.info("Payment %s refunded", payment.gateway_payment_id)


WEBHOOK_HANDLERS = {
    'payment.captured': _on_payment_captured,
    'order.paid': _on_payment_captured,
    'payment.failed': _on_payment_failed,
    'refund.processed': _on_refund,
    'payment.refunded': _on_refund,
}


def process_webhook(body, signature, event_id=None):
    """
    Verifies and applies one webhook delivery.

    The event row and its effects commit together, so a handler error
    leaves no trace and the gateway's retry is processed afresh, while a
    redelivery of a processed event is acknowledged without side effects.
    """
    if not settings.RAZORPAY_WEBHOOK_SECRET:
        raise ApiError(503, 'Webhook secret is not configured')
    if not gateway.verify_webhook_signature(body, signature):
        logger.warning("Rejected webhook with invalid signature")
        raise ApiError(400, 'Invalid webhook signature')

    try:
        event = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise ApiError(400, 'Invalid webhook payload')
    if not isinstance(event, dict):
        raise ApiError(400, 'Invalid webhook payload')

    event_type = event.get('event', '')
    event_id = event_id or hashlib.sha256(body).hexdigest()

    with transaction.atomic():
        record, created = WebhookEvent.objects.get_or_create(
            event_id=event_id,
            defaults={'event_type': event_type, 'payload': event},
        )
        if not created:
            logger.info("Duplicate webhook %s (%s) ignored", event_id, event_type)
            return {'duplicate': True, 'event': event_type}

        handler = WEBHOOK_HANDLERS.get(event_type)
        if handler is None:
            logger.info("Unhandled webhook event %s", event_type)
        else:
            handler(event)
        audit(Action.WEBHOOK_RECEIVED, details={'event': event_type, 'event_id': event_id})

        record.processed_at = timezone.now()
        record.save(update_fields=['processed_at'])

    return {'duplicate': False, 'event': event_type}


# =============================================================================
# Lifecycle operations
# =============================================================================

def start_trial(gym, plan, request=None):
    if plan.gym_id != gym.id:
        raise ApiError(403, 'This plan belongs to another gym')
    if not plan.is_active:
        raise ApiError(400, 'This subscription plan is no longer active')
    if plan.trial_days <= 0:
        raise ApiError(400, 'This plan does not offer a trial')
    if Subscription.objects.filter(gym=gym).exists():
        raise ApiError(400, 'A trial is only available before the first subscription')

    now = timezone.now()
    subscription = Subscription.objects.create(
        gym=gym,
        plan=plan,
        status=Subscription.Status.TRIAL,
        start_date=now,
        trial_ends_at=now + timedelta(days=plan.trial_days),
    )
    gym.apply_features(plan)
    audit(Action.TRIAL_STARTED, gym=gym, plan=plan, subscription=subscription, request=request,
          details={'trial_ends_at': subscription.trial_ends_at.isoformat()})
    logger.info("Trial started for gym %s on plan %s", gym.pk, plan.pk)
    return subscription


def cancel_subscription(subscription, request=None, reason=''):
    subscription.status = Subscription.Status.CANCELLED
    subscription.cancelled_at = timezone.now()
    subscription.auto_renew = False
    if reason:
        subscription.notes = reason
    subscription.save()
    audit(Action.SUBSCRIPTION_CANCELLED, gym=subscription.gym, plan=subscription.plan,
          subscription=subscription, request=request, details={'reason': reason})
    notify_gym_owner(
        subscription.gym,
        'Subscription cancelled',
        'Your subscription has been cancelled. Contact support to reactivate it.',
        notification_type=Notification.Type.WARNING,
        category=Notification.Category.SUBSCRIPTION,
    )
    return subscription


def set_auto_renew(subscription, enabled, request=None):
    """
    An owner cancels by switching auto-renew off: access runs to the end
    of the paid period and the change is audited as a cancellation.
    """
    was_enabled = subscription.auto_renew
    subscription.auto_renew = enabled
    subscription.save(update_fields=['auto_renew', 'updated_at'])
    if was_enabled and not enabled:
        audit(Action.SUBSCRIPTION_CANCELLED, gym=subscription.gym, plan=subscription.plan,
              subscription=subscription, request=request, details={'disable_auto_renew': True})
        logger.info("Gym %s turned off auto-renew", subscription.gym_id)
    return subscription


def suspend_subscription(subscription, request=None, reason=''):
    subscription.status = Subscription.Status.SUSPENDED
    if reason:
        subscription.notes = reason
    subscription.save()
    audit(Action.SUBSCRIPTION_SUSPENDED, gym=subscription.gym, plan=subscription.plan,
          subscription=subscription, request=request, details={'reason': reason})
    return subscription


def expire_subscriptions(now=None):
    """Moves active and trial subscriptions past their grace period to expired."""
    now = now or timezone.now()
    cutoff = now - grace_period()
    expired = []

    candidates = Subscription.objects.select_related('gym', 'plan').filter(
        Q(status=Subscription.Status.ACTIVE, end_date__lt=cutoff)
        | Q(status=Subscription.Status.TRIAL, trial_ends_at__lt=cutoff)
    )
    for subscription in candidates:
        subscription.status = Subscription.Status.EXPIRED
        subscription.save(update_fields=['status', 'updated_at'])
        audit(Action.SUBSCRIPTION_EXPIRED, gym=subscription.gym, plan=subscription.plan,
              subscription=subscription, details={'expired_at': now.isoformat()})
        notify_gym_owner(
            subscription.gym,
            'Subscription expired',
            'Your subscription has expired. Renew now to restore access to your dashboard.',
            notification_type=Notification.Type.ERROR,
            category=Notification.Category.SUBSCRIPTION,
            link='/subscription',
        )
        expired.append(subscription)
    return expired


def cancel_overdue_invoices(now=None):
    now = now or timezone.now()
    overdue = SubscriptionInvoice.objects.filter(status=SubscriptionInvoice.Status.PENDING, due_date__lt=now)
    SubscriptionPayment.objects.filter(invoice__in=overdue, status=SubscriptionPayment.Status.CREATED).update(
        status=SubscriptionPayment.Status.FAILED,
        error_code='EXPIRED',
        error_description='Invoice due date passed',
        updated_at=now,
    )
    return overdue.update(status=SubscriptionInvoice.Status.CANCELLED)
