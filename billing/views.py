import logging

from django.db.models import Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404

from core.api import ApiError, api_view, paginate, send_created, send_success, validate_form
from gym.utils import member_access_required
from tenants.utils import feature_required, get_gym_object_or_404, gym_role_required, require_gym
from . import services
from .forms import InvoiceForm, PaymentForm
from .models import Invoice, Payment

logger = logging.getLogger(__name__)


def _own_records(request, queryset):
    return queryset.filter(gym=require_gym(request), member__user=request.user)


# =============================================================================
# Invoices
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff'])
@feature_required('payments')
def invoice_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        form = validate_form(InvoiceForm(request.data, gym=gym))
        data = form.cleaned_data
        invoice = services.create_invoice(
            data['member'],
            request.data.get('items') or [],
            tax_rate=data['tax_rate'] or 0,
            discount=data['discount'] or 0,
            due_date=data['due_date'],
            notes=data['notes'],
            user=request.user,
            status=data['status'] or Invoice.Status.PENDING,
        )
        return send_created('Invoice created', invoice.to_dict())

    invoices = Invoice.objects.filter(gym=gym).select_related('member__user', 'plan').prefetch_related('items')
    if request.GET.get('status'):
        invoices = invoices.filter(status=request.GET['status'])
    if request.GET.get('memberId'):
        invoices = invoices.filter(member_id=request.GET['memberId'])
    search = request.GET.get('search')
    if search:
        invoices = invoices.filter(
            Q(invoice_number__icontains=search) | Q(member__member_code__icontains=search)
            | Q(member__user__email__icontains=search)
        )
    items, pagination = paginate(request, invoices, Invoice.to_dict)
    return send_success('Invoices retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['member'])
@member_access_required('view_invoices')
def my_invoices(request):
    invoices = _own_records(request, Invoice.objects.select_related('member__user', 'plan').prefetch_related('items'))
    if request.GET.get('status'):
        invoices = invoices.filter(status=request.GET['status'])
    items, pagination = paginate(request, invoices, Invoice.to_dict)
    return send_success('Invoices retrieved', items, pagination=pagination)


@api_view(['GET', 'PUT', 'DELETE'])
@gym_role_required(['owner', 'staff'])
@feature_required('payments')
def invoice_detail(request, pk):
    invoice = get_gym_object_or_404(Invoice.objects.select_related('member__user', 'plan'), request, pk=pk)

    if request.method == 'PUT':
        invoice = services.update_invoice(invoice, request.data)
        return send_success('Invoice updated', invoice.to_dict())

    if request.method == 'DELETE':
        services.cancel_invoice(invoice)
        return send_success('Invoice cancelled', invoice.to_dict())

    data = invoice.to_dict()
    data['payments'] = [payment.to_dict() for payment in invoice.payments.select_related('member__user', 'recorded_by')]
    data['amount_paid'] = str(invoice.amount_paid)
    return send_success('Invoice retrieved', data)


@api_view(['POST'])
@gym_role_required(['owner', 'staff'])
@feature_required('payments')
def mark_paid(request, pk):
    invoice = get_gym_object_or_404(Invoice, request, pk=pk)
    method = request.data.get('payment_method') or Payment.Method.CASH
    if method not in Payment.Method.values:
        raise ApiError(400, f"payment_method must be one of {', '.join(Payment.Method.values)}")
    payment = services.record_payment(
        invoice,
        method=method,
        user=request.user,
        transaction_id=request.data.get('transaction_id', ''),
        notes=request.data.get('notes', ''),
    )
    invoice.refresh_from_db()
    return send_success('Invoice marked as paid', {'invoice': invoice.to_dict(), 'payment': payment.to_dict()})


# =============================================================================
# Payments
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff'])
@feature_required('payments')
def payment_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        form = validate_form(PaymentForm(request.data, gym=gym))
        data = form.cleaned_data
        payment = services.record_payment(
            data['invoice'],
            amount=data['amount'],
            method=data['payment_method'] or Payment.Method.CASH,
            user=request.user,
            transaction_id=data['transaction_id'],
            notes=data['notes'],
            status=data['status'] or Payment.Status.COMPLETED,
        )
        return send_created('Payment recorded', payment.to_dict())

    payments = Payment.objects.filter(gym=gym).select_related('invoice', 'member__user', 'recorded_by')
    for param, field in (('status', 'status'), ('memberId', 'member_id'), ('method', 'payment_method')):
        if request.GET.get(param):
            payments = payments.filter(**{field: request.GET[param]})
    if request.GET.get('startDate'):
        payments = payments.filter(paid_at__date__gte=request.GET['startDate'])
    if request.GET.get('endDate'):
        payments = payments.filter(paid_at__date__lte=request.GET['endDate'])
    items, pagination = paginate(request, payments, Payment.to_dict)
    return send_success('Payments retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['member'])
@member_access_required('view_payments')
def my_payments(request):
    payments = _own_records(request, Payment.objects.select_related('invoice', 'member__user', 'recorded_by'))
    items, pagination = paginate(request, payments, Payment.to_dict)
    return send_success('Payments retrieved', items, pagination=pagination)


@api_view(['GET', 'DELETE'])
@gym_role_required(['owner', 'staff'])
@feature_required('payments')
def payment_detail(request, pk):
    payment = get_gym_object_or_404(Payment.objects.select_related('invoice', 'member__user'), request, pk=pk)

    if request.method == 'DELETE':
        if not request.user.can_manage_finance:
            raise ApiError(403, 'Only the gym owner can delete payments')
        services.delete_payment(payment)
        logger.info("Payment %s deleted by user %s", pk, request.user.pk)
        return send_success('Payment deleted')

    return send_success('Payment retrieved', payment.to_dict())


@api_view(['POST'])
@gym_role_required(['owner'])
@feature_required('payments')
def refund(request, pk):
    payment = get_gym_object_or_404(Payment.objects.select_related('invoice', 'member__user'), request, pk=pk)
    payment = services.refund_payment(payment, reason=request.data.get('reason', ''))
    return send_success('Payment refunded', payment.to_dict())


@api_view(['GET'])
@gym_role_required(['owner', 'staff', 'member'])
@member_access_required('view_payments')
def receipt(request, pk):
    payment = get_object_or_404(
        Payment.objects.select_related('invoice', 'member__user', 'gym'), pk=pk, gym=require_gym(request),
    )
    if request.user.is_gym_member and payment.member.user_id != request.user.id:
        raise ApiError(403, 'You can only download your own receipts')
    if payment.status not in (Payment.Status.COMPLETED, Payment.Status.REFUNDED):
        raise ApiError(400, 'Receipts are only available for completed payments')

    response = HttpResponse(services.render_receipt(payment), content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="Receipt_{payment.invoice.invoice_number}.pdf"'
    return response
