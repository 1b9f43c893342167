import logging
import os
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from core.api import ApiError
from core.models import Notification
from core.notifications import notify
from core.utils import to_money
from finance import services as finance
from .models import Invoice, InvoiceItem, Payment

logger = logging.getLogger(__name__)


def _build_items(items):
    items = list(items or [])
    if not items:
        raise ApiError(400, 'An invoice needs at least one item')

    invoice_items = []
    for item in items:
        description = (item.get('description') or '').strip()
        if not description:
            raise ApiError(400, 'Every item needs a description')
        try:
            quantity = int(item.get('quantity') or 1)
            price = to_money(item.get('price'))
        except (TypeError, ValueError, ArithmeticError):
            raise ApiError(400, 'Item quantity and price must be numbers')
        if quantity < 1 or price < 0:
            raise ApiError(400, 'Item quantity must be positive and price cannot be negative')
        invoice_items.append(InvoiceItem(description=description[:255], quantity=quantity, price=price))
    return invoice_items


def create_invoice(member, items, plan=None, tax_rate=0, discount=0, due_date=None, notes='', user=None,
                   status=Invoice.Status.PENDING):
    """
    items: iterable of dicts with description, quantity and price.
    """
    invoice_items = _build_items(items)
    invoice = Invoice(
        gym=member.gym,
        member=member,
        plan=plan,
        tax_rate=to_money(tax_rate),
        discount=to_money(discount),
        due_date=due_date or timezone.localdate() + timedelta(days=settings.MEMBER_INVOICE_DUE_DAYS),
        notes=notes or '',
        status=status,
        created_by=user,
    )
    invoice.calculate_totals(invoice_items)
    with transaction.atomic():
        invoice.save()
        for item in invoice_items:
            item.invoice = invoice
            item.save()
    logger.info("Invoice %s issued to member %s for %s", invoice.invoice_number, member.member_code, invoice.total)
    return invoice


def membership_invoice(member, plan, user=None, description=None):
    return create_invoice(
        member,
        [{'description': description or f"{plan.name} membership", 'quantity': 1, 'price': plan.price}],
        plan=plan,
        user=user,
    )


def update_invoice(invoice, data):
    if invoice.status in (Invoice.Status.PAID, Invoice.Status.CANCELLED):
        raise ApiError(400, f'A {invoice.status} invoice cannot be modified')

    with transaction.atomic():
        if 'items' in data:
            items = _build_items(data['items'])
            invoice.items.all().delete()
            for item in items:
                item.invoice = invoice
                item.save()
        for field in ('tax_rate', 'discount'):
            if field in data:
                setattr(invoice, field, to_money(data[field]))
        if data.get('due_date'):
            invoice.due_date = data['due_date']
        if 'notes' in data:
            invoice.notes = data['notes'] or ''
        invoice.calculate_totals()
        invoice.save()
    return invoice


def cancel_invoice(invoice):
    if invoice.status == Invoice.Status.PAID:
        raise ApiError(400, 'A paid invoice cannot be cancelled. Refund the payment instead.')
    invoice.status = Invoice.Status.CANCELLED
    invoice.save(update_fields=['status', 'updated_at'])
    return invoice


def record_payment(invoice, amount=None, method=Payment.Method.CASH, user=None, transaction_id='', notes='',
                   status=Payment.Status.COMPLETED):
    """
    Records a payment against an invoice. A completed payment settles the
    invoice and books revenue once.
    """
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if invoice.status == Invoice.Status.CANCELLED:
            raise ApiError(400, 'Cannot pay a cancelled invoice')
        if invoice.status == Invoice.Status.PAID and status == Payment.Status.COMPLETED:
            raise ApiError(400, 'Invoice is already paid')

        amount = to_money(amount if amount not in (None, '') else invoice.total)
        if amount <= 0:
            raise ApiError(400, 'Amount must be greater than zero')

        payment = Payment.objects.create(
            gym=invoice.gym,
            invoice=invoice,
            member=invoice.member,
            amount=amount,
            payment_method=method,
            transaction_id=transaction_id or '',
            status=status,
            notes=notes or '',
            recorded_by=user,
        )
        if status == Payment.Status.COMPLETED:
            complete_payment(payment)

    logger.info("Payment %s of %s recorded on invoice %s", payment.pk, amount, invoice.invoice_number)
    return payment


def complete_payment(payment):
    invoice = payment.invoice
    if invoice.status != Invoice.Status.PAID:
        invoice.status = Invoice.Status.PAID
        invoice.paid_at = payment.paid_at
        invoice.save(update_fields=['status', 'paid_at', 'updated_at'])
    finance.create_revenue_from_payment(payment)
    notify(
        payment.member.user,
        'Payment received',
        f"We received {payment.amount} {payment.gym.currency} for invoice {invoice.invoice_number}. Thank you!",
        gym=payment.gym,
        notification_type=Notification.Type.SUCCESS,
        category=Notification.Category.PAYMENT,
    )


def delete_payment(payment):
    """Removes a payment; the invoice goes back to pending and its revenue is reversed."""
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
        if payment.status == Payment.Status.COMPLETED:
            finance.reverse_payment_revenue(payment, f"Payment #{payment.pk} deleted")
        payment.delete()
        if invoice.status == Invoice.Status.PAID and not invoice.payments.filter(status=Payment.Status.COMPLETED).exists():
            invoice.status = Invoice.Status.PENDING
            invoice.paid_at = None
            invoice.save(update_fields=['status', 'paid_at', 'updated_at'])


def refund_payment(payment, reason=''):
    if payment.status != Payment.Status.COMPLETED:
        raise ApiError(400, 'Only completed payments can be refunded')
    with transaction.atomic():
        payment.status = Payment.Status.REFUNDED
        payment.notes = '\n'.join(filter(None, [payment.notes, f"Refunded: {reason}" if reason else 'Refunded']))
        payment.save(update_fields=['status', 'notes'])
        finance.reverse_payment_revenue(payment, reason or 'Refund processed')
    logger.info("Payment %s refunded", payment.pk)
    return payment


def mark_overdue(today=None):
    today = today or timezone.localdate()
    return Invoice.objects.filter(status=Invoice.Status.PENDING, due_date__lt=today).update(
        status=Invoice.Status.OVERDUE, updated_at=timezone.now(),
    )


def render_receipt(payment):
    """Builds an A5 PDF receipt for a payment and returns its bytes."""
    invoice = payment.invoice
    gym = payment.gym
    member = payment.member
    primary_color = _hex_to_rgb(gym.primary_color)

    pdf = FPDF(orientation='P', unit='mm', format='A5')
    pdf.set_auto_page_break(auto=False)
    pdf.add_page()
    font, clean = _receipt_font(pdf)

    pdf.set_y(10)
    pdf.set_font(font, 'B', 16)
    pdf.set_text_color(*primary_color)
    pdf.cell(0, 8, text=clean(gym.name.upper()), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="R")

    pdf.set_font(font, '', 8)
    pdf.set_text_color(60, 60, 60)
    pdf.cell(0, 4, text="Official Receipt", new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="R")

    pdf.ln(2)
    pdf.set_draw_color(*primary_color)
    pdf.set_line_width(0.5)
    pdf.line(10, pdf.get_y(), 138, pdf.get_y())
    pdf.set_line_width(0.2)

    pdf.ln(5)
    pdf.set_font(font, 'B', 20)
    pdf.set_text_color(30, 41, 59)
    pdf.cell(70, 10, text="RECEIPT", align="L")
    pdf.set_fill_color(240, 240, 240)
    pdf.set_font(font, 'B', 10)
    pdf.cell(58, 10, text=invoice.invoice_number, new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="R", fill=True)

    pdf.ln(5)
    col_y = pdf.get_y()

    pdf.set_fill_color(*primary_color)
    pdf.set_text_color(255, 255, 255)
    pdf.set_font(font, 'B', 9)
    pdf.cell(60, 6, text="  BILL TO", new_x=XPos.LMARGIN, new_y=YPos.NEXT, fill=True)
    pdf.set_text_color(30, 41, 59)
    pdf.set_font(font, 'B', 10)
    pdf.ln(2)
    pdf.cell(60, 5, text=clean(member.user.full_name), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_font(font, '', 9)
    pdf.cell(60, 4, text=clean(member.user.email), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.cell(60, 4, text=f"Member {member.member_code}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.set_xy(80, col_y)
    pdf.set_fill_color(30, 41, 59)
    pdf.set_text_color(255, 255, 255)
    pdf.set_font(font, 'B', 9)
    pdf.cell(58, 6, text="  DETAILS", new_x=XPos.LMARGIN, new_y=YPos.NEXT, fill=True)

    def detail_row(label, value):
        pdf.set_x(80)
        pdf.set_font(font, '', 8)
        pdf.set_text_color(100, 100, 100)
        pdf.cell(20, 4, text=label, align="L")
        pdf.set_font(font, 'B', 8)
        pdf.set_text_color(30, 41, 59)
        pdf.cell(38, 4, text=value, align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.ln(2)
    detail_row("Date:", timezone.localtime(payment.paid_at).strftime("%Y-%m-%d"))
    detail_row("Status:", payment.get_status_display().upper())
    detail_row("Method:", payment.get_payment_method_display())
    if payment.transaction_id:
        reference = clean(payment.transaction_id)
        detail_row("Ref:", reference[:15] + "..." if len(reference) > 15 else reference)

    pdf.set_y(max(pdf.get_y(), col_y + 35))
    pdf.set_fill_color(240, 240, 240)
    pdf.set_text_color(30, 41, 59)
    pdf.set_font(font, 'B', 9)
    w_desc, w_qty, w_total = 78, 20, 30
    pdf.cell(w_desc, 8, text="  Description", border="B", fill=True)
    pdf.cell(w_qty, 8, text="Qty", border="B", fill=True, align="C")
    pdf.cell(w_total, 8, text="Total  ", border="B", fill=True, align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.set_font(font, '', 9)
    for item in invoice.items.all():
        pdf.cell(w_desc, 8, text=clean(f"  {item.description[:45]}"), border="B")
        pdf.cell(w_qty, 8, text=str(item.quantity), border="B", align="C")
        pdf.cell(w_total, 8, text=f"{item.total}  ", border="B", align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.ln(3)
    for label, value in (("Subtotal", invoice.subtotal), ("Tax", invoice.tax), ("Discount", invoice.discount)):
        pdf.set_font(font, '', 9)
        pdf.cell(w_desc + w_qty, 6, text=label, align="R")
        pdf.cell(w_total, 6, text=f"{value}  ", align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.set_font(font, 'B', 11)
    pdf.cell(w_desc + w_qty, 8, text=f"PAID ({gym.currency})", align="R")
    pdf.cell(w_total, 8, text=f"{payment.amount}  ", align="R", border="T", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    return bytes(pdf.output())


def _hex_to_rgb(value):
    value = (value or '').lstrip('#')
    if len(value) != 6:
        return 19, 236, 109
    try:
        return tuple(int(value[i:i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        return 19, 236, 109


def _receipt_font(pdf):
    """
    The core PDF fonts only cover Latin-1. A configured TTF renders any
    script; without one, characters outside Latin-1 print as '?'.
    """
    path = settings.RECEIPT_FONT_PATH
    if path and os.path.isfile(path):
        pdf.add_font('ReceiptSans', '', path)
        pdf.add_font('ReceiptSans', 'B', path)
        return 'ReceiptSans', str
    if path:
        logger.warning("Receipt font %s not found; falling back to Helvetica", path)
    return 'Helvetica', _latin1


def _latin1(text):
    return str(text).encode('latin-1', 'replace').decode('latin-1')
