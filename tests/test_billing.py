from datetime import timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from billing import services
from billing.models import Invoice, Payment
from core.api import ApiError
from finance.models import Revenue
from finance.services import create_revenue_from_payment

pytestmark = pytest.mark.django_db


@pytest.fixture
def invoice(member, plan, owner):
    return services.membership_invoice(member, plan, user=owner)


class TestInvoices:
    def test_totals(self, member):
        invoice = services.create_invoice(
            member,
            [
                {'description': 'Personal training pack', 'quantity': 2, 'price': '500.00'},
                {'description': 'Towel', 'quantity': 1, 'price': '100.00'},
            ],
            tax_rate='18',
            discount='50',
        )
        assert invoice.subtotal == Decimal('1100.00')
        assert invoice.tax == Decimal('198.00')
        assert invoice.total == Decimal('1248.00')

    def test_total_never_negative(self, member):
        invoice = services.create_invoice(member, [{'description': 'Promo', 'price': '10.00'}], discount='50')
        assert invoice.total == Decimal('0.00')

    def test_numbers_are_sequential_per_gym(self, member, plan):
        first = services.membership_invoice(member, plan)
        second = services.membership_invoice(member, plan)
        year = timezone.now().year
        assert first.invoice_number == f"INV-{year}-000001"
        assert second.invoice_number == f"INV-{year}-000002"

    def test_items_are_required(self, member):
        with pytest.raises(ApiError):
            services.create_invoice(member, [])

    def test_paid_invoice_is_locked(self, invoice):
        services.record_payment(invoice)
        invoice.refresh_from_db()
        with pytest.raises(ApiError):
            services.update_invoice(invoice, {'discount': '10'})
        with pytest.raises(ApiError):
            services.cancel_invoice(invoice)

    def test_update_recalculates(self, invoice):
        invoice = services.update_invoice(invoice, {'items': [{'description': 'Gold membership', 'quantity': 3,
                                                                'price': '1500.00'}]})
        assert invoice.total == Decimal('4500.00')
        assert invoice.items.count() == 1

    def test_create_invoice_endpoint(self, staff_client, member):
        response = staff_client.post_json('/api/v1/invoices/', {
            'member': member.id,
            'items': [{'description': 'Locker rental', 'quantity': 1, 'price': '200'}],
            'tax_rate': '10',
        })
        assert response.status_code == 201
        assert response.json()['data']['total'] == '220.00'

    def test_member_sees_own_invoices(self, member_client, invoice):
        data = member_client.get('/api/v1/invoices/me').json()['data']
        assert [item['invoice_number'] for item in data] == [invoice.invoice_number]

    def test_mark_overdue_command(self, invoice):
        invoice.due_date = timezone.localdate() - timedelta(days=1)
        invoice.save()
        out = StringIO()
        call_command('mark_overdue', stdout=out)
        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.OVERDUE
        assert 'Marked 1 invoice(s) overdue' in out.getvalue()


class TestPayments:
    def test_payment_settles_invoice_and_books_revenue(self, invoice, owner):
        payment = services.record_payment(invoice, method=Payment.Method.CARD, user=owner)

        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.PAID
        assert payment.amount == Decimal('1500.00')
        revenue = Revenue.objects.get(payment=payment)
        assert revenue.amount == Decimal('1500.00')
        assert revenue.source.name == 'Monthly Membership'
        assert revenue.generated_by == Revenue.GeneratedBy.SYSTEM
        assert invoice.member.user.notifications.filter(title='Payment received').exists()

    def test_cannot_pay_twice(self, invoice):
        services.record_payment(invoice)
        with pytest.raises(ApiError, match='already paid'):
            services.record_payment(invoice)

    def test_cannot_pay_cancelled_invoice(self, invoice):
        services.cancel_invoice(invoice)
        with pytest.raises(ApiError):
            services.record_payment(invoice)

    def test_revenue_booking_is_idempotent(self, invoice):
        payment = services.record_payment(invoice)
        assert create_revenue_from_payment(payment) == Revenue.objects.get(payment=payment)
        assert Revenue.objects.filter(payment=payment).count() == 1

    def test_delete_payment_reverses_revenue(self, invoice):
        payment = services.record_payment(invoice)

        services.delete_payment(payment)

        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.PENDING
        assert invoice.paid_at is None
        original = Revenue.objects.get(reversal_of__isnull=True)
        assert original.is_reversed
        assert original.reversal.amount == Decimal('-1500.00')

    def test_refund(self, invoice):
        payment = services.record_payment(invoice)

        services.refund_payment(payment, reason='Moved away')

        assert payment.status == Payment.Status.REFUNDED
        assert 'Moved away' in payment.notes
        assert Revenue.objects.filter(reversal_of__isnull=False).count() == 1
        with pytest.raises(ApiError):
            services.refund_payment(payment)

    def test_pending_payment_books_nothing(self, invoice):
        services.record_payment(invoice, status=Payment.Status.PENDING)
        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.PENDING
        assert not Revenue.objects.exists()

    def test_mark_paid_endpoint(self, staff_client, invoice):
        response = staff_client.post_json(f'/api/v1/invoices/{invoice.id}/mark-paid', {'payment_method': 'online'})
        assert response.status_code == 200
        data = response.json()['data']
        assert data['invoice']['status'] == 'paid'
        assert data['payment']['payment_method'] == 'online'

    def test_only_owner_deletes_payments(self, staff_client, owner_client, invoice):
        payment = services.record_payment(invoice)
        assert staff_client.delete(f'/api/v1/payments/{payment.id}').status_code == 403
        assert owner_client.delete(f'/api/v1/payments/{payment.id}').status_code == 200
        assert not Payment.objects.exists()

    def test_payments_feature_toggle(self, staff_client, gym):
        gym.payments = False
        gym.save()
        assert staff_client.get('/api/v1/payments/').status_code == 403


class TestReceipts:
    def test_receipt_pdf(self, invoice):
        payment = services.record_payment(invoice, transaction_id='TXN-1234567890-ABCDEFG')
        pdf = services.render_receipt(payment)
        assert pdf.startswith(b'%PDF')

    def test_receipt_with_non_latin_names(self, gym, member, invoice):
        gym.name = 'आयरन टेम्पल'
        gym.save()
        member.user.first_name = 'प्रिया'
        member.user.save()
        payment = services.record_payment(invoice, transaction_id='UPI-भुगतान')

        pdf = services.render_receipt(payment)

        assert pdf.startswith(b'%PDF')

    def test_missing_receipt_font_falls_back(self, settings, invoice):
        settings.RECEIPT_FONT_PATH = '/nonexistent/NotoSans.ttf'
        payment = services.record_payment(invoice)
        assert services.render_receipt(payment).startswith(b'%PDF')
        assert services._latin1('Café आ') == 'Café ?'

    def test_member_downloads_own_receipt(self, member_client, invoice):
        payment = services.record_payment(invoice)
        response = member_client.get(f'/api/v1/payments/{payment.id}/receipt')
        assert response.status_code == 200
        assert response['Content-Type'] == 'application/pdf'
        assert invoice.invoice_number in response['Content-Disposition']

    def test_no_receipt_for_pending_payment(self, staff_client, invoice):
        payment = services.record_payment(invoice, status=Payment.Status.PENDING)
        assert staff_client.get(f'/api/v1/payments/{payment.id}/receipt').status_code == 400

    def test_hex_colour_fallback(self):
        assert services._hex_to_rgb('#2563eb') == (37, 99, 235)
        assert services._hex_to_rgb('nope') == (19, 236, 109)
