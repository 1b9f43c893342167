from django import forms

from gym.models import Member
from .models import Invoice, Payment


class InvoiceForm(forms.Form):
    member = forms.ModelChoiceField(queryset=Member.objects.none())
    tax_rate = forms.DecimalField(required=False, min_value=0, max_value=100, decimal_places=2)
    discount = forms.DecimalField(required=False, min_value=0, decimal_places=2)
    due_date = forms.DateField(required=False)
    notes = forms.CharField(required=False)
    status = forms.ChoiceField(
        choices=[(Invoice.Status.DRAFT, 'Draft'), (Invoice.Status.PENDING, 'Pending')],
        required=False,
    )

    def __init__(self, *args, gym=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['member'].queryset = Member.objects.filter(gym=gym)


class PaymentForm(forms.Form):
    invoice = forms.ModelChoiceField(queryset=Invoice.objects.none())
    amount = forms.DecimalField(required=False, min_value=0, decimal_places=2)
    payment_method = forms.ChoiceField(choices=Payment.Method.choices, required=False)
    transaction_id = forms.CharField(required=False, max_length=100)
    notes = forms.CharField(required=False)
    status = forms.ChoiceField(
        choices=[(Payment.Status.COMPLETED, 'Completed'), (Payment.Status.PENDING, 'Pending')],
        required=False,
    )

    def __init__(self, *args, gym=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['invoice'].queryset = Invoice.objects.filter(gym=gym)
