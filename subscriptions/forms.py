from django import forms

from tenants.models import FeatureFlags
from .models import SubscriptionPlan


class SubscriptionPlanForm(forms.ModelForm):
    class Meta:
        model = SubscriptionPlan
        fields = [
            'gym', 'name', 'description', 'price', 'duration',
            'max_members', 'max_branches', 'max_storage_mb', 'trial_days', 'is_active',
        ] + FeatureFlags.FEATURES

    def clean_price(self):
        price = self.cleaned_data['price']
        if price < 0:
            raise forms.ValidationError("Price cannot be negative.")
        return price


class VerifyPaymentForm(forms.Form):
    razorpay_order_id = forms.CharField(max_length=100)
    razorpay_payment_id = forms.CharField(max_length=100)
    razorpay_signature = forms.CharField(max_length=255)
