from django import forms

from .models import FeatureFlags, Gym


class GymForm(forms.ModelForm):
    class Meta:
        model = Gym
        fields = [
            'name', 'subdomain', 'logo_url', 'primary_color', 'secondary_color',
            'contact_email', 'contact_phone', 'address', 'website', 'currency', 'timezone',
        ]

    def clean_subdomain(self):
        subdomain = (self.cleaned_data.get('subdomain') or '').strip().lower()
        if not subdomain:
            return None
        if not subdomain.replace('-', '').isalnum():
            raise forms.ValidationError("Subdomain may only contain letters, digits and hyphens.")
        if Gym.objects.filter(subdomain=subdomain).exclude(pk=self.instance.pk).exists():
            raise forms.ValidationError("This subdomain is already taken.")
        return subdomain


class GymFeaturesForm(forms.ModelForm):
    class Meta:
        model = Gym
        fields = FeatureFlags.FEATURES
