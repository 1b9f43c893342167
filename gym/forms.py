from django import forms

from .models import MEMBER_PORTAL_FEATURES, AttendanceConfig, AttendanceMethod, Member, MemberAccessConfig, Plan, Staff


class PlanForm(forms.ModelForm):
    class Meta:
        model = Plan
        fields = ['name', 'description', 'price', 'duration', 'duration_days', 'features', 'is_active', 'is_default']

    def clean_price(self):
        price = self.cleaned_data['price']
        if price < 0:
            raise forms.ValidationError("Price cannot be negative.")
        return price

    def clean_features(self):
        features = self.cleaned_data.get('features') or []
        if not isinstance(features, list) or not all(isinstance(item, str) for item in features):
            raise forms.ValidationError("Features must be a list of strings.")
        return features

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('duration') == Plan.Duration.CUSTOM and not cleaned_data.get('duration_days'):
            self.add_error('duration_days', "Custom plans need a duration in days.")
        return cleaned_data


class MemberForm(forms.ModelForm):
    """Profile fields a gym can set on a member; plan and dates are handled separately on create."""

    class Meta:
        model = Member
        fields = [
            'plan', 'subscription_start', 'subscription_end', 'status',
            'blood_group', 'address', 'emergency_contact_name', 'emergency_contact_phone', 'notes',
        ]

    def __init__(self, *args, gym=None, **kwargs):
        super().__init__(*args, **kwargs)
        if gym is not None:
            self.fields['plan'].queryset = Plan.objects.filter(gym=gym)

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('subscription_start')
        end = cleaned_data.get('subscription_end')
        if start and end and end < start:
            self.add_error('subscription_end', "Membership cannot end before it starts.")
        return cleaned_data


class NewMemberForm(forms.Form):
    plan = forms.ModelChoiceField(queryset=Plan.objects.none())
    subscription_start = forms.DateField(required=False)
    blood_group = forms.ChoiceField(choices=[('', '')] + Member.BLOOD_GROUPS, required=False)
    address = forms.CharField(required=False)
    emergency_contact_name = forms.CharField(required=False, max_length=100)
    emergency_contact_phone = forms.CharField(required=False, max_length=20)
    notes = forms.CharField(required=False)

    PROFILE_FIELDS = ['blood_group', 'address', 'emergency_contact_name', 'emergency_contact_phone', 'notes']

    def __init__(self, *args, gym=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['plan'].queryset = Plan.objects.filter(gym=gym, is_active=True)

    @property
    def profile(self):
        return {field: self.cleaned_data.get(field) or '' for field in self.PROFILE_FIELDS}


class StaffForm(forms.ModelForm):
    class Meta:
        model = Staff
        fields = ['specialty', 'schedule', 'hourly_rate', 'is_active']


class AttendanceConfigForm(forms.ModelForm):
    class Meta:
        model = AttendanceConfig
        fields = [
            'active_methods', 'is_enabled',
            'qr_type', 'qr_expiry_minutes', 'allow_multiple_checkins',
            'auto_checkout_enabled', 'auto_checkout_after_hours',
            'working_hours_enabled', 'working_hours_start', 'working_hours_end',
        ]

    def clean_active_methods(self):
        methods = self.cleaned_data.get('active_methods') or []
        if not isinstance(methods, list):
            raise forms.ValidationError("Active methods must be a list.")
        unavailable = [method for method in methods if method not in self.instance.available_methods]
        if unavailable:
            raise forms.ValidationError(f"Methods not available for this gym: {', '.join(unavailable)}")
        return list(dict.fromkeys(methods))

    def clean_qr_expiry_minutes(self):
        minutes = self.cleaned_data['qr_expiry_minutes']
        if minutes < 1:
            raise forms.ValidationError("QR expiry must be at least one minute.")
        return minutes

    def clean_auto_checkout_after_hours(self):
        hours = self.cleaned_data['auto_checkout_after_hours']
        if not 1 <= hours <= 24:
            raise forms.ValidationError("Auto check-out must be between 1 and 24 hours.")
        return hours

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('working_hours_start')
        end = cleaned_data.get('working_hours_end')
        # end before start is an overnight window
        if cleaned_data.get('working_hours_enabled') and start and end and end == start:
            self.add_error('working_hours_end', "Working hours cannot start and end at the same time.")
        return cleaned_data


class AvailableMethodsForm(forms.Form):
    available_methods = forms.MultipleChoiceField(choices=AttendanceMethod.choices)


def _feature_flags(value, current, allow_null=False):
    """Validates a {feature: bool} object and merges it over `current`."""
    if value is None:
        return dict(current)
    if not isinstance(value, dict):
        raise forms.ValidationError("Expected an object of feature flags.")
    unknown = [key for key in value if key not in MEMBER_PORTAL_FEATURES]
    if unknown:
        raise forms.ValidationError(f"Unknown features: {', '.join(unknown)}")
    merged = dict(current)
    for feature, flag in value.items():
        if flag is None and allow_null:
            merged.pop(feature, None)
        elif isinstance(flag, bool):
            merged[feature] = flag
        else:
            raise forms.ValidationError(f"'{feature}' must be true or false.")
    return merged


class MemberAccessConfigForm(forms.ModelForm):
    """Partial updates: only the features named in the payload change."""

    class Meta:
        model = MemberAccessConfig
        fields = ['default_feature_access', 'permission_levels']

    def clean_default_feature_access(self):
        return _feature_flags(self.cleaned_data.get('default_feature_access'), self.instance.default_feature_access)

    def clean_permission_levels(self):
        value = self.cleaned_data.get('permission_levels')
        current = self.instance.permission_levels
        if value is None:
            return dict(current)
        if not isinstance(value, dict):
            raise forms.ValidationError("Expected an object keyed by access level.")
        unknown = [key for key in value if key not in Member.AccessLevel.values]
        if unknown:
            raise forms.ValidationError(f"Unknown access levels: {', '.join(unknown)}")
        merged = dict(current)
        for level, flags in value.items():
            merged[level] = _feature_flags(flags, current.get(level) or {})
        return merged


class MemberAccessForm(forms.ModelForm):
    """Per-member access; a null restriction clears the override."""

    class Meta:
        model = Member
        fields = ['can_login', 'access_level', 'access_restrictions']

    def clean_access_restrictions(self):
        return _feature_flags(
            self.cleaned_data.get('access_restrictions'), self.instance.access_restrictions, allow_null=True,
        )


class BulkMemberAccessForm(forms.Form):
    member_ids = forms.JSONField()
    can_login = forms.NullBooleanField(required=False)
    access_level = forms.ChoiceField(choices=Member.AccessLevel.choices, required=False)
    access_restrictions = forms.JSONField(required=False)

    def clean_member_ids(self):
        ids = self.cleaned_data.get('member_ids')
        if not isinstance(ids, list) or not ids or not all(isinstance(item, int) for item in ids):
            raise forms.ValidationError("Provide a non-empty list of member ids.")
        return ids

    def clean_access_restrictions(self):
        value = self.cleaned_data.get('access_restrictions')
        if value is None:
            return None
        return _feature_flags(value, {}, allow_null=True)

    @property
    def changes(self):
        return {
            field: self.cleaned_data[field]
            for field in ('can_login', 'access_level', 'access_restrictions')
            if self.cleaned_data.get(field) not in (None, '')
        }

    def clean(self):
        cleaned_data = super().clean()
        if not self.errors and not self.changes:
            raise forms.ValidationError("Nothing to update.")
        return cleaned_data


class MemberProfileForm(forms.ModelForm):
    """Fields members may change on their own profile."""

    class Meta:
        model = Member
        fields = ['blood_group', 'address', 'emergency_contact_name', 'emergency_contact_phone']
