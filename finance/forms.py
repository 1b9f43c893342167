from django import forms

from gym.models import Member
from .models import Expense, ExpenseCategory, Revenue, RevenueSource


class ExpenseCategoryForm(forms.ModelForm):
    class Meta:
        model = ExpenseCategory
        fields = ['name', 'description', 'icon', 'color', 'is_active']

    def __init__(self, *args, gym=None, **kwargs):
        self.gym = gym
        super().__init__(*args, **kwargs)

    def clean_name(self):
        name = self.cleaned_data['name'].strip()
        existing = ExpenseCategory.objects.filter(gym=self.gym, name__iexact=name)
        if self.instance.pk:
            existing = existing.exclude(pk=self.instance.pk)
        if existing.exists():
            raise forms.ValidationError("A category with this name already exists.")
        return name


class ExpenseForm(forms.ModelForm):
    class Meta:
        model = Expense
        fields = ['amount', 'category', 'description', 'expense_date', 'payment_method', 'vendor', 'notes']

    def __init__(self, *args, gym=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['category'].queryset = ExpenseCategory.objects.filter(gym=gym, is_active=True)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount <= 0:
            raise forms.ValidationError("Amount must be greater than zero.")
        return amount


class RevenueSourceForm(forms.ModelForm):
    class Meta:
        model = RevenueSource
        fields = [
            'name', 'description', 'category', 'auto_generate', 'linked_module', 'default_amount',
            'gst_applicable', 'is_active', 'icon', 'color',
        ]

    def __init__(self, *args, gym=None, **kwargs):
        self.gym = gym
        super().__init__(*args, **kwargs)

    def clean_name(self):
        name = self.cleaned_data['name'].strip()
        existing = RevenueSource.objects.filter(gym=self.gym, name__iexact=name, is_deleted=False)
        if self.instance.pk:
            existing = existing.exclude(pk=self.instance.pk)
        if existing.exists():
            raise forms.ValidationError("A revenue source with this name already exists.")
        return name


class RevenueForm(forms.ModelForm):
    class Meta:
        model = Revenue
        fields = ['amount', 'source', 'description', 'revenue_date', 'notes', 'member']

    def __init__(self, *args, gym=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['source'].queryset = RevenueSource.objects.filter(gym=gym, is_deleted=False)
        self.fields['member'].queryset = Member.objects.filter(gym=gym)
        self.fields['member'].required = False
