from django import forms

from .models import FAQ, SupportTicket


class TicketForm(forms.ModelForm):
    class Meta:
        model = SupportTicket
        fields = ['subject', 'description', 'category', 'priority']


class TicketUpdateForm(forms.ModelForm):
    class Meta:
        model = SupportTicket
        fields = ['status', 'priority', 'category']


class FAQForm(forms.ModelForm):
    class Meta:
        model = FAQ
        fields = ['question', 'answer', 'category', 'order', 'is_active']
