from django.db.models import Q
from django.shortcuts import get_object_or_404

from core.api import ApiError, api_view, bind_form, paginate, send_created, send_success, validate_form
from tenants.utils import gym_role_required, require_gym
from . import services
from .forms import FAQForm, TicketForm, TicketUpdateForm
from .models import FAQ, SupportTicket


def _tickets_for(request):
    tickets = SupportTicket.objects.select_related('user', 'assigned_to')
    user = request.user
    if user.is_super_admin:
        gym = getattr(request, 'gym', None)
        return tickets.filter(gym=gym) if gym is not None else tickets
    tickets = tickets.filter(gym=require_gym(request))
    if user.is_gym_member:
        tickets = tickets.filter(user=user)
    return tickets


# =============================================================================
# Tickets
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff', 'member'], gym_required=False)
def ticket_list(request):
    if request.method == 'POST':
        form = validate_form(bind_form(TicketForm, request.data))
        ticket = services.open_ticket(require_gym(request), request.user, **form.cleaned_data)
        return send_created('Support ticket created', ticket.to_dict())

    tickets = _tickets_for(request)
    params = request.GET
    for param, field in (('status', 'status'), ('priority', 'priority'), ('category', 'category'),
                         ('assignedTo', 'assigned_to_id'), ('userId', 'user_id')):
        if params.get(param):
            tickets = tickets.filter(**{field: params[param]})
    if params.get('search'):
        tickets = tickets.filter(Q(subject__icontains=params['search']) | Q(ticket_number__icontains=params['search']))

    items, pagination = paginate(request, tickets, SupportTicket.to_dict)
    return send_success('Support tickets retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner', 'staff', 'member'], gym_required=False)
def ticket_stats(request):
    return send_success('Ticket statistics retrieved', services.ticket_stats(_tickets_for(request)))


@api_view(['GET', 'PUT'])
@gym_role_required(['owner', 'staff', 'member'], gym_required=False)
def ticket_detail(request, pk):
    ticket = get_object_or_404(_tickets_for(request), pk=pk)

    if request.method == 'PUT':
        if request.user.is_gym_member:
            raise ApiError(403, 'Members cannot update tickets. Add a reply instead.')
        form = validate_form(bind_form(TicketUpdateForm, request.data, instance=ticket))
        ticket = form.save(commit=False)
        if 'assigned_to' in request.data:
            services.assign_ticket(ticket, request.data['assigned_to'])
        ticket.save()
        return send_success('Support ticket updated', ticket.to_dict(replies=True))

    return send_success('Support ticket retrieved', ticket.to_dict(replies=True))


@api_view(['POST'])
@gym_role_required(['owner', 'staff', 'member'], gym_required=False)
def ticket_reply(request, pk):
    ticket = get_object_or_404(_tickets_for(request).select_related('gym'), pk=pk)
    services.add_reply(ticket, request.user, request.data.get('message'))
    return send_created('Reply added', ticket.to_dict(replies=True))


# =============================================================================
# FAQ
# =============================================================================

def _faqs_for(request):
    faqs = services.visible_faqs(getattr(request, 'gym', None))
    if request.GET.get('category'):
        faqs = faqs.filter(category=request.GET['category'])
    if request.GET.get('search'):
        search = request.GET['search']
        faqs = faqs.filter(Q(question__icontains=search) | Q(answer__icontains=search))
    return faqs


def _managed_faq(request, pk):
    faq = get_object_or_404(FAQ, pk=pk)
    user = request.user
    if faq.gym_id is None and not user.is_super_admin:
        raise ApiError(403, 'Only a super admin can change global FAQs')
    if faq.gym_id is not None and not (user.is_super_admin or (user.is_gym_owner and user.gym_id == faq.gym_id)):
        raise ApiError(403, 'You can only manage FAQs of your own gym')
    return faq


@api_view(['GET', 'POST'])
def faq_list(request):
    if request.method == 'POST':
        user = request.user
        if not (user.is_super_admin or user.is_gym_owner):
            raise ApiError(403, 'Only gym owners and super admins can create FAQs')
        form = validate_form(bind_form(FAQForm, request.data))
        faq = form.save(commit=False)
        faq.gym = None if user.is_super_admin else require_gym(request)
        faq.created_by = user
        faq.save()
        return send_created('FAQ created', faq.to_dict())

    items, pagination = paginate(request, _faqs_for(request), FAQ.to_dict, default_limit=50)
    return send_success('FAQs retrieved', items, pagination=pagination)


@api_view(['GET'])
def faq_categories(request):
    return send_success('FAQ categories retrieved', services.faq_categories(services.visible_faqs(getattr(request, 'gym', None))))


@api_view(['GET', 'PUT', 'DELETE'])
def faq_detail(request, pk):
    if request.method == 'GET':
        faq = get_object_or_404(services.visible_faqs(getattr(request, 'gym', None)), pk=pk)
        services.record_view(faq)
        return send_success('FAQ retrieved', faq.to_dict())

    faq = _managed_faq(request, pk)
    if request.method == 'DELETE':
        faq.delete()
        return send_success('FAQ deleted')

    form = validate_form(bind_form(FAQForm, request.data, instance=faq))
    faq = form.save()
    return send_success('FAQ updated', faq.to_dict())


@api_view(['POST'])
def faq_rate(request, pk):
    faq = get_object_or_404(services.visible_faqs(getattr(request, 'gym', None)), pk=pk)
    helpful = request.data.get('helpful')
    if not isinstance(helpful, bool):
        raise ApiError(400, 'helpful must be true or false')
    faq = services.rate_faq(faq, helpful)
    return send_success('Thanks for your feedback', {'helpful': faq.helpful, 'not_helpful': faq.not_helpful})
