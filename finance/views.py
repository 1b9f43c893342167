import logging

from django.db.models import Count, Q, Sum
from django.http import HttpResponse
from django.utils import timezone

from core.api import ApiError, api_view, bind_form, paginate, send_created, send_success, validate_form
from core.utils import to_money
from tenants.utils import feature_required, get_gym_object_or_404, gym_role_required, require_gym
from . import services
from .forms import ExpenseCategoryForm, ExpenseForm, RevenueForm, RevenueSourceForm
from .models import Expense, ExpenseCategory, Revenue, RevenueSource

logger = logging.getLogger(__name__)


def _report_range(request):
    if request.GET.get('startDate') or request.GET.get('endDate'):
        return services.parse_date_range(request.GET.get('startDate'), request.GET.get('endDate'))
    today = timezone.localdate()
    return today.replace(day=1), today


# =============================================================================
# Expense categories
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff'])
def category_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        if not request.user.can_manage_finance:
            raise ApiError(403, 'Only the gym owner can manage expense categories')
        form = validate_form(bind_form(ExpenseCategoryForm, request.data, gym=gym))
        category = form.save(commit=False)
        category.gym = gym
        category.save()
        return send_created('Expense category created', category.to_dict())

    categories = ExpenseCategory.objects.filter(gym=gym)
    if request.GET.get('isActive') in ('true', 'false'):
        categories = categories.filter(is_active=request.GET['isActive'] == 'true')
    categories = categories.annotate(expense_count=Count('expenses', filter=Q(expenses__is_deleted=False)))

    data = []
    for category in categories:
        item = category.to_dict()
        item['expense_count'] = category.expense_count
        data.append(item)
    return send_success('Expense categories retrieved', data)


@api_view(['PUT', 'DELETE'])
@gym_role_required(['owner'])
def category_detail(request, pk):
    category = get_gym_object_or_404(ExpenseCategory, request, pk=pk)

    if request.method == 'DELETE':
        if category.is_default:
            raise ApiError(400, 'Default categories cannot be deleted. Deactivate them instead.')
        if category.expenses.exists():
            raise ApiError(400, 'Category has expenses. Deactivate it instead.')
        category.delete()
        return send_success('Expense category deleted')

    form = validate_form(bind_form(ExpenseCategoryForm, request.data, instance=category, gym=category.gym))
    category = form.save()
    return send_success('Expense category updated', category.to_dict())


# =============================================================================
# Expenses
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff'])
def expense_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        form = validate_form(bind_form(ExpenseForm, request.data, gym=gym))
        expense = form.save(commit=False)
        expense.gym = gym
        expense.created_by = request.user
        if request.user.can_manage_finance:
            # Owners approve their own entries.
            expense.approval_status = Expense.Approval.APPROVED
            expense.approved_by = request.user
            expense.approved_at = timezone.now()
        expense.save()
        return send_created('Expense created', expense.to_dict())

    expenses = Expense.objects.filter(gym=gym, is_deleted=False).select_related('category', 'created_by', 'approved_by')
    params = request.GET
    if params.get('categoryId'):
        expenses = expenses.filter(category_id=params['categoryId'])
    if params.get('status'):
        expenses = expenses.filter(approval_status=params['status'])
    if params.get('paymentMethod'):
        expenses = expenses.filter(payment_method=params['paymentMethod'])
    if params.get('startDate'):
        expenses = expenses.filter(expense_date__gte=params['startDate'])
    if params.get('endDate'):
        expenses = expenses.filter(expense_date__lte=params['endDate'])
    if params.get('search'):
        expenses = expenses.filter(Q(description__icontains=params['search']) | Q(vendor__icontains=params['search']))

    items, pagination = paginate(request, expenses, Expense.to_dict)
    return send_success('Expenses retrieved', items, pagination=pagination)


@api_view(['GET'])
@gym_role_required(['owner', 'staff'])
def expense_stats(request):
    return send_success('Expense statistics retrieved', services.expense_stats(require_gym(request)))


@api_view(['GET', 'PUT', 'DELETE'])
@gym_role_required(['owner', 'staff'])
def expense_detail(request, pk):
    expense = get_gym_object_or_404(Expense.objects.filter(is_deleted=False).select_related('category'), request, pk=pk)
    is_owner = request.user.can_manage_finance

    if request.method == 'PUT':
        if not is_owner and (expense.approval_status != Expense.Approval.PENDING or expense.created_by_id != request.user.id):
            raise ApiError(403, 'Only your own pending expenses can be edited')
        form = validate_form(bind_form(ExpenseForm, request.data, instance=expense, gym=expense.gym))
        expense = form.save()
        return send_success('Expense updated', expense.to_dict())

    if request.method == 'DELETE':
        if not is_owner and (expense.approval_status != Expense.Approval.PENDING or expense.created_by_id != request.user.id):
            raise ApiError(403, 'Only your own pending expenses can be deleted')
        expense.is_deleted = True
        expense.save(update_fields=['is_deleted', 'updated_at'])
        return send_success('Expense deleted')

    return send_success('Expense retrieved', expense.to_dict())


@api_view(['POST'])
@gym_role_required(['owner'])
def approve_expense(request, pk):
    expense = get_gym_object_or_404(Expense.objects.filter(is_deleted=False), request, pk=pk)
    expense = services.review_expense(expense, request.user, True, request.data.get('notes', ''))
    return send_success('Expense approved', expense.to_dict())


@api_view(['POST'])
@gym_role_required(['owner'])
def reject_expense(request, pk):
    expense = get_gym_object_or_404(Expense.objects.filter(is_deleted=False), request, pk=pk)
    if not request.data.get('notes'):
        raise ApiError(400, 'A reason is required to reject an expense')
    expense = services.review_expense(expense, request.user, False, request.data['notes'])
    return send_success('Expense rejected', expense.to_dict())


# =============================================================================
# Revenue sources
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner', 'staff'])
def source_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        if not request.user.can_manage_finance:
            raise ApiError(403, 'Only the gym owner can manage revenue sources')
        form = validate_form(bind_form(RevenueSourceForm, request.data, gym=gym))
        source = form.save(commit=False)
        source.gym = gym
        source.created_by = request.user
        source.save()
        return send_created('Revenue source created', source.to_dict())

    sources = RevenueSource.objects.filter(gym=gym, is_deleted=False)
    if not sources.exists():
        services.seed_revenue_sources(gym)
    if request.GET.get('isActive') in ('true', 'false'):
        sources = sources.filter(is_active=request.GET['isActive'] == 'true')
    return send_success('Revenue sources retrieved', [source.to_dict() for source in sources])


@api_view(['PUT', 'DELETE'])
@gym_role_required(['owner'])
def source_detail(request, pk):
    source = get_gym_object_or_404(RevenueSource.objects.filter(is_deleted=False), request, pk=pk)

    if request.method == 'DELETE':
        if source.is_system_source:
            raise ApiError(400, 'System sources cannot be deleted. Disable them instead.')
        source.is_deleted = True
        source.is_active = False
        source.save(update_fields=['is_deleted', 'is_active'])
        return send_success('Revenue source deleted')

    data = request.data
    if source.is_system_source:
        # Only the toggles of a system source are editable.
        data = {key: value for key, value in data.items() if key in ('is_active', 'default_amount', 'gst_applicable')}
    form = validate_form(bind_form(RevenueSourceForm, data, instance=source, gym=source.gym))
    source = form.save()
    return send_success('Revenue source updated', source.to_dict())


# =============================================================================
# Revenue
# =============================================================================

@api_view(['GET', 'POST'])
@gym_role_required(['owner'])
def revenue_list(request):
    gym = require_gym(request)

    if request.method == 'POST':
        form = validate_form(bind_form(RevenueForm, request.data, gym=gym))
        data = form.cleaned_data
        revenue = services.create_manual_revenue(
            gym, data['source'], data['amount'], data['description'], request.user,
            revenue_date=data['revenue_date'], notes=data['notes'], member=data.get('member'),
        )
        return send_created('Revenue recorded', revenue.to_dict())

    revenues = Revenue.objects.filter(gym=gym, is_deleted=False).select_related('source')
    params = request.GET
    if params.get('sourceId'):
        revenues = revenues.filter(source_id=params['sourceId'])
    if params.get('generatedBy'):
        revenues = revenues.filter(generated_by=params['generatedBy'])
    if params.get('startDate'):
        revenues = revenues.filter(revenue_date__gte=params['startDate'])
    if params.get('endDate'):
        revenues = revenues.filter(revenue_date__lte=params['endDate'])

    total = revenues.aggregate(total=Sum('amount'))['total']
    items, pagination = paginate(request, revenues, Revenue.to_dict)
    return send_success('Revenue retrieved', items, pagination=pagination, total=str(to_money(total)))


@api_view(['GET', 'DELETE'])
@gym_role_required(['owner'])
def revenue_detail(request, pk):
    revenue = get_gym_object_or_404(Revenue.objects.filter(is_deleted=False).select_related('source'), request, pk=pk)

    if request.method == 'DELETE':
        if revenue.generated_by == Revenue.GeneratedBy.SYSTEM:
            raise ApiError(400, 'System revenue cannot be deleted. Reverse it instead.')
        revenue.is_deleted = True
        revenue.save(update_fields=['is_deleted', 'updated_at'])
        return send_success('Revenue deleted')

    return send_success('Revenue retrieved', revenue.to_dict())


@api_view(['POST'])
@gym_role_required(['owner'])
def reverse_revenue(request, pk):
    revenue = get_gym_object_or_404(Revenue.objects.filter(is_deleted=False), request, pk=pk)
    reason = (request.data.get('reason') or '').strip()
    if not reason:
        raise ApiError(400, 'A reason is required to reverse revenue')
    reversal = services.reverse_revenue(revenue, reason)
    return send_success('Revenue reversed', {'original': revenue.to_dict(), 'reversal': reversal.to_dict()})


# =============================================================================
# Reports
# =============================================================================

@api_view(['GET'])
@gym_role_required(['owner'])
@feature_required('reports')
def profit_loss(request):
    start_date, end_date = services.parse_date_range(request.GET.get('startDate'), request.GET.get('endDate'))
    return send_success('Profit & loss report generated', services.profit_loss(require_gym(request), start_date, end_date))


@api_view(['GET'])
@gym_role_required(['owner'])
@feature_required('reports')
def profit_loss_export(request):
    gym = require_gym(request)
    start_date, end_date = services.parse_date_range(request.GET.get('startDate'), request.GET.get('endDate'))
    response = HttpResponse(
        services.export_profit_loss(gym, start_date, end_date),
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    )
    response['Content-Disposition'] = f'attachment; filename="profit_loss_{start_date}_{end_date}.xlsx"'
    return response


@api_view(['GET'])
@gym_role_required(['owner'])
@feature_required('reports')
def summary(request):
    return send_success('Financial summary retrieved', services.summary(require_gym(request)))


@api_view(['GET'])
@gym_role_required(['owner'])
@feature_required('reports')
def expense_breakdown(request):
    start_date, end_date = _report_range(request)
    return send_success('Expense breakdown retrieved', services.expense_breakdown(require_gym(request), start_date, end_date))


@api_view(['GET'])
@gym_role_required(['owner'])
@feature_required('reports')
def trends(request):
    try:
        months = int(request.GET.get('months', 6))
    except ValueError:
        raise ApiError(400, 'months must be a number')
    if not 1 <= months <= 24:
        raise ApiError(400, 'months must be between 1 and 24')
    return send_success('Financial trends retrieved', services.trends(require_gym(request), months))


@api_view(['GET'])
@gym_role_required(['owner'])
@feature_required('reports')
def expected_revenue(request):
    start_date, end_date = _report_range(request)
    return send_success('Expected revenue calculated', {
        'start': start_date,
        'end': end_date,
        'expected': services.expected_revenue(require_gym(request), start_date, end_date),
    })


@api_view(['GET'])
@gym_role_required(['owner'])
@feature_required('reports')
def collection_efficiency(request):
    start_date, end_date = _report_range(request)
    return send_success(
        'Collection efficiency calculated',
        services.collection_efficiency(require_gym(request), start_date, end_date),
    )
