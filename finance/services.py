import io
import logging
import re
from datetime import datetime

import openpyxl
from dateutil.relativedelta import relativedelta
from django.db import transaction
from django.db.models import Count, Sum
from django.db.models.functions import TruncMonth
from django.utils import timezone
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from core.api import ApiError
from core.utils import to_money
from gym.models import Member
from .models import Expense, ExpenseCategory, Revenue, RevenueSource

logger = logging.getLogger(__name__)

SYSTEM_SOURCES = [
    {
        'name': 'Monthly Membership',
        'description': 'Monthly membership fees and renewals',
        'category': RevenueSource.Category.RECURRING,
        'auto_generate': True,
        'linked_module': 'membership',
        'gst_applicable': True,
        'icon': 'users',
        'color': '#3b82f6',
    },
    {
        'name': 'Personal Training',
        'description': 'Personal training sessions and packages',
        'category': RevenueSource.Category.ONE_TIME,
        'auto_generate': True,
        'linked_module': 'pt',
        'gst_applicable': True,
        'icon': 'dumbbell',
        'color': '#f59e0b',
    },
    {
        'name': 'Cardio Plans',
        'description': 'Cardio and add-on plan subscriptions',
        'category': RevenueSource.Category.RECURRING,
        'auto_generate': True,
        'linked_module': 'cardio',
        'gst_applicable': True,
        'icon': 'running',
        'color': '#ec4899',
    },
    {
        'name': 'Group Classes',
        'description': 'Group fitness classes (Yoga, Zumba, etc.)',
        'category': RevenueSource.Category.ONE_TIME,
        'auto_generate': True,
        'linked_module': 'class',
        'gst_applicable': True,
        'icon': 'yoga',
        'color': '#8b5cf6',
    },
    {
        'name': 'Admission Fee',
        'description': 'One-time admission/joining fees',
        'category': RevenueSource.Category.ONE_TIME,
        'auto_generate': True,
        'linked_module': 'admission',
        'gst_applicable': True,
        'icon': 'ticket',
        'color': '#14b8a6',
    },
    {
        'name': 'Merchandise',
        'description': 'POS sales, supplements, equipment',
        'category': RevenueSource.Category.ONE_TIME,
        'auto_generate': False,
        'linked_module': 'pos',
        'gst_applicable': True,
        'icon': 'cart',
        'color': '#06b6d4',
    },
    {
        'name': RevenueSource.MANUAL,
        'description': 'Manual revenue entries (events, sponsorships, misc)',
        'category': RevenueSource.Category.ONE_TIME,
        'auto_generate': False,
        'linked_module': '',
        'gst_applicable': False,
        'icon': 'wallet',
        'color': '#10b981',
    },
]

# Checked in order; the first match wins.
SOURCE_KEYWORDS = [
    ('Monthly Membership', re.compile(r'membership|subscription')),
    ('Personal Training', re.compile(r'personal training|\bpt\b|trainer')),
    ('Cardio Plans', re.compile(r'cardio|treadmill|cycle')),
    ('Group Classes', re.compile(r'class|yoga|zumba')),
    ('Admission Fee', re.compile(r'admission|joining|registration')),
    ('Merchandise', re.compile(r'merchandise|product|supplement')),
]


def seed_revenue_sources(gym, created_by=None):
    """Creates the system revenue sources for a gym. Returns how many were added."""
    created = 0
    for source in SYSTEM_SOURCES:
        _, was_created = RevenueSource.objects.get_or_create(
            gym=gym,
            name=source['name'],
            defaults={**source, 'is_system_source': True, 'created_by': created_by},
        )
        created += was_created
    return created


def seed_gym_defaults(gym):
    ExpenseCategory.seed_defaults(gym)
    seed_revenue_sources(gym)


# =============================================================================
# Revenue
# =============================================================================

def detect_revenue_source(invoice, gym):
    """Picks a source from the first invoice item's description."""
    name = RevenueSource.MANUAL
    first_item = invoice.items.first() if invoice is not None else None
    if first_item is not None:
        description = first_item.description.lower()
        for source_name, pattern in SOURCE_KEYWORDS:
            if pattern.search(description):
                name = source_name
                break

    sources = RevenueSource.objects.filter(gym=gym, is_deleted=False)
    source = sources.filter(name=name, is_active=True).first()
    if source is None:
        source = sources.filter(name=RevenueSource.MANUAL).first()
    if source is None:
        seed_revenue_sources(gym)
        source = RevenueSource.objects.get(gym=gym, name=RevenueSource.MANUAL)
    return source


def create_revenue_from_payment(payment):
    """Books a completed payment as revenue. Safe to call more than once."""
    existing = Revenue.objects.filter(
        reference_type='payment', reference_id=str(payment.pk), is_deleted=False, reversal_of__isnull=True,
    ).first()
    if existing is not None:
        return existing

    invoice = payment.invoice
    source = detect_revenue_source(invoice, payment.gym)
    description = ', '.join(item.description for item in invoice.items.all()) or 'Payment received'
    revenue = Revenue.objects.create(
        gym=payment.gym,
        amount=payment.amount,
        source=source,
        description=description[:255],
        revenue_date=timezone.localdate(payment.paid_at),
        notes=f"Auto-generated from payment #{payment.pk}",
        payment=payment,
        member=invoice.member,
        created_by=payment.recorded_by,
        generated_by=Revenue.GeneratedBy.SYSTEM,
        reference_type='payment',
        reference_id=str(payment.pk),
    )
    logger.info("Revenue %s booked from payment %s under %s", revenue.pk, payment.pk, source.name)
    return revenue


def reverse_revenue(original, reason='Refund processed'):
    """Flags a revenue entry as reversed and books the negative counter-entry."""
    if original.is_reversed:
        raise ApiError(400, 'Revenue is already reversed')
    if original.reversal_of_id:
        raise ApiError(400, 'A reversal entry cannot be reversed')

    with transaction.atomic():
        original.is_reversed = True
        original.reversed_at = timezone.now()
        original.reversal_reason = reason[:255]
        original.save(update_fields=['is_reversed', 'reversed_at', 'reversal_reason', 'updated_at'])
        reversal = Revenue.objects.create(
            gym=original.gym,
            amount=-original.amount,
            source=original.source,
            description=f"REVERSAL: {original.description}"[:255],
            notes=f"Reversal of revenue {original.pk}. Reason: {reason}",
            payment=original.payment,
            member=original.member,
            created_by=original.created_by,
            generated_by=Revenue.GeneratedBy.SYSTEM,
            reference_type=original.reference_type,
            reference_id=original.reference_id,
            reversal_of=original,
        )
    logger.info("Revenue %s reversed by %s", original.pk, reversal.pk)
    return reversal


def reverse_payment_revenue(payment, reason):
    original = Revenue.objects.filter(
        reference_type='payment', reference_id=str(payment.pk),
        is_deleted=False, is_reversed=False, reversal_of__isnull=True,
    ).first()
    if original is None:
        return None
    return reverse_revenue(original, reason)


def create_manual_revenue(gym, source, amount, description, user, revenue_date=None, notes='', member=None):
    if source.auto_generate:
        raise ApiError(400, f"'{source.name}' revenue is recorded automatically from payments")
    if not source.is_active or source.is_deleted:
        raise ApiError(400, 'Revenue source is not active')
    amount = to_money(amount)
    if amount <= 0:
        raise ApiError(400, 'Amount must be greater than zero')
    return Revenue.objects.create(
        gym=gym,
        amount=amount,
        source=source,
        description=description,
        revenue_date=revenue_date or timezone.localdate(),
        notes=notes,
        member=member,
        created_by=user,
        generated_by=Revenue.GeneratedBy.MANUAL,
        reference_type='manual',
    )


# =============================================================================
# Expenses
# =============================================================================

def review_expense(expense, user, approve, notes=''):
    if expense.approval_status != Expense.Approval.PENDING:
        raise ApiError(400, f'Expense is already {expense.approval_status}')
    expense.approval_status = Expense.Approval.APPROVED if approve else Expense.Approval.REJECTED
    expense.approved_by = user
    expense.approved_at = timezone.now()
    expense.approval_notes = notes or ''
    expense.save()
    return expense


def expense_stats(gym, today=None):
    today = today or timezone.localdate()
    expenses = Expense.objects.filter(gym=gym, is_deleted=False)
    approved = expenses.filter(approval_status=Expense.Approval.APPROVED)
    this_month = approved.filter(expense_date__gte=today.replace(day=1), expense_date__lte=today)
    return {
        'total_approved': to_money(approved.aggregate(total=Sum('amount'))['total']),
        'this_month': to_money(this_month.aggregate(total=Sum('amount'))['total']),
        'pending_count': expenses.filter(approval_status=Expense.Approval.PENDING).count(),
        'pending_amount': to_money(
            expenses.filter(approval_status=Expense.Approval.PENDING).aggregate(total=Sum('amount'))['total']
        ),
        'rejected_count': expenses.filter(approval_status=Expense.Approval.REJECTED).count(),
    }


# =============================================================================
# Reports
# =============================================================================

def parse_date_range(start, end):
    if not start or not end:
        raise ApiError(400, 'startDate and endDate are required')
    try:
        start_date = datetime.strptime(start, '%Y-%m-%d').date()
        end_date = datetime.strptime(end, '%Y-%m-%d').date()
    except ValueError:
        raise ApiError(400, 'Dates must be in YYYY-MM-DD format')
    if end_date < start_date:
        raise ApiError(400, 'endDate must not be before startDate')
    return start_date, end_date


def _revenues(gym, start_date, end_date):
    return Revenue.objects.filter(
        gym=gym, is_deleted=False, revenue_date__gte=start_date, revenue_date__lte=end_date,
    )


def _approved_expenses(gym, start_date, end_date):
    return Expense.objects.filter(
        gym=gym, is_deleted=False, approval_status=Expense.Approval.APPROVED,
        expense_date__gte=start_date, expense_date__lte=end_date,
    )


def _margin(income, net):
    return float(round(net / income * 100, 2)) if income > 0 else 0.0


def profit_loss(gym, start_date, end_date):
    """Income is net of reversals; expenses count only once approved."""
    revenues = _revenues(gym, start_date, end_date)
    expenses = _approved_expenses(gym, start_date, end_date)

    by_source = [
        {'source': row['source__name'], 'total': to_money(row['total']), 'count': row['count']}
        for row in revenues.values('source__name').annotate(total=Sum('amount'), count=Count('id')).order_by('-total')
    ]
    by_category = [
        {'category': row['category__name'], 'total': to_money(row['total']), 'count': row['count']}
        for row in expenses.values('category__name').annotate(total=Sum('amount'), count=Count('id')).order_by('-total')
    ]

    income = to_money(revenues.aggregate(total=Sum('amount'))['total'])
    total_expenses = to_money(expenses.aggregate(total=Sum('amount'))['total'])
    net = income - total_expenses
    return {
        'period': {'start': start_date, 'end': end_date},
        'summary': {
            'total_income': income,
            'total_expenses': total_expenses,
            'net_profit': net,
            'profit_margin': _margin(income, net),
        },
        'revenue_by_source': by_source,
        'expenses_by_category': by_category,
    }


def summary(gym, today=None):
    today = today or timezone.localdate()
    month_start = today.replace(day=1)
    last_month_start = month_start - relativedelta(months=1)
    last_month_end = month_start - relativedelta(days=1)

    def totals(start_date, end_date):
        income = to_money(_revenues(gym, start_date, end_date).aggregate(total=Sum('amount'))['total'])
        spent = to_money(_approved_expenses(gym, start_date, end_date).aggregate(total=Sum('amount'))['total'])
        return {'income': income, 'expenses': spent, 'net_profit': income - spent}

    current = totals(month_start, today)
    previous = totals(last_month_start, last_month_end)

    def change(now, before):
        if before == 0:
            return 100.0 if now > 0 else 0.0
        return float(round((now - before) / abs(before) * 100, 2))

    return {
        'this_month': current,
        'last_month': previous,
        'change': {key: change(current[key], previous[key]) for key in current},
    }


def expense_breakdown(gym, start_date, end_date):
    expenses = _approved_expenses(gym, start_date, end_date)
    total = to_money(expenses.aggregate(total=Sum('amount'))['total'])
    rows = (
        expenses.values('category__id', 'category__name', 'category__color')
        .annotate(total=Sum('amount'), count=Count('id'))
        .order_by('-total')
    )
    return {
        'total': total,
        'categories': [
            {
                'category_id': row['category__id'],
                'name': row['category__name'],
                'color': row['category__color'],
                'total': to_money(row['total']),
                'count': row['count'],
                'percentage': float(round(row['total'] / total * 100, 2)) if total else 0.0,
            }
            for row in rows
        ],
    }


def trends(gym, months=6, today=None):
    """Month-by-month income, expenses and profit, oldest first."""
    today = today or timezone.localdate()
    start_date = today.replace(day=1) - relativedelta(months=months - 1)

    def monthly(queryset, field):
        rows = (
            queryset.annotate(month=TruncMonth(field))
            .values('month')
            .annotate(total=Sum('amount'))
        )
        return {row['month']: to_money(row['total']) for row in rows}

    income = monthly(_revenues(gym, start_date, today), 'revenue_date')
    spent = monthly(_approved_expenses(gym, start_date, today), 'expense_date')

    result = []
    for offset in range(months):
        month = start_date + relativedelta(months=offset)
        month_income = income.get(month, to_money(0))
        month_spent = spent.get(month, to_money(0))
        result.append({
            'month': month.strftime('%Y-%m'),
            'income': month_income,
            'expenses': month_spent,
            'net_profit': month_income - month_spent,
        })
    return result


def expected_revenue(gym, start_date, end_date):
    """Recurring revenue owed by members whose membership runs into the period."""
    total = (
        Member.objects.filter(
            gym=gym, status=Member.Status.ACTIVE, subscription_start__lte=end_date, subscription_end__gte=start_date,
        )
        .aggregate(total=Sum('plan__price'))['total']
    )
    return to_money(total)


def collection_efficiency(gym, start_date, end_date):
    expected = expected_revenue(gym, start_date, end_date)
    collected = to_money(
        _revenues(gym, start_date, end_date)
        .filter(is_reversed=False, reversal_of__isnull=True)
        .aggregate(total=Sum('amount'))['total']
    )
    return {
        'expected': expected,
        'collected': collected,
        'pending': expected - collected,
        'efficiency': float(round(collected / expected * 100, 2)) if expected > 0 else 0.0,
    }


def export_profit_loss(gym, start_date, end_date):
    """Renders the P&L report as an .xlsx workbook and returns its bytes."""
    report = profit_loss(gym, start_date, end_date)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Profit & Loss"

    header_font = Font(name='Arial', size=14, bold=True, color='FFFFFF')
    subheader_font = Font(name='Arial', size=12, bold=True, color='333333')
    bold_text_font = Font(name='Arial', size=10, bold=True)
    header_fill = PatternFill(start_color='13EC6D', end_color='13EC6D', fill_type='solid')
    subheader_fill = PatternFill(start_color='E0E0E0', end_color='E0E0E0', fill_type='solid')
    center_align = Alignment(horizontal='center', vertical='center')
    thin_border = Border(left=Side(style='thin'), right=Side(style='thin'),
                         top=Side(style='thin'), bottom=Side(style='thin'))

    ws.merge_cells('A1:C1')
    cell = ws['A1']
    cell.value = f"Profit & Loss - {gym.name}"
    cell.font = header_font
    cell.fill = header_fill
    cell.alignment = center_align

    ws.merge_cells('A2:C2')
    cell = ws['A2']
    cell.value = f"{start_date:%Y-%m-%d} to {end_date:%Y-%m-%d}"
    cell.font = Font(name='Arial', size=10, italic=True)
    cell.alignment = center_align

    row = 4

    def section(title, headers, rows):
        nonlocal row
        ws.merge_cells(f'A{row}:C{row}')
        cell = ws[f'A{row}']
        cell.value = title
        cell.font = subheader_font
        cell.fill = subheader_fill
        row += 1
        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=row, column=col, value=header)
            cell.font = bold_text_font
            cell.border = thin_border
            cell.alignment = center_align
        row += 1
        for values in rows:
            for col, value in enumerate(values, 1):
                cell = ws.cell(row=row, column=col, value=value)
                cell.border = thin_border
                if col == 2:
                    cell.number_format = '#,##0.00'
            row += 1
        row += 1

    section('Revenue by Source', ['Source', 'Amount', 'Entries'],
            [(r['source'], float(r['total']), r['count']) for r in report['revenue_by_source']])
    section('Expenses by Category', ['Category', 'Amount', 'Entries'],
            [(r['category'], float(r['total']), r['count']) for r in report['expenses_by_category']])

    totals = report['summary']
    section('Summary', ['Line', 'Amount', ''], [
        ('Total Income', float(totals['total_income']), ''),
        ('Total Expenses', float(totals['total_expenses']), ''),
        ('Net Profit', float(totals['net_profit']), ''),
        ('Profit Margin %', totals['profit_margin'], ''),
    ])

    for col, width in enumerate([30, 18, 12], 1):
        ws.column_dimensions[get_column_letter(col)].width = width

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
