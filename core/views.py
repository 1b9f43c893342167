from django.db import connection
from django.db.utils import DatabaseError
from django.shortcuts import get_object_or_404
from django.utils import timezone

from .api import api_view, paginate, send_error, send_success
from .models import Notification


@api_view(['GET'])
def notification_list(request):
    notifications = Notification.objects.filter(recipient=request.user)
    if request.GET.get('unread') == 'true':
        notifications = notifications.filter(is_read=False)
    if request.GET.get('category'):
        notifications = notifications.filter(category=request.GET['category'])
    items, pagination = paginate(request, notifications, Notification.to_dict, default_limit=20)
    unread = Notification.objects.filter(recipient=request.user, is_read=False).count()
    return send_success('Notifications retrieved', items, pagination=pagination, unread_count=unread)


@api_view(['GET'])
def unread_count(request):
    """Unread count plus the latest unread notification, for toasts."""
    unread = Notification.objects.filter(recipient=request.user, is_read=False)
    latest = unread.first()
    return send_success('Unread count retrieved', {
        'unread_count': unread.count(),
        'latest': latest.to_dict() if latest else None,
    })


@api_view(['POST'])
def mark_read(request, pk):
    notification = get_object_or_404(Notification, pk=pk, recipient=request.user)
    notification.mark_read()
    return send_success('Notification marked as read', notification.to_dict())


@api_view(['POST'])
def mark_all_read(request):
    updated = Notification.objects.filter(recipient=request.user, is_read=False).update(
        is_read=True, read_at=timezone.now(),
    )
    return send_success('All notifications marked as read', {'updated': updated})


@api_view(['DELETE'])
def delete_notification(request, pk):
    notification = get_object_or_404(Notification, pk=pk, recipient=request.user)
    notification.delete()
    return send_success('Notification deleted')


@api_view(['GET'], login=False)
def health(request):
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
    except DatabaseError:
        return send_error(503, 'Database unavailable', status='degraded')
    return send_success('OK', {'status': 'ok', 'time': timezone.now()})
