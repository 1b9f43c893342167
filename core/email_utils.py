import logging
from email.utils import formataddr, parseaddr

from django.conf import settings
from django.core.mail import EmailMessage, get_connection

logger = logging.getLogger(__name__)


def get_sender(gym=None):
    """Platform sender, or the platform address under the gym's display name."""
    if gym is None:
        return settings.DEFAULT_FROM_EMAIL
    _, address = parseaddr(settings.DEFAULT_FROM_EMAIL)
    return formataddr((gym.name, address))


def send_gym_email(subject, message, recipient_list, gym=None, html_message=None):
    """
    Sends an email on behalf of the platform or a gym.
    Delivery is best effort: failures are logged and reported as False.
    """
    recipients = [address for address in recipient_list if address]
    if not recipients:
        return False

    email = EmailMessage(
        subject=subject,
        body=html_message or message,
        from_email=get_sender(gym),
        to=recipients,
        connection=get_connection(),
    )
    if html_message:
        email.content_subtype = 'html'
        if gym is not None and gym.contact_email:
            email.reply_to = [gym.contact_email]

    try:
        email.send(fail_silently=False)
    except Exception:
        logger.exception("Failed to send email '%s' to %s", subject, recipients)
        return False
    return True
