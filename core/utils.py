from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal('0.01')


def get_client_ip(request):
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip


def to_money(value):
    """Quantizes any numeric value to two decimal places, rounding half up."""
    if value is None:
        value = 0
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def money_str(value):
    return str(to_money(value))


def parse_bool(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
