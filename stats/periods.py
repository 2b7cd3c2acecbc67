from datetime import datetime, timedelta

TIME_RANGES = ('today', 'yesterday', 'week', 'month')


def time_period(time_range, now=None):
    """Границы [start, end) для именованного диапазона.

    week - последние 7 дней включая сегодня, month - последние 30.
    """
    now = now or datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = midnight + timedelta(days=1)

    if time_range == 'today':
        return midnight, tomorrow
    if time_range == 'yesterday':
        return midnight - timedelta(days=1), midnight
    if time_range == 'week':
        return midnight - timedelta(days=6), tomorrow
    if time_range == 'month':
        return midnight - timedelta(days=29), tomorrow
    raise ValueError(f"unsupported timeRange: {time_range}")


def epoch_bounds(time_range, now=None):
    start, end = time_period(time_range, now)
    return int(start.timestamp()), int(end.timestamp())
