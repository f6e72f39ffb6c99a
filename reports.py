# reports.py - dashboard figures for the back office, recomputed on every request

from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from models import db, Customer, Order, OrderItem, Product, isoformat

# orders that never turned into money
EXCLUDED_FROM_REVENUE = ('cancelled', 'refunded')

CHART_PERIODS = {
    '7days': '%a',
    'months': '%b',
    'years': '%Y',
}


def _revenue_query():
    return db.session.query(func.coalesce(func.sum(Order.total), 0)) \
        .filter(Order.status.notin_(EXCLUDED_FROM_REVENUE))


def revenue_between(start=None, end=None):
    query = _revenue_query()
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)
    return query.scalar()


def orders_between(start, end=None):
    query = Order.query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)
    return query.count()


def percent_change(current, previous):
    if previous <= 0:
        return 0
    return round((current - previous) / previous * 100)


def top_products(limit=10):
    total_sold = func.sum(OrderItem.quantity).label('total_sold')
    rows = db.session.query(
        OrderItem.product_id,
        func.max(OrderItem.product_name),
        func.max(OrderItem.product_image),
        total_sold,
        func.sum(OrderItem.total_price),
    ).filter(OrderItem.product_id.isnot(None)) \
        .group_by(OrderItem.product_id) \
        .order_by(total_sold.desc()) \
        .limit(limit).all()

    return [{
        'product': {'id': product_id, 'name': name, 'main_image': image},
        'total_sold': int(sold),
        'revenue': int(revenue),
    } for product_id, name, image, sold, revenue in rows]


def dashboard_stats(now=None):
    now = now or datetime.now(timezone.utc)
    this_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_month = (this_month - timedelta(days=1)).replace(day=1)

    recent = Order.query.order_by(Order.created_at.desc(), Order.id.desc()).limit(5).all()
    return {
        'total_products': Product.query.count(),
        'total_orders': Order.query.count(),
        'total_customers': Customer.query.count(),
        'total_revenue': revenue_between(),
        'revenue_change': percent_change(revenue_between(this_month), revenue_between(last_month, this_month)),
        'orders_change': percent_change(orders_between(this_month), orders_between(last_month, this_month)),
        'recent_orders': [{
            'id': order.id,
            'order_number': order.order_number,
            'status': order.status,
            'total': order.total,
            'created_at': isoformat(order.created_at),
            'customer': {'name': order.customer_name or 'Guest', 'email': order.customer_email},
        } for order in recent],
        'top_products': top_products(),
    }


def _chart_start(period, now):
    if period == '7days':
        return now - timedelta(days=7)
    if period == 'months':
        year, month = now.year, now.month - 11
        if month < 1:
            year, month = year - 1, month + 12
        return now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(year=now.year - 4, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)


def revenue_chart(period, now=None):
    """Revenue of non-cancelled orders grouped by weekday, month or year."""
    if period not in CHART_PERIODS:
        raise ValueError(f'unknown period: {period}')

    now = now or datetime.now(timezone.utc)
    rows = db.session.query(Order.total, Order.created_at) \
        .filter(Order.created_at >= _chart_start(period, now),
                Order.status.notin_(EXCLUDED_FROM_REVENUE)) \
        .order_by(Order.created_at).all()

    grouped = {}
    for total, created_at in rows:
        label = created_at.strftime(CHART_PERIODS[period])
        grouped[label] = grouped.get(label, 0) + total
    return [{'label': label, 'revenue': revenue} for label, revenue in grouped.items()]
