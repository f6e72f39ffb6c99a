# shop.py - public catalog, search, order status and postal code lookup

import re

import requests
from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy import or_

from auth import current_customer
from models import Category, Order, Product, isoformat

shop_bp = Blueprint('shop', __name__, url_prefix='/api')

SEPOMEX_MAX_PAGES = 10


def _active_products():
    return Product.query.filter_by(status='active')


# catalog
@shop_bp.route('/products')
def list_products():
    query = _active_products()

    category_slug = request.args.get('category')
    if category_slug:
        category = Category.query.filter_by(slug=category_slug, status='active').first()
        if category is None:
            return jsonify(products=[])
        query = query.filter_by(category_id=category.id)

    if request.args.get('featured') in ('1', 'true'):
        query = query.filter_by(featured=True)

    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    offset = request.args.get('offset', type=int)
    limit = request.args.get('limit', type=int)
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return jsonify(products=[p.to_dict(with_category=True) for p in query.all()])


@shop_bp.route('/products/<slug>')
def get_product(slug):
    product = _active_products().filter_by(slug=slug).first()
    if product is None:
        abort(404, description='Product not found')
    return jsonify(product=product.to_dict(with_category=True))


@shop_bp.route('/categories')
def list_categories():
    categories = Category.query.filter_by(status='active').order_by(Category.name).all()
    return jsonify(categories=[c.to_dict() for c in categories])


@shop_bp.route('/categories/<slug>')
def get_category(slug):
    category = Category.query.filter_by(slug=slug, status='active').first()
    if category is None:
        abort(404, description='Category not found')
    return jsonify(category=category.to_dict())


@shop_bp.route('/search')
def search():
    term = (request.args.get('q') or '').strip()
    if not term:
        return jsonify(products=[], categories=[])

    products = _active_products().filter(or_(
        Product.name.icontains(term, autoescape=True),
        Product.description.icontains(term, autoescape=True),
        Product.sku.icontains(term, autoescape=True),
    )).order_by(Product.name).limit(5).all()
    categories = Category.query.filter(Category.status == 'active', or_(
        Category.name.icontains(term, autoescape=True),
        Category.description.icontains(term, autoescape=True),
    )).order_by(Category.name).limit(3).all()
    return jsonify(products=[p.to_dict() for p in products],
                   categories=[c.to_dict() for c in categories])


# orders
def order_summary(order):
    """Order data safe to show on the public confirmation page."""
    return {
        'order_number': order.order_number,
        'status': order.status,
        'payment_status': order.payment_status,
        'payment_method': order.payment_method,
        'subtotal': order.subtotal,
        'shipping': order.shipping,
        'tax': order.tax,
        'total': order.total,
        'created_at': isoformat(order.created_at),
        'items': [{
            'product_name': item.product_name,
            'product_image': item.product_image,
            'quantity': item.quantity,
            'unit_price': item.unit_price,
            'total_price': item.total_price,
            'variant_size': item.variant_size,
            'variant_color': item.variant_color,
        } for item in order.items],
    }


@shop_bp.route('/orders/latest')
def latest_order():
    customer = current_customer()
    if customer is None:
        return jsonify(order=None)
    order = Order.query.filter_by(customer_email=customer.email) \
        .order_by(Order.created_at.desc(), Order.id.desc()).first()
    return jsonify(order=order_summary(order) if order else None)


@shop_bp.route('/orders/<order_number>')
def get_order(order_number):
    order = Order.query.filter_by(order_number=order_number).first()
    if order is None:
        abort(404, description='Order not found')
    return jsonify(order=order_summary(order))


# postal codes
def lookup_postal_code(postal_code):
    """Collect (state, city, neighborhood) triples for a Mexican postal code."""
    base_url = current_app.config['SEPOMEX_API_URL'].rstrip('/')
    timeout = current_app.config['PAYMENT_TIMEOUT']
    next_url = f'{base_url}/api/v1/zip_codes?zip_code={postal_code}'

    seen = set()
    records = []
    pages = 0
    while next_url and pages < SEPOMEX_MAX_PAGES:
        response = requests.get(next_url, timeout=timeout)
        payload = response.json() if response.ok else {}
        for item in payload.get('zip_codes') or []:
            state = str(item.get('d_estado') or '').strip()
            city = str(item.get('d_mnpio') or item.get('d_ciudad') or '').strip()
            neighborhood = str(item.get('d_asenta') or '').strip()
            if not (state and city and neighborhood) or (state, city, neighborhood) in seen:
                continue
            seen.add((state, city, neighborhood))
            records.append({'state': state, 'city': city, 'neighborhood': neighborhood})

        link = (((payload.get('meta') or {}).get('pagination') or {}).get('links') or {}).get('next')
        next_url = f'{base_url}{link}' if link else None
        pages += 1
    return records


def _unique(values):
    return list(dict.fromkeys(values))


@shop_bp.route('/location/mx-postal-code')
def postal_code_lookup():
    postal_code = re.sub(r'\D', '', request.args.get('postalCode', ''))[:5]
    empty = dict(locations=[], states=[], cities=[], neighborhoods=[])
    if len(postal_code) != 5:
        return jsonify(empty)

    try:
        records = lookup_postal_code(postal_code)
    except (requests.RequestException, ValueError):
        current_app.logger.exception('postal code lookup failed for %s', postal_code)
        return jsonify(empty)

    return jsonify(
        locations=records,
        states=_unique(r['state'] for r in records),
        cities=_unique(r['city'] for r in records),
        neighborhoods=_unique(r['neighborhood'] for r in records),
    )
