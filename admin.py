# admin.py - back office api for products, categories, orders, customers and staff
# every route needs an admin session, staff management needs the admin role

import re

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from auth import current_admin
from models import (db, ADMIN_ROLES, CATALOG_STATUSES, ORDER_STATUSES,
                    AdminUser, Category, Customer, Order, Product)
from reports import dashboard_stats, revenue_chart

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

PRODUCT_FIELDS = ('sku', 'name', 'slug', 'description', 'price', 'status', 'category_id',
                  'main_image', 'gallery', 'featured', 'variants')
CATEGORY_FIELDS = ('name', 'slug', 'description', 'image', 'status')


class AdminInputError(Exception):
    pass


def slugify(text):
    slug = re.sub(r'[^a-z0-9]+', '-', (text or '').lower()).strip('-')
    return slug or 'item'


@admin_bp.before_request
def require_admin():
    if current_admin() is None:
        return jsonify(error='Unauthorized'), 401


@admin_bp.errorhandler(AdminInputError)
def handle_input_error(exc):
    return jsonify(error=str(exc)), 400


@admin_bp.errorhandler(IntegrityError)
def handle_integrity_error(exc):
    db.session.rollback()
    return jsonify(error='A record with the same sku or slug already exists'), 409


def _payload():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise AdminInputError('Expected a JSON object')
    return payload


def _apply(obj, payload, fields):
    # partial update, absent keys keep their value
    for field in fields:
        if field in payload:
            setattr(obj, field, payload[field])


def _check_product(product):
    if not product.name or not product.sku:
        raise AdminInputError('Name and sku are required')
    if not isinstance(product.price, int) or isinstance(product.price, bool) or product.price < 0:
        raise AdminInputError('Price must be a non-negative integer amount in centavos')
    if product.status not in CATALOG_STATUSES:
        raise AdminInputError(f'Invalid status: {product.status}')
    if product.category_id is not None and db.session.get(Category, product.category_id) is None:
        raise AdminInputError('Category not found')


# products
@admin_bp.route('/products')
def list_products():
    query = Product.query
    if request.args.get('status'):
        query = query.filter_by(status=request.args['status'])
    if request.args.get('category_id', type=int):
        query = query.filter_by(category_id=request.args.get('category_id', type=int))
    term = (request.args.get('search') or '').strip()
    if term:
        query = query.filter(or_(Product.name.icontains(term, autoescape=True),
                                 Product.sku.icontains(term, autoescape=True)))
    products = query.order_by(Product.created_at.desc(), Product.id.desc()).all()
    return jsonify(products=[p.to_dict(with_category=True) for p in products])


@admin_bp.route('/products/<int:product_id>')
def get_product(product_id):
    product = db.get_or_404(Product, product_id)
    return jsonify(product=product.to_dict(with_category=True))


@admin_bp.route('/products', methods=['POST'])
def create_product():
    payload = _payload()
    product = Product(status='draft', featured=False)
    _apply(product, payload, PRODUCT_FIELDS)
    product.slug = product.slug or slugify(product.name)
    _check_product(product)
    db.session.add(product)
    db.session.commit()
    return jsonify(product=product.to_dict(with_category=True)), 201


@admin_bp.route('/products/<int:product_id>', methods=['PATCH'])
def update_product(product_id):
    product = db.get_or_404(Product, product_id)
    _apply(product, _payload(), PRODUCT_FIELDS)
    if not product.slug:
        product.slug = slugify(product.name)
    _check_product(product)
    db.session.commit()
    return jsonify(product=product.to_dict(with_category=True))


@admin_bp.route('/products/<int:product_id>', methods=['DELETE'])
def delete_product(product_id):
    product = db.get_or_404(Product, product_id)
    db.session.delete(product)
    db.session.commit()
    return jsonify(success=True)


# categories
@admin_bp.route('/categories')
def list_categories():
    counts = dict(db.session.query(Product.category_id, func.count(Product.id))
                  .group_by(Product.category_id).all())
    categories = Category.query.order_by(Category.name).all()
    return jsonify(categories=[dict(c.to_dict(), product_count=counts.get(c.id, 0))
                               for c in categories])


@admin_bp.route('/categories/<int:category_id>')
def get_category(category_id):
    category = db.get_or_404(Category, category_id)
    return jsonify(category=category.to_dict())


def _check_category(category):
    if not category.name:
        raise AdminInputError('Name is required')
    if category.status not in CATALOG_STATUSES:
        raise AdminInputError(f'Invalid status: {category.status}')


@admin_bp.route('/categories', methods=['POST'])
def create_category():
    category = Category(status='active')
    _apply(category, _payload(), CATEGORY_FIELDS)
    category.slug = category.slug or slugify(category.name)
    _check_category(category)
    db.session.add(category)
    db.session.commit()
    return jsonify(category=category.to_dict()), 201


@admin_bp.route('/categories/<int:category_id>', methods=['PATCH'])
def update_category(category_id):
    category = db.get_or_404(Category, category_id)
    _apply(category, _payload(), CATEGORY_FIELDS)
    if not category.slug:
        category.slug = slugify(category.name)
    _check_category(category)
    db.session.commit()
    return jsonify(category=category.to_dict())


@admin_bp.route('/categories/<int:category_id>', methods=['DELETE'])
def delete_category(category_id):
    category = db.get_or_404(Category, category_id)
    Product.query.filter_by(category_id=category.id).update({'category_id': None})
    db.session.delete(category)
    db.session.commit()
    return jsonify(success=True)


# orders
@admin_bp.route('/orders')
def list_orders():
    query = Order.query
    if request.args.get('status'):
        query = query.filter_by(status=request.args['status'])
    term = (request.args.get('search') or '').strip()
    if term:
        query = query.filter(or_(Order.order_number.icontains(term, autoescape=True),
                                 Order.customer_email.icontains(term, autoescape=True),
                                 Order.customer_name.icontains(term, autoescape=True)))

    total = query.count()
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    offset = request.args.get('offset', type=int)
    limit = request.args.get('limit', type=int)
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return jsonify(orders=[o.to_dict(with_items=False) for o in query.all()], total=total)


@admin_bp.route('/orders/<int:order_id>')
def get_order(order_id):
    order = db.get_or_404(Order, order_id)
    data = order.to_dict(with_items=False)
    items = []
    for item in order.items:
        row = item.to_dict()
        # older items may lack a snapshot image
        if not row['product_image'] and item.product is not None:
            row['product_image'] = item.product.main_image
        items.append(row)
    data['items'] = items
    return jsonify(order=data)


@admin_bp.route('/orders/<int:order_id>', methods=['PATCH'])
def update_order_status(order_id):
    order = db.get_or_404(Order, order_id)
    status = _payload().get('status')
    if status not in ORDER_STATUSES:
        raise AdminInputError(f'Invalid status: {status}')
    order.status = status
    db.session.commit()
    return jsonify(order=order.to_dict(with_items=False))


# customers
@admin_bp.route('/customers')
def list_customers():
    stats = {email: (count, spent) for email, count, spent in db.session.query(
        Order.customer_email, func.count(Order.id), func.coalesce(func.sum(Order.total), 0),
    ).filter(Order.status.notin_(('cancelled', 'refunded'))).group_by(Order.customer_email).all()}

    query = Customer.query
    term = (request.args.get('search') or '').strip()
    if term:
        query = query.filter(or_(Customer.email.icontains(term, autoescape=True),
                                 Customer.name.icontains(term, autoescape=True)))
    customers = []
    for customer in query.order_by(Customer.created_at.desc(), Customer.id.desc()).all():
        count, spent = stats.get(customer.email, (0, 0))
        customers.append(dict(customer.to_dict(), order_count=count, total_spent=spent))
    return jsonify(customers=customers)


# staff accounts
def _require_role_admin():
    if current_admin().role != 'admin':
        abort(403, description='Only admins can manage users')


@admin_bp.route('/users')
def list_users():
    _require_role_admin()
    users = AdminUser.query.order_by(AdminUser.created_at).all()
    return jsonify(users=[u.to_dict() for u in users])


@admin_bp.route('/users', methods=['POST'])
def create_user():
    _require_role_admin()
    payload = _payload()
    email = str(payload.get('email') or '').strip().lower()
    name = str(payload.get('name') or '').strip()
    role = payload.get('role') or 'manager'
    password = str(payload.get('password') or '')
    if not email or not name or not password:
        raise AdminInputError('Missing required fields')
    if len(password) < 6:
        raise AdminInputError('Password must be at least 6 characters')
    if role not in ADMIN_ROLES:
        raise AdminInputError(f'Invalid role: {role}')
    if AdminUser.query.filter_by(email=email).first():
        return jsonify(error='A user with this email already exists'), 409

    user = AdminUser(email=email, name=name, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return jsonify(user=user.to_dict()), 201


@admin_bp.route('/users/<int:user_id>', methods=['PATCH'])
def update_user(user_id):
    _require_role_admin()
    user = db.get_or_404(AdminUser, user_id)
    payload = _payload()
    if 'role' in payload and payload['role'] not in ADMIN_ROLES:
        raise AdminInputError(f"Invalid role: {payload['role']}")
    _apply(user, payload, ('name', 'role'))
    db.session.commit()
    return jsonify(user=user.to_dict())


@admin_bp.route('/users/<int:user_id>', methods=['DELETE'])
def delete_user(user_id):
    _require_role_admin()
    user = db.get_or_404(AdminUser, user_id)
    if user.id == current_admin().id:
        raise AdminInputError('You cannot delete your own account')
    db.session.delete(user)
    db.session.commit()
    return jsonify(success=True)


# dashboard
@admin_bp.route('/dashboard')
def dashboard():
    return jsonify(dashboard_stats())


@admin_bp.route('/revenue')
def revenue():
    period = request.args.get('period', '7days')
    try:
        data = revenue_chart(period)
    except ValueError as exc:
        raise AdminInputError(str(exc))
    return jsonify(period=period, data=data)
