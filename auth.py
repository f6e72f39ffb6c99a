# auth.py - customer and admin sessions, profile updates and order history
# both kinds of account share one flask-login session, told apart by the id prefix

from flask import Blueprint, abort, jsonify, request
from flask_login import LoginManager, current_user, login_user, logout_user
from sqlalchemy.orm import selectinload

from models import db, AdminUser, Customer, Order, OrderItem

auth_bp = Blueprint('auth', __name__)

login_manager = LoginManager()

PROFILE_FIELDS = ('name', 'phone', 'address', 'city', 'state', 'neighborhood', 'country', 'postal_code')
MIN_PASSWORD = 6


@login_manager.user_loader
def load_user(user_id):
    kind, _, pk = user_id.partition(':')
    if not pk.isdigit():
        return None
    if kind == 'customer':
        return db.session.get(Customer, int(pk))
    if kind == 'admin':
        return db.session.get(AdminUser, int(pk))
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(error='Unauthorized'), 401


def current_customer():
    if current_user.is_authenticated and current_user.role == 'customer':
        return current_user
    return None


def current_admin():
    if current_user.is_authenticated and current_user.role in ('admin', 'manager'):
        return current_user
    return None


def json_payload():
    # empty bodies read as {}, anything other than a json object is a 400
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        abort(400, description='Expected a JSON object')
    return payload


def _fail(message, status):
    return jsonify(success=False, error=message), status


def _credentials(payload):
    return str(payload.get('email') or '').strip().lower(), str(payload.get('password') or '')


# customer session
@auth_bp.route('/api/auth/customer', methods=['GET'])
def customer_session():
    customer = current_customer()
    return jsonify(user=customer.to_dict() if customer else None)


@auth_bp.route('/api/auth/customer', methods=['POST'])
def customer_action():
    payload = json_payload()
    action = payload.get('action')

    if action == 'logout':
        logout_user()
        return jsonify(success=True)

    if action == 'login':
        email, password = _credentials(payload)
        if not email or not password:
            return _fail('Email and password are required', 400)
        customer = Customer.query.filter_by(email=email).first()
        if customer is None:
            return _fail('Invalid email or password', 401)
        if not customer.password_hash:
            return _fail('Account migrated without password. Create a new account to continue.', 401)
        if not customer.check_password(password):
            return _fail('Invalid email or password', 401)
        login_user(customer, remember=True)
        return jsonify(success=True, user=customer.to_dict())

    if action == 'signup':
        email, password = _credentials(payload)
        if not email:
            return _fail('Email is required', 400)
        if len(password) < MIN_PASSWORD:
            return _fail('Password must be at least 6 characters', 400)

        customer = Customer.query.filter_by(email=email).first()
        if customer is not None and customer.password_hash:
            return _fail('Email already registered', 409)
        if customer is None:
            customer = Customer(email=email)
            db.session.add(customer)
        # a checkout-provisioned account has no password yet and is claimed here
        if payload.get('name'):
            customer.name = str(payload['name'])
        customer.set_password(password)
        db.session.commit()
        login_user(customer, remember=True)
        return jsonify(success=True, user=customer.to_dict())

    return _fail('Invalid action', 400)


@auth_bp.route('/api/auth/customer', methods=['PATCH'])
def customer_update():
    customer = current_customer()
    if customer is None:
        return _fail('Unauthorized', 401)

    payload = json_payload()
    action = payload.get('action')

    if action == 'updateProfile':
        # only the fields that were sent are touched
        for field in PROFILE_FIELDS:
            if payload.get(field) is not None:
                setattr(customer, field, str(payload[field]))
        db.session.commit()
        return jsonify(success=True, user=customer.to_dict())

    if action == 'updateEmail':
        new_email = str(payload.get('newEmail') or '').strip().lower()
        password = str(payload.get('password') or '')
        if not new_email:
            return _fail('Email is required', 400)
        if not password:
            return _fail('Password is required', 400)
        if not customer.password_hash:
            return _fail('Password is not configured for this account', 400)
        if not customer.check_password(password):
            return _fail('Password is incorrect', 401)
        taken = Customer.query.filter(Customer.email == new_email, Customer.id != customer.id).first()
        if taken:
            return _fail('Email already registered', 409)
        customer.email = new_email
        db.session.commit()
        return jsonify(success=True, user=customer.to_dict())

    if action == 'updatePassword':
        current_password = str(payload.get('currentPassword') or '')
        new_password = str(payload.get('newPassword') or '')
        if not current_password or not new_password:
            return _fail('Current and new password are required', 400)
        if len(new_password) < MIN_PASSWORD:
            return _fail('New password must be at least 6 characters', 400)
        if not customer.password_hash:
            return _fail('Password is not configured for this account', 400)
        if not customer.check_password(current_password):
            return _fail('Current password is incorrect', 401)
        customer.set_password(new_password)
        db.session.commit()
        return jsonify(success=True)

    return _fail('Invalid action', 400)


@auth_bp.route('/api/account/orders')
def account_orders():
    customer = current_customer()
    if customer is None:
        return jsonify(orders=[])

    query = Order.query.options(selectinload(Order.items).selectinload(OrderItem.product)) \
        .filter_by(customer_email=customer.email).order_by(Order.created_at.desc())
    limit = request.args.get('limit', type=int)
    if limit and limit > 0:
        query = query.limit(limit)

    orders = []
    for order in query.all():
        data = order.to_dict(with_items=False)
        data['items'] = [dict(item.to_dict(),
                              product={'main_image': item.product.main_image if item.product else None})
                         for item in order.items]
        orders.append(data)
    return jsonify(orders=orders)


# admin session
@auth_bp.route('/api/auth/admin', methods=['GET'])
def admin_session():
    admin = current_admin()
    return jsonify(user=admin.to_dict() if admin else None)


@auth_bp.route('/api/auth/admin', methods=['POST'])
def admin_action():
    payload = json_payload()
    action = payload.get('action')

    if action == 'logout':
        logout_user()
        return jsonify(success=True)

    if action == 'login':
        email, password = _credentials(payload)
        if not email or not password:
            return _fail('Email and password are required', 400)
        admin = AdminUser.query.filter_by(email=email).first()
        if admin is None:
            return _fail('You do not have admin access', 403)
        if not admin.password_hash:
            return _fail('Admin password not configured', 401)
        if not admin.check_password(password):
            return _fail('Invalid email or password', 401)
        login_user(admin, remember=True)
        return jsonify(success=True, user=admin.to_dict())

    return _fail('Invalid action', 400)
