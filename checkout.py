# checkout.py - turns a cart and a checkout form into a charged order
# prices and totals always come from the database, never from the browser.
# the gateway is charged first and the order is only written once the
# provider answers paid or pending, so a decline leaves nothing behind.

import re
import secrets
import string
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from functools import wraps

import requests
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from auth import json_payload
from cart import normalize_line
from clip import ClipGateway
from conekta import ConektaGateway
from gateways import ChargeRequest, PaymentError
from mercadopago import MercadoPagoGateway
from models import db, Customer, Order, OrderItem, Product

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api/checkout')

GATEWAYS = {
    'clip': ClipGateway,
    'conekta': ConektaGateway,
    'mercadopago': MercadoPagoGateway,
}

# months of interest-free installments -> minimum total in pesos
MSI_THRESHOLDS = ((3, 300), (6, 600), (9, 900), (12, 1200), (18, 1800), (24, 2400))

FULFILLED_STATUSES = ('confirmed', 'processing', 'shipped', 'delivered')
ADDRESS_FIELDS = ('address', 'apartment', 'city', 'state', 'neighborhood', 'country', 'postal_code')
OPTION_KEYS = ('card_token', 'token_id', 'token', 'payment_method_id', 'issuer_id',
               'cash_method', 'payment_method', 'success_url', 'cancel_url')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
BASE36 = string.digits + string.ascii_uppercase

OUTDATED_CART = 'Your cart contains outdated products. Please clear your cart and try again.'


class CheckoutError(Exception):
    """Invalid checkout input or an order that could not be saved."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


@dataclass
class CheckoutForm:
    email: str
    first_name: str
    last_name: str
    phone: str
    address: dict
    shipping_method: str
    items: list

    @property
    def name(self):
        return f'{self.first_name} {self.last_name}'


@dataclass
class PricedLine:
    product_id: int
    name: str
    sku: str
    image: str
    quantity: int
    unit_price: int
    size: str = None
    color: str = None

    @property
    def total_price(self):
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'name': self.name,
            'sku': self.sku,
            'image': self.image,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total_price': self.total_price,
            'size': self.size,
            'color': self.color,
        }


@dataclass
class Totals:
    subtotal: int
    shipping: int
    tax: int
    total: int

    def to_dict(self):
        return {'subtotal': self.subtotal, 'shipping': self.shipping,
                'tax': self.tax, 'total': self.total}


def get_gateway(name):
    gateway_cls = GATEWAYS.get(name)
    if gateway_cls is None:
        return None
    return gateway_cls(current_app.config)


def _clean(value):
    return str(value).strip() if value is not None else ''


def parse_checkout_form(payload):
    email = _clean(payload.get('email')).lower()
    if not EMAIL_RE.match(email):
        raise CheckoutError('Please enter a valid email')

    first_name = _clean(payload.get('first_name'))
    last_name = _clean(payload.get('last_name'))
    if not first_name or not last_name:
        raise CheckoutError('Please enter your full name')

    shipping = payload.get('shipping')
    if not isinstance(shipping, dict):
        raise CheckoutError('Please complete your shipping address')
    address = {field: _clean(shipping.get(field)) for field in ADDRESS_FIELDS}
    if not (address['address'] and address['city'] and address['postal_code']):
        raise CheckoutError('Please complete your shipping address')
    address['country'] = address['country'] or 'MX'

    phone = _clean(payload.get('phone'))
    if len(re.sub(r'\D', '', phone)) < 10:
        raise CheckoutError('Please enter a valid 10-digit phone number')

    shipping_method = payload.get('shipping_method') or 'standard'
    if not isinstance(shipping_method, str) or shipping_method not in current_app.config['SHIPPING_RATES']:
        raise CheckoutError('Please choose a shipping method')

    items = payload.get('items')
    if not isinstance(items, list) or not items:
        raise CheckoutError('Your cart is empty')

    return CheckoutForm(email, first_name, last_name, phone, address, shipping_method, items)


def validate_cart(items):
    """Price every cart line from the products table.

    Lines with a non-integer product id come from an older catalog and are
    dropped; if nothing is left the whole cart is rejected.
    """
    if not isinstance(items, list):
        items = []
    lines = [line for line in (normalize_line(item) for item in items) if line]
    if not lines:
        raise CheckoutError(OUTDATED_CART)

    ids = {line['product_id'] for line in lines}
    products = {p.id: p for p in Product.query.filter(Product.id.in_(ids)).all()}

    priced = []
    for line in lines:
        product = products.get(line['product_id'])
        if product is None:
            raise CheckoutError(f"Product not found: {line['name'] or line['product_id']}")
        if product.status != 'active':
            raise CheckoutError(f'Product not available: {product.name}')
        if line['quantity'] < 1:
            raise CheckoutError(f'Invalid quantity for {product.name}')

        priced.append(PricedLine(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            image=product.main_image,
            quantity=line['quantity'],
            unit_price=product.price,
            size=line['size'],
            color=line['color'],
        ))
    return priced


def compute_totals(lines, shipping_method):
    subtotal = sum(line.total_price for line in lines)
    shipping = current_app.config['SHIPPING_RATES'][shipping_method]
    rate = Decimal(str(current_app.config['TAX_RATE']))
    tax = int((Decimal(subtotal) * rate).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    return Totals(subtotal, shipping, tax, subtotal + shipping + tax)


def msi_options(total):
    return [months for months, pesos in MSI_THRESHOLDS if total >= pesos * 100]


def parse_installments(value, total):
    if value in (None, ''):
        return 0
    try:
        months = int(value)
    except (TypeError, ValueError):
        raise CheckoutError('Invalid installments')
    if months in (0, 1):
        return 0
    if months not in msi_options(total):
        raise CheckoutError(f'{months} monthly installments are not available for this amount')
    return months


def _base36(number):
    digits = ''
    while number:
        number, rem = divmod(number, 36)
        digits = BASE36[rem] + digits
    return digits or '0'


def generate_order_number():
    suffix = ''.join(secrets.choice(BASE36) for _ in range(3))
    return f'ATL-{_base36(int(time.time() * 1000))}{suffix}'


def get_or_create_customer(email, **profile):
    email = email.strip().lower()
    customer = Customer.query.filter_by(email=email).first()
    if customer is None:
        customer = Customer(email=email)
        db.session.add(customer)
    # fill in only what the customer has not set yet
    for key, value in profile.items():
        if value and not getattr(customer, key):
            setattr(customer, key, value)
    return customer


def create_order(order_number, form, lines, totals, status, notes, customer=None):
    """Write the order and all of its items in one transaction.

    Returns the order, or None after a rollback if anything failed.
    """
    try:
        order = Order(
            order_number=order_number,
            customer=customer,
            customer_email=form.email,
            customer_name=form.name,
            status=status,
            subtotal=totals.subtotal,
            shipping=totals.shipping,
            tax=totals.tax,
            total=totals.subtotal + totals.shipping + totals.tax,
            shipping_address=dict(form.address, phone=form.phone, method=form.shipping_method),
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                product_name=line.name,
                product_sku=line.sku,
                product_image=line.image,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
                variant_size=line.size,
                variant_color=line.color,
            ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception('could not create order %s', order_number)
        return None
    return order


def place_order(gateway, method, payload):
    form = parse_checkout_form(payload)
    lines = validate_cart(form.items)
    totals = compute_totals(lines, form.shipping_method)
    installments = parse_installments(payload.get('installments'), totals.total)
    order_number = generate_order_number()

    charge = ChargeRequest(
        order_number=order_number,
        email=form.email,
        name=form.name,
        phone=form.phone,
        address=form.address,
        shipping_method=form.shipping_method,
        lines=lines,
        subtotal=totals.subtotal,
        shipping=totals.shipping,
        tax=totals.tax,
        total=totals.total,
        installments=installments,
        options={key: payload[key] for key in OPTION_KEYS if payload.get(key)},
    )
    result = gateway.charge(method, charge)

    customer = get_or_create_customer(
        form.email,
        name=form.name,
        phone=form.phone,
        **{key: form.address[key] for key in ('address', 'city', 'state', 'neighborhood',
                                              'country', 'postal_code')},
    )
    order = create_order(order_number, form, lines, totals, result.status, result.notes, customer)
    if order is None:
        # the provider already has the money or the reference at this point
        current_app.logger.error('[%s] payment %s was accepted but order %s was not saved',
                                 gateway.name, result.provider_id, order_number)
        raise CheckoutError('Could not create order. Please contact support with your payment reference.')

    current_app.logger.info('[%s] order %s created as %s', gateway.name, order_number, result.status)
    response = {
        'success': True,
        'order_number': order_number,
        'status': result.status,
        'pending': result.status == 'pending',
        'total': totals.total,
    }
    response.update(result.instructions)
    return response


def apply_payment_status(order, status, note=None):
    """Move an order to a new status from a payment callback.

    Orders already in fulfilment are never sent back to pending or paid.
    Returns True when the status changed.
    """
    changed = False
    if not (order.status in FULFILLED_STATUSES and status in ('pending', 'paid')):
        changed = order.status != status
        order.status = status
    if note:
        order.notes = f'{order.notes} | {note}' if order.notes else note
    return changed


def find_order_by_note(fragment):
    return Order.query.filter(Order.notes.contains(fragment, autoescape=True)) \
        .order_by(Order.created_at.desc()).first()


def json_action(view):
    """Turn checkout and payment failures into JSON error responses."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except CheckoutError as exc:
            return jsonify(error=exc.message), 400
        except PaymentError as exc:
            body = {'error': exc.message}
            if exc.code:
                body['code'] = exc.code
            return jsonify(body), exc.status
        except requests.RequestException:
            current_app.logger.exception('connection error with payment processor')
            return jsonify(error='Connection error with payment processor'), 502
    return wrapper


@checkout_bp.route('/config')
def checkout_config():
    config = current_app.config
    return jsonify(
        providers={name: {'methods': list(cls.methods),
                          'enabled': all(config.get(key) for key in cls.config_keys)}
                   for name, cls in GATEWAYS.items()},
        public_keys={
            'clip': config.get('CLIP_PUBLIC_KEY'),
            'conekta': config.get('CONEKTA_PUBLIC_KEY'),
            'mercadopago': config.get('MERCADO_PAGO_PUBLIC_KEY'),
        },
        shipping_rates=config['SHIPPING_RATES'],
        tax_rate=config['TAX_RATE'],
    )


@checkout_bp.route('/quote', methods=['POST'])
@json_action
def quote():
    payload = json_payload()
    shipping_method = payload.get('shipping_method') or 'standard'
    if not isinstance(shipping_method, str) or shipping_method not in current_app.config['SHIPPING_RATES']:
        raise CheckoutError('Please choose a shipping method')

    lines = validate_cart(payload.get('items'))
    totals = compute_totals(lines, shipping_method)
    return jsonify(
        items=[line.to_dict() for line in lines],
        totals=totals.to_dict(),
        msi_options=msi_options(totals.total),
    )


@checkout_bp.route('/conekta/token', methods=['POST'])
@json_action
def conekta_token():
    payload = json_payload()
    return jsonify(get_gateway('conekta').create_token(payload.get('installment_options')))


@checkout_bp.route('/clip/payments/<payment_id>')
@json_action
def clip_payment_status(payment_id):
    return jsonify(get_gateway('clip').payment_status(payment_id))


@checkout_bp.route('/<provider>/<method>', methods=['POST'])
@json_action
def pay(provider, method):
    gateway = get_gateway(provider)
    if gateway is None:
        return jsonify(error=f'Unknown payment provider: {provider}'), 404
    if method not in gateway.methods:
        return jsonify(error=f'Unknown payment method: {method}'), 404

    payload = json_payload()
    return jsonify(place_order(gateway, method, payload)), 201
