# webhooks.py - asynchronous payment callbacks from clip, conekta and mercado pago
# every provider gets a 200 {"received": true} unless our own handling blew up

import json

from flask import Blueprint, current_app, jsonify, request

from auth import json_payload
from checkout import (CheckoutError, CheckoutForm, apply_payment_status, compute_totals,
                      create_order, find_order_by_note, generate_order_number, get_gateway,
                      get_or_create_customer, validate_cart)
from gateways import PaymentError
from mercadopago import map_payment_status
from models import db, Order

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')

CLIP_PAID = ('approved', 'paid')
CLIP_FAILED = ('rejected', 'cancelled', 'expired')
CONEKTA_PAID = ('order.paid', 'charge.paid')
CONEKTA_CANCELLED = ('order.expired', 'order.cancelled')


def handle_webhook(handler):
    body = json_payload()
    try:
        handler(body)
    except Exception:
        db.session.rollback()
        current_app.logger.exception('[%s] webhook handler failed', handler.__name__)
        return jsonify(error='Webhook handler failed'), 500
    return jsonify(received=True)


# clip
def rebuild_clip_order(body):
    """Recreate a paid order from checkout metadata when no pending order exists."""
    metadata = body.get('metadata')
    customer = body.get('customer') or {}
    if not isinstance(metadata, dict) or not isinstance(customer, dict):
        raise CheckoutError('Clip webhook with malformed metadata')
    shipping = json.loads(metadata.get('shipping') or '{}')
    raw_items = json.loads(metadata.get('items') or '[]')
    if not isinstance(shipping, dict) or not isinstance(raw_items, list):
        raise CheckoutError('Clip webhook with malformed metadata')
    items = [dict(item, quantity=item.get('qty')) for item in raw_items if isinstance(item, dict)]

    shipping_method = metadata.get('shipping_method')
    if not isinstance(shipping_method, str) or shipping_method not in current_app.config['SHIPPING_RATES']:
        shipping_method = 'standard'
    name = (shipping.get('name') or '').strip()
    first_name, _, last_name = name.partition(' ')
    address = {key: shipping.get(key) or '' for key in
               ('address', 'apartment', 'city', 'state', 'neighborhood', 'country', 'postal_code')}
    form = CheckoutForm(
        email=(customer.get('email') or '').strip().lower(),
        first_name=first_name,
        last_name=last_name,
        phone=customer.get('phone') or shipping.get('phone') or '',
        address=address,
        shipping_method=shipping_method,
        items=items,
    )
    if not form.email:
        raise CheckoutError('Clip webhook without customer email')

    # prices are checked again against the catalog, never taken from metadata
    lines = validate_cart(items)
    totals = compute_totals(lines, shipping_method)
    order_number = metadata.get('order_number')
    if not order_number or Order.query.filter_by(order_number=order_number).first():
        order_number = generate_order_number()

    owner = get_or_create_customer(form.email, name=name, phone=form.phone,
                                   address=address['address'], city=address['city'],
                                   country=address['country'], postal_code=address['postal_code'])
    notes = f"Clip Payment Request: {body.get('payment_request_id')}"
    return create_order(order_number, form, lines, totals, 'paid', notes, owner)


def clip_event(body):
    if body.get('resource_type') not in ('payment', 'checkout'):
        return

    status = body.get('resource_status')
    request_id = body.get('payment_request_id')
    order = find_order_by_note(f'Clip Payment Request: {request_id}') if request_id else None

    if status in CLIP_PAID:
        if order is not None:
            apply_payment_status(order, 'paid')
            db.session.commit()
            current_app.logger.info('[clip] order %s marked paid', order.order_number)
        elif body.get('metadata'):
            try:
                rebuilt = rebuild_clip_order(body)
            except (CheckoutError, TypeError, ValueError) as exc:
                current_app.logger.error('[clip] could not rebuild order for %s: %s', request_id, exc)
                return
            if rebuilt is not None:
                current_app.logger.info('[clip] order %s rebuilt from webhook', rebuilt.order_number)
    elif status in CLIP_FAILED and order is not None:
        apply_payment_status(order, 'cancelled')
        db.session.commit()
        current_app.logger.info('[clip] order %s cancelled (%s)', order.order_number, status)


@webhooks_bp.route('/clip', methods=['POST'])
def clip_webhook():
    return handle_webhook(clip_event)


# conekta
def conekta_event(body):
    event = body.get('type') or ''
    obj = (body.get('data') or {}).get('object') or {}
    conekta_order_id = obj.get('order_id') if event.startswith('charge.') else obj.get('id')
    if not conekta_order_id:
        return

    order = find_order_by_note(f'Conekta Order: {conekta_order_id}')
    if order is None:
        current_app.logger.warning('[conekta] no order for %s (%s)', conekta_order_id, event)
        return

    if event in CONEKTA_PAID:
        if order.status == 'paid':
            return
        apply_payment_status(order, 'paid')
    elif event in CONEKTA_CANCELLED:
        apply_payment_status(order, 'cancelled')
    elif event == 'charge.refunded':
        apply_payment_status(order, 'refunded')
    else:
        return
    db.session.commit()
    current_app.logger.info('[conekta] %s -> order %s is %s', event, order.order_number, order.status)


@webhooks_bp.route('/conekta', methods=['POST'])
def conekta_webhook():
    return handle_webhook(conekta_event)


# mercado pago
def _mercadopago_payment_id(body):
    data = body.get('data') if isinstance(body.get('data'), dict) else {}
    return request.args.get('data.id') or request.args.get('id') or data.get('id') or body.get('id')


def mercadopago_event(body):
    if not current_app.config.get('MERCADO_PAGO_ACCESS_TOKEN'):
        raise PaymentError('MERCADO_PAGO_ACCESS_TOKEN is not configured', status=503)

    payment_id = _mercadopago_payment_id(body)
    if not payment_id:
        return

    try:
        payment = get_gateway('mercadopago').get_payment(payment_id)
    except PaymentError as exc:
        current_app.logger.warning('[mercadopago] could not fetch payment %s: %s', payment_id, exc.message)
        return

    order_number = payment.get('external_reference') or (payment.get('metadata') or {}).get('order_id')
    order = Order.query.filter_by(order_number=order_number).first() if order_number else None
    if order is None:
        current_app.logger.warning('[mercadopago] no order for payment %s', payment_id)
        return

    mp_status = payment.get('status') or 'unknown'
    apply_payment_status(order, map_payment_status(mp_status),
                         f'Mercado Pago Payment: {payment_id} ({mp_status})')
    db.session.commit()
    current_app.logger.info('[mercadopago] payment %s -> order %s is %s',
                            payment_id, order.order_number, order.status)


@webhooks_bp.route('/mercadopago', methods=['POST'])
def mercadopago_webhook():
    return handle_webhook(mercadopago_event)


@webhooks_bp.route('/clip', methods=['GET'])
@webhooks_bp.route('/conekta', methods=['GET'])
@webhooks_bp.route('/mercadopago', methods=['GET'])
def webhook_ping():
    return jsonify(status='ok')
