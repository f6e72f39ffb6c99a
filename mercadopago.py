# mercadopago.py - Mercado Pago card, cash (oxxo / paycash / bancomer) and spei payments
# amounts go in pesos, auth is a bearer access token

import re
import uuid

import requests
from flask import current_app

from gateways import PaymentGateway, PaymentError, PaymentResult
from models import cents_to_pesos

# cash option -> (payment_type_id, preferred method ids)
CASH_METHODS = {
    'oxxo': ('ticket', ['oxxo', 'paycash']),
    'paycash': ('ticket', ['paycash', 'oxxo']),
    'bancomer': ('atm', ['bancomer']),
}
TRANSFER_METHOD = ('bank_transfer', ['clabe', 'spei', 'banamex'])

REJECTION_MESSAGES = {
    'cc_rejected_insufficient_amount': 'Insufficient funds',
    'cc_rejected_bad_filled_card_number': 'Invalid card number',
    'cc_rejected_bad_filled_date': 'Invalid expiration date',
    'cc_rejected_bad_filled_security_code': 'Invalid security code',
    'cc_rejected_bad_filled_other': 'Please check the card details',
    'cc_rejected_call_for_authorize': 'Please contact your bank to authorize the payment',
    'cc_rejected_card_disabled': 'Card disabled. Please contact your bank',
    'cc_rejected_duplicated_payment': 'Duplicate payment',
    'cc_rejected_high_risk': 'Transaction declined for security reasons',
    'cc_rejected_max_attempts': 'Too many attempts. Please try another card',
    'cc_rejected_blacklist': 'Card not accepted',
    'cc_rejected_invalid_installments': 'Installments not available for this card',
    'cc_rejected_other_reason': 'Card declined',
}
DEFAULT_DECLINE = 'Payment declined. Please try another card.'

PENDING_STATUSES = ('pending', 'in_process', 'authorized')
URL_RE = re.compile(r'^https?://', re.IGNORECASE)
REFERENCE_RE = re.compile(r'reference=([^&]+)')


def rejection_message(detail):
    return REJECTION_MESSAGES.get(detail, DEFAULT_DECLINE)


def map_payment_status(status):
    """Order status for a Mercado Pago payment status."""
    if status == 'approved':
        return 'paid'
    if status in ('refunded', 'charged_back'):
        return 'refunded'
    if status in ('rejected', 'cancelled'):
        return 'cancelled'
    return 'pending'


def api_error_message(body, fallback):
    causes = body.get('cause') or []
    if causes and isinstance(causes[0], dict):
        cause = causes[0].get('description') or causes[0].get('code')
        if cause:
            return str(cause)
    return body.get('message') or body.get('error') or fallback


def _http_url(value):
    if isinstance(value, str) and URL_RE.match(value):
        return value
    return None


def _account_digits(value):
    # clabe-like values only, at least 10 digits
    if not isinstance(value, str):
        return None
    digits = re.sub(r'\D', '', value)
    return digits if len(digits) >= 10 else None


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def cash_instructions(payment):
    transaction = (payment.get('point_of_interaction') or {}).get('transaction_data') or {}
    details = payment.get('transaction_details') or {}
    method_data = (payment.get('payment_method') or {}).get('data') or {}
    barcode = payment.get('barcode') or {}

    resource_url = _http_url(_first(details.get('external_resource_url'),
                                    method_data.get('external_resource_url')))
    ticket_url = _http_url(_first(transaction.get('ticket_url'),
                                  transaction.get('external_resource_url')))
    url_reference = None
    if resource_url:
        match = REFERENCE_RE.search(resource_url)
        url_reference = match.group(1) if match else None

    return {
        'reference': _first(
            transaction.get('reference_number'),
            transaction.get('payment_reference'),
            details.get('payment_method_reference_id'),
            barcode.get('content'),
            method_data.get('reference'),
            url_reference,
        ),
        'barcode_url': _first(transaction.get('barcode_url'), transaction.get('ticket_url')),
        'barcode_content': _first(
            (details.get('barcode') or {}).get('content'),
            barcode.get('content'),
            details.get('verification_code'),
        ),
        'payment_url': ticket_url or resource_url,
        'expires_at': payment.get('date_of_expiration'),
    }


def transfer_instructions(payment):
    transaction = (payment.get('point_of_interaction') or {}).get('transaction_data') or {}
    details = payment.get('transaction_details') or {}
    method_data = (payment.get('payment_method') or {}).get('data') or {}
    resource_url = _first(details.get('external_resource_url'),
                          method_data.get('external_resource_url'))

    return {
        'clabe': _first(
            _account_digits((transaction.get('bank_info') or {}).get('account_number')),
            _account_digits(transaction.get('account_number')),
            _account_digits(transaction.get('clabe')),
            _account_digits(method_data.get('reference_id')),
            _account_digits(method_data.get('external_reference_id')),
            transaction.get('bank_transfer_id'),
            transaction.get('financial_institution'),
            transaction.get('reference'),
        ),
        'bank': transaction.get('financial_institution'),
        'reference': _first(transaction.get('reference'), resource_url),
        'payment_url': resource_url,
        'expires_at': payment.get('date_of_expiration'),
    }


class MercadoPagoGateway(PaymentGateway):
    name = 'mercadopago'
    methods = ('card', 'cash', 'spei')
    config_keys = ('MERCADO_PAGO_ACCESS_TOKEN',)
    url_key = 'MERCADO_PAGO_API_URL'

    def auth_headers(self):
        return {'Authorization': f"Bearer {self.config['MERCADO_PAGO_ACCESS_TOKEN']}"}

    def _post_payment(self, payload, order_number, fallback):
        response, body = self._request('POST', '/v1/payments', payload,
                                       headers={'X-Idempotency-Key': str(uuid.uuid4())},
                                       order_number=order_number)
        if not response.ok:
            raise PaymentError(api_error_message(body, fallback), status=502)
        return body

    def base_payment(self, charge, payment_method):
        payload = {
            'transaction_amount': cents_to_pesos(charge.total),
            'description': f'Order {charge.order_number}',
            'external_reference': charge.order_number,
            'payer': {
                'email': charge.email,
                'first_name': charge.first_name,
                'last_name': charge.last_name,
            },
            'metadata': {
                'order_id': charge.order_number,
                'source': 'atelier_checkout',
                'payment_method': payment_method,
            },
        }
        # mercado pago refuses plain http notification urls
        if self.app_url.startswith('https://'):
            payload['notification_url'] = f'{self.app_url}/api/webhooks/mercadopago'
        return payload

    def find_payment_method(self, payment_type, preferred):
        response, body = self._request('GET', '/v1/payment_methods')
        if not response.ok or not isinstance(body, list):
            return None

        active = [m for m in body
                  if m.get('status') == 'active' and m.get('payment_type_id') == payment_type]
        current_app.logger.info('[mercadopago] %d active %s methods', len(active), payment_type)
        for method_id in preferred:
            if any(m.get('id') == method_id for m in active):
                return method_id
        return active[0].get('id') if active else None

    def get_payment(self, payment_id):
        response, body = self._request('GET', f'/v1/payments/{payment_id}')
        if not response.ok:
            raise PaymentError(api_error_message(body, 'Error fetching payment'), status=502)
        return body

    def _offline_payment(self, charge, kind, payment_type, preferred):
        method_id = self.find_payment_method(payment_type, preferred)
        if not method_id:
            raise PaymentError(f'No available payment method found for {kind}.', status=502)

        payload = self.base_payment(charge, kind)
        payload['payment_method_id'] = method_id
        if kind == 'transfer':
            payload['payer']['entity_type'] = 'individual'
        payment = self._post_payment(payload, charge.order_number,
                                     'Error creating Mercado Pago payment')

        # offline fields (reference, barcode) are only filled in on the detail view
        try:
            payment = self.get_payment(payment['id'])
        except (PaymentError, requests.RequestException):
            current_app.logger.warning('[mercadopago] could not re-fetch payment %s', payment.get('id'))
        return method_id, payment

    def charge_card(self, charge):
        token = self.require_option(charge, 'card_token', 'token')
        method_id = self.require_option(charge, 'payment_method_id')

        payload = self.base_payment(charge, 'card')
        payload.update({
            'token': token,
            'installments': max(1, charge.installments),
            'payment_method_id': method_id,
        })
        if charge.options.get('issuer_id'):
            payload['issuer_id'] = charge.options['issuer_id']

        payment = self._post_payment(payload, charge.order_number, 'Error creating card payment')
        payment_id = payment.get('id')
        status = payment.get('status')
        notes = f"Mercado Pago Method: card | Payment: {payment_id} ({status or 'unknown'})"
        if status == 'approved':
            return PaymentResult('paid', payment_id, notes, {'payment_id': payment_id})
        if status in PENDING_STATUSES:
            return PaymentResult('pending', payment_id, notes, {
                'payment_id': payment_id,
                'status_detail': payment.get('status_detail'),
            })

        detail = payment.get('status_detail')
        raise PaymentError(rejection_message(detail), code=detail)

    def charge_cash(self, charge):
        option = charge.options.get('cash_method') or 'oxxo'
        if option not in CASH_METHODS:
            raise PaymentError(f'Unsupported cash method: {option}', status=400)

        payment_type, preferred = CASH_METHODS[option]
        method_id, payment = self._offline_payment(charge, 'cash', payment_type, preferred)
        payment_id = payment.get('id')
        notes = f'Mercado Pago Method: cash | Payment Method ID: {method_id} | Payment: {payment_id}'
        return PaymentResult('pending', payment_id, notes, cash_instructions(payment))

    def charge_spei(self, charge):
        payment_type, preferred = TRANSFER_METHOD
        _, payment = self._offline_payment(charge, 'transfer', payment_type, preferred)
        payment_id = payment.get('id')
        notes = f'Mercado Pago Method: transfer | Payment: {payment_id}'
        return PaymentResult('pending', payment_id, notes, transfer_instructions(payment))
