# conekta.py - Conekta card (with MSI), OXXO cash and SPEI transfer orders
# conekta takes amounts in centavos, auth is basic with the private key as user

from datetime import timedelta

from gateways import PaymentGateway, PaymentError, PaymentResult
from models import isoformat, utcnow

CONEKTA_ACCEPT = 'application/vnd.conekta-v2.1.0+json'
OFFLINE_EXPIRY = timedelta(days=3)
DEFAULT_MSI_OPTIONS = [3, 6, 9, 12]

CONEKTA_ERROR_MESSAGES = {
    'insufficient_funds': 'Insufficient funds',
    'card_declined': 'Card declined',
    'expired_card': 'Expired card',
    'suspected_fraud': 'Transaction declined for security reasons',
    'invalid_number': 'Invalid card number',
    'invalid_cvc': 'Invalid security code',
    'processing_error': 'Processing error. Please try again',
    'call_issuer': 'Please contact your bank',
    'card_not_supported': 'Card not supported',
    'do_not_honor': 'Transaction declined by bank',
    'invalid_account': 'Invalid account',
}
DEFAULT_DECLINE = 'Payment declined. Please try another card.'


def conekta_error_message(code):
    return CONEKTA_ERROR_MESSAGES.get(code, DEFAULT_DECLINE)


def api_error_message(body, fallback):
    details = body.get('details') or []
    if details and isinstance(details[0], dict) and details[0].get('message'):
        return details[0]['message']
    return body.get('message') or fallback


class ConektaGateway(PaymentGateway):
    name = 'conekta'
    methods = ('card', 'oxxo', 'spei')
    config_keys = ('CONEKTA_PRIVATE_KEY',)
    url_key = 'CONEKTA_API_URL'

    def auth(self):
        return self.config['CONEKTA_PRIVATE_KEY'], ''

    def auth_headers(self):
        return {'Accept': CONEKTA_ACCEPT}

    def create_token(self, installment_options=None):
        """Open a checkout session for the card iframe."""
        self.require_credentials()
        payload = {
            'checkout': {
                'allowed_payment_methods': ['card'],
                'monthly_installments_enabled': True,
                'monthly_installments_options': installment_options or DEFAULT_MSI_OPTIONS,
                'returns_control_on': 'Token',
            },
        }
        response, body = self._request('POST', '/tokens', payload)
        if not response.ok:
            raise PaymentError(api_error_message(body, 'Error creating payment session'), status=502)
        return {
            'token_id': body.get('id'),
            'checkout_id': (body.get('checkout') or {}).get('id'),
        }

    def build_order(self, charge, payment_method, payment_type):
        address = charge.address
        return {
            'currency': 'MXN',
            'customer_info': {
                'name': charge.name,
                'email': charge.email,
                'phone': charge.phone,
            },
            'line_items': [{
                'name': line.name[:250],
                'unit_price': line.unit_price,
                'quantity': line.quantity,
                'sku': line.sku,
                'tags': ['atelier'],
            } for line in charge.lines],
            'charges': [{'payment_method': payment_method}],
            'tax_lines': [{'description': 'IVA', 'amount': charge.tax}],
            'shipping_lines': [{
                'amount': charge.shipping,
                'carrier': 'Express' if charge.shipping_method == 'express' else 'Standard',
            }],
            'shipping_contact': {
                'receiver': charge.name,
                'phone': charge.phone,
                'address': {
                    'street1': address.get('address'),
                    'city': address.get('city'),
                    'state': address.get('state') or address.get('city'),
                    'country': 'mx',
                    'postal_code': address.get('postal_code'),
                    'residential': True,
                },
            },
            'metadata': {
                'integration': 'Atelier Web',
                'source': 'checkout',
                'payment_type': payment_type,
                'order_number': charge.order_number,
            },
        }

    def _create_order(self, charge, payment_method, fallback):
        payload = self.build_order(charge, payment_method, payment_method['type'])
        response, body = self._request('POST', '/orders', payload, order_number=charge.order_number)
        if not response.ok:
            raise PaymentError(api_error_message(body, fallback), status=502)
        charges = (body.get('charges') or {}).get('data') or []
        return body, (charges[0] if charges else {})

    def charge_card(self, charge):
        token = self.require_option(charge, 'token_id', 'card_token')
        payment_method = {'type': 'card', 'token_id': token}
        if charge.installments > 1:
            payment_method['monthly_installments'] = charge.installments

        order, first = self._create_order(charge, payment_method, 'Payment processing error')
        order_id = order.get('id')
        status = first.get('status') or order.get('payment_status')
        notes = f"Conekta Order: {order_id} | Method: card | Charge: {first.get('id') or 'N/A'}"
        if charge.installments > 1:
            notes += f' | MSI: {charge.installments}'
        instructions = {
            'conekta_order_id': order_id,
            'charge_id': first.get('id'),
            'payment_status': status,
        }

        if status in ('paid', 'pre_authorized'):
            return PaymentResult('paid', order_id, notes, instructions)
        if status == 'pending_payment':
            instructions['redirect_url'] = (first.get('payment_method') or {}).get('redirect_url')
            return PaymentResult('pending', order_id, notes, instructions)

        code = first.get('failure_code')
        raise PaymentError(conekta_error_message(code), code=code)

    def charge_oxxo(self, charge):
        expires_at = utcnow() + OFFLINE_EXPIRY
        order, first = self._create_order(charge, {
            'type': 'oxxo_cash',
            'expires_at': int(expires_at.timestamp()),
        }, 'Error creating OXXO payment')

        method = first.get('payment_method') or {}
        reference = method.get('reference')
        notes = f"Conekta Order: {order.get('id')} | Method: oxxo_cash | Reference: {reference or 'N/A'}"
        return PaymentResult('pending', order.get('id'), notes, {
            'conekta_order_id': order.get('id'),
            'reference': reference,
            'barcode_url': method.get('barcode_url'),
            'expires_at': isoformat(expires_at),
        })

    def charge_spei(self, charge):
        expires_at = utcnow() + OFFLINE_EXPIRY
        order, first = self._create_order(charge, {
            'type': 'spei',
            'expires_at': int(expires_at.timestamp()),
        }, 'Error creating SPEI payment')

        method = first.get('payment_method') or {}
        clabe = method.get('receiving_account_number')
        bank = method.get('receiving_account_bank')
        notes = (f"Conekta Order: {order.get('id')} | Method: spei | "
                 f"CLABE: {clabe or 'N/A'} | Bank: {bank or 'N/A'}")
        return PaymentResult('pending', order.get('id'), notes, {
            'conekta_order_id': order.get('id'),
            'clabe': clabe,
            'bank': bank,
            'reference': method.get('reference'),
            'expires_at': isoformat(expires_at),
        })
