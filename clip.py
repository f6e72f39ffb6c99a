# clip.py - Clip transparent card checkout and hosted (redirect) checkout
# amounts go to clip in pesos, auth is basic api_key:secret

import json
from datetime import timedelta

from gateways import PaymentGateway, PaymentError, PaymentResult
from models import cents_to_pesos, utcnow

CLIP_ERROR_MESSAGES = {
    'RE-BIN01': 'Tarjeta rechazada',
    'RE-ISS01': 'Fondos insuficientes',
    'RE-ISS02': 'Transacción rechazada por el banco',
    'RE-ISS03': 'Tarjeta restringida',
    'RE-ISS05': 'Transacción no permitida',
    'RE-ISS06': 'Tarjeta retenida',
    'RE-ISS07': 'Tarjeta expirada',
    'RE-ISS08': 'Excede límite de retiro',
    'RE-ISS09': 'PIN inválido',
    'RE-ISS10': 'Número de intentos de PIN excedido',
    'RE-ISS11': 'Contacta a tu banco',
    'RE-ISS12': 'Monto inválido',
    'RE-ISS16': 'Número de tarjeta inválido',
    'RE-ISS17': 'Comercio inválido',
    'RE-ISS18': 'Transacción inválida',
    'RE-3DS01': 'Autenticación 3DS fallida',
    'RE-ERI05': 'Verificación KYC pendiente',
}
DEFAULT_DECLINE = 'Pago rechazado. Intenta con otra tarjeta.'

REDIRECT_METHODS = {
    'card': ['CARD'],
    'cash': ['CASH'],
    'transfer': ['BANK_TRANSFER'],
    'all': ['CARD', 'CASH', 'BANK_TRANSFER'],
}
METHOD_LABELS = {
    'card': 'Card',
    'cash': 'Cash (OXXO/Convenience Store)',
    'transfer': 'Bank Transfer (SPEI)',
    'all': 'Clip Checkout',
}
REDIRECT_EXPIRY = timedelta(hours=48)


def clip_error_message(code):
    return CLIP_ERROR_MESSAGES.get(code, DEFAULT_DECLINE)


def _status_code(body):
    detail = body.get('status_detail')
    if isinstance(detail, dict):
        return detail.get('code')
    return None


class ClipGateway(PaymentGateway):
    name = 'clip'
    methods = ('card', 'redirect')
    config_keys = ('CLIP_API_KEY', 'CLIP_SECRET_KEY')
    url_key = 'CLIP_API_URL'

    def auth(self):
        return self.config['CLIP_API_KEY'], self.config['CLIP_SECRET_KEY']

    def charge_card(self, charge):
        token = self.require_option(charge, 'card_token')
        payload = {
            'amount': cents_to_pesos(charge.total),
            'currency': 'MXN',
            'description': charge.description,
            'payment_method': {'token': token},
            'customer': {'email': charge.email, 'phone': charge.phone or ''},
        }
        response, body = self._request('POST', '/payments', payload, order_number=charge.order_number)
        if not response.ok:
            raise PaymentError(body.get('message') or 'Error al procesar el pago',
                               code=_status_code(body), status=502)

        payment_id = body.get('id')
        notes = f'Clip Payment ID: {payment_id} | Method: card'
        status = body.get('status')
        if status == 'approved':
            return PaymentResult('paid', payment_id, notes, {
                'payment_id': payment_id,
                'receipt_no': body.get('receipt_no'),
            })
        if status == 'pending':
            # 3ds authentication still to be completed by the shopper
            return PaymentResult('pending', payment_id, notes, {
                'payment_id': payment_id,
                'pending_action': body.get('pending_action'),
            })

        code = _status_code(body)
        raise PaymentError(clip_error_message(code), code=code)

    def charge_redirect(self, charge):
        method = charge.options.get('payment_method') or 'all'
        if method not in REDIRECT_METHODS:
            raise PaymentError(f'Unsupported payment method: {method}', status=400)

        success_url = charge.options.get('success_url') or \
            f'{self.app_url}/checkout/success?order={charge.order_number}'
        cancel_url = charge.options.get('cancel_url') or f'{self.app_url}/checkout'
        items = [{
            'id': line.product_id,
            'name': line.name,
            'sku': line.sku,
            'qty': line.quantity,
            'size': line.size,
            'color': line.color,
            'price': line.unit_price,
        } for line in charge.lines]
        shipping = dict(charge.address, name=charge.name, phone=charge.phone)

        payload = {
            'amount': cents_to_pesos(charge.total),
            'currency': 'MXN',
            'purchase_description': charge.description,
            'redirection_url': {
                'success': success_url,
                'error': cancel_url,
                'default': success_url,
            },
            'webhook_url': f'{self.app_url}/api/webhooks/clip',
            'payment_methods': REDIRECT_METHODS[method],
            'metadata': {
                'order_number': charge.order_number,
                'items': json.dumps(items),
                'shipping': json.dumps(shipping),
                'shipping_method': charge.shipping_method,
                'subtotal': str(charge.subtotal),
                'shipping_cost': str(charge.shipping),
                'tax': str(charge.tax),
                'total': str(charge.total),
            },
            'customer': {'email': charge.email, 'phone': charge.phone or ''},
            'expires_at': (utcnow() + REDIRECT_EXPIRY).isoformat(),
        }
        response, body = self._request('POST', '/v2/checkout', payload, order_number=charge.order_number)
        if not response.ok or not body:
            raise PaymentError(body.get('message') or body.get('error') or 'Error al crear el enlace de pago',
                               status=502)

        request_id = body.get('id')
        checkout_url = body.get('payment_request_url') or body.get('checkout_url') or body.get('url')
        notes = f'Clip Payment Request: {request_id} | Method: {METHOD_LABELS[method]}'
        return PaymentResult('pending', request_id, notes, {
            'payment_request_id': request_id,
            'checkout_url': checkout_url,
        })

    def payment_status(self, payment_id):
        self.require_credentials()
        response, body = self._request('GET', f'/payments/{payment_id}')
        if not response.ok:
            raise PaymentError('Error al obtener el estado del pago', status=502)
        return {
            'status': body.get('status'),
            'status_detail': body.get('status_detail'),
            'payment_id': body.get('id'),
            'receipt_no': body.get('receipt_no'),
        }
