# gateways.py - shared plumbing for the clip, conekta and mercado pago adapters
# adapters get lines and totals already priced from the database and answer paid or pending

from dataclasses import dataclass, field

import requests
from flask import current_app


class PaymentError(Exception):
    # status is what the checkout endpoint answers: 402 decline, 502 api error,
    # 503 missing credentials, 400 incomplete payment data
    def __init__(self, message, code=None, status=402):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


@dataclass
class ChargeRequest:
    order_number: str
    email: str
    name: str
    phone: str
    address: dict
    shipping_method: str
    lines: list
    subtotal: int
    shipping: int
    tax: int
    total: int
    installments: int = 0
    options: dict = field(default_factory=dict)

    @property
    def first_name(self):
        return self.name.split(' ')[0] or self.name

    @property
    def last_name(self):
        return ' '.join(self.name.split(' ')[1:]) or 'Cliente'

    @property
    def description(self):
        text = ', '.join(f'{line.quantity}x {line.name}' for line in self.lines)
        return text[:250]


@dataclass
class PaymentResult:
    status: str  # paid or pending
    provider_id: str
    notes: str
    instructions: dict = field(default_factory=dict)


class PaymentGateway:
    name = None
    methods = ()
    config_keys = ()
    url_key = None

    def __init__(self, config):
        self.config = config
        self.timeout = config.get('PAYMENT_TIMEOUT', 20)

    @property
    def base_url(self):
        return self.config[self.url_key].rstrip('/')

    @property
    def app_url(self):
        return self.config.get('APP_URL', '').rstrip('/')

    def auth(self):
        # basic auth pair for requests, None when the provider uses a header token
        return None

    def auth_headers(self):
        return {}

    def require_credentials(self):
        for key in self.config_keys:
            if not self.config.get(key):
                raise PaymentError(f'{key} is not configured', status=503)

    def charge(self, method, charge):
        if method not in self.methods:
            raise PaymentError(f'Unsupported payment method: {method}', status=400)
        self.require_credentials()
        return getattr(self, f'charge_{method}')(charge)

    def _request(self, method, path, payload=None, headers=None, order_number=None):
        all_headers = {'Content-Type': 'application/json'}
        all_headers.update(self.auth_headers())
        all_headers.update(headers or {})

        response = requests.request(method, f'{self.base_url}{path}', json=payload,
                                    auth=self.auth(), headers=all_headers, timeout=self.timeout)
        try:
            body = response.json()
        except ValueError:
            current_app.logger.error('[%s] non json response from %s: %s',
                                     self.name, path, response.text[:500])
            body = {}

        current_app.logger.info('[%s] %s %s -> %s order=%s', self.name, method, path,
                                response.status_code, order_number or '-')
        if not response.ok:
            current_app.logger.error('[%s] api error on %s: %s', self.name, path, body)
        return response, body

    def require_option(self, charge, *names):
        for name in names:
            if charge.options.get(name):
                return charge.options[name]
        raise PaymentError(f'Missing payment field: {names[0]}', status=400)
