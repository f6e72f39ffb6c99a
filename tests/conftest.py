# tests/conftest.py
import pytest
import requests

from app import create_app
from models import db, AdminUser, Category, Product

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SECRET_KEY': 'test-secret',
    'SEED_SAMPLE_DATA': False,
    'ADMIN_EMAIL': None,
    'ADMIN_PASSWORD': None,
    'APP_URL': 'https://shop.test',
    'CLIP_API_URL': 'https://clip.test',
    'CLIP_API_KEY': 'clip-key',
    'CLIP_SECRET_KEY': 'clip-secret',
    'CONEKTA_API_URL': 'https://conekta.test',
    'CONEKTA_PRIVATE_KEY': 'key_private',
    'MERCADO_PAGO_API_URL': 'https://mp.test',
    'MERCADO_PAGO_ACCESS_TOKEN': 'TEST-token',
    'SEPOMEX_API_URL': 'https://sepomex.test',
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError('no json body')
        return self._payload


class FakeHTTP:
    """Stands in for requests.request and answers by method + url fragment."""

    def __init__(self):
        self.calls = []
        self.routes = []

    def add(self, method, fragment, status_code=200, payload=None):
        self.routes.append((method, fragment, FakeResponse(status_code, payload)))

    def __call__(self, method, url, **kwargs):
        self.calls.append(dict(kwargs, method=method, url=url))
        for route_method, fragment, response in self.routes:
            if route_method == method and fragment in url:
                return response
        raise AssertionError(f'unexpected request {method} {url}')

    def bodies(self, method, fragment):
        return [c['json'] for c in self.calls if c['method'] == method and fragment in c['url']]


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def http(monkeypatch):
    fake = FakeHTTP()
    monkeypatch.setattr(requests, 'request', fake)
    return fake


@pytest.fixture
def make_product(app):
    counter = {'n': 0}

    def factory(price=8500, status='active', name=None, category_id=None, **fields):
        counter['n'] += 1
        n = counter['n']
        with app.app_context():
            product = Product(
                sku=fields.pop('sku', f'SKU-{n:03d}'),
                name=name or f'Product {n}',
                slug=fields.pop('slug', f'product-{n}'),
                price=price,
                status=status,
                category_id=category_id,
                **fields,
            )
            db.session.add(product)
            db.session.commit()
            return product.id

    return factory


@pytest.fixture
def make_category(app):
    def factory(name, slug, status='active', description=None):
        with app.app_context():
            category = Category(name=name, slug=slug, status=status, description=description)
            db.session.add(category)
            db.session.commit()
            return category.id

    return factory


@pytest.fixture
def admin_client(app, client):
    with app.app_context():
        admin = AdminUser(email='owner@atelier.mx', name='Owner', role='admin')
        admin.set_password('secret123')
        db.session.add(admin)
        db.session.commit()
    r = client.post('/api/auth/admin', json={'action': 'login', 'email': 'owner@atelier.mx',
                                             'password': 'secret123'})
    assert r.status_code == 200
    return client


@pytest.fixture
def customer_client(client):
    r = client.post('/api/auth/customer', json={'action': 'signup', 'email': 'ana@example.com',
                                                'password': 'secret123', 'name': 'Ana Lopez'})
    assert r.status_code == 200
    return client


def checkout_payload(items, **extra):
    payload = {
        'email': 'Ana@Example.com',
        'first_name': 'Ana',
        'last_name': 'Lopez',
        'phone': '55 1234 5678',
        'shipping': {
            'address': 'Av. Reforma 100',
            'city': 'Ciudad de Mexico',
            'state': 'CDMX',
            'neighborhood': 'Juarez',
            'postal_code': '06600',
        },
        'shipping_method': 'standard',
        'items': items,
    }
    payload.update(extra)
    return payload
