from datetime import datetime, timedelta, timezone

import pytest

from models import db, AdminUser, Customer, Order, OrderItem, Product
from reports import percent_change, revenue_chart


def add_order(number, total, status='paid', created_at=None, email='ana@example.com', items=()):
    order = Order(order_number=number, customer_email=email, customer_name='Ana Lopez', status=status,
                  subtotal=total, shipping=0, tax=0, total=total,
                  created_at=created_at or datetime.now(timezone.utc))
    db.session.add(order)
    db.session.flush()
    for product_id, quantity, price in items:
        db.session.add(OrderItem(order_id=order.id, product_id=product_id, product_name=f'P{product_id}',
                                 product_sku=f'SKU-{product_id}', quantity=quantity, unit_price=price,
                                 total_price=quantity * price))
    return order


def test_admin_routes_need_admin_session(client, customer_client):
    assert client.get('/api/admin/products').status_code == 401
    assert client.get('/api/admin/dashboard').status_code == 401


def test_users_need_admin_role(app, client):
    with app.app_context():
        manager = AdminUser(email='manager@atelier.mx', name='Manager', role='manager')
        manager.set_password('secret123')
        db.session.add(manager)
        db.session.commit()
    client.post('/api/auth/admin', json={'action': 'login', 'email': 'manager@atelier.mx',
                                         'password': 'secret123'})

    assert client.get('/api/admin/products').status_code == 200
    r = client.get('/api/admin/users')
    assert r.status_code == 403
    assert r.get_json()['error'] == 'Only admins can manage users'


def test_create_product_derives_slug(admin_client):
    r = admin_client.post('/api/admin/products', json={'name': 'Linen Midi Dress!', 'sku': 'DR-1',
                                                       'price': 189900, 'status': 'active'})
    assert r.status_code == 201
    assert r.get_json()['product']['slug'] == 'linen-midi-dress'


def test_create_product_validation(admin_client):
    r = admin_client.post('/api/admin/products', json={'name': 'Coat', 'sku': 'C-1', 'price': 12.5})
    assert r.status_code == 400
    r = admin_client.post('/api/admin/products', json={'name': 'Coat', 'sku': 'C-1', 'price': 100,
                                                       'status': 'sold'})
    assert r.status_code == 400


def test_duplicate_sku_is_409(admin_client, make_product):
    make_product(sku='DUP-1')
    r = admin_client.post('/api/admin/products', json={'name': 'Other', 'sku': 'DUP-1', 'price': 100})
    assert r.status_code == 409


def test_partial_product_update(app, admin_client, make_product):
    product_id = make_product(price=5000, name='Tee', description='Cotton tee')
    r = admin_client.patch(f'/api/admin/products/{product_id}', json={'price': 6500})
    product = r.get_json()['product']
    assert product['price'] == 6500
    assert product['name'] == 'Tee'
    assert product['description'] == 'Cotton tee'


def test_product_list_filters(admin_client, make_product, make_category):
    category_id = make_category('Men', 'men')
    make_product(name='Oxford Shirt', category_id=category_id)
    make_product(name='Wool Coat', status='draft')

    names = lambda r: [p['name'] for p in r.get_json()['products']]  # noqa: E731
    assert names(admin_client.get('/api/admin/products?status=draft')) == ['Wool Coat']
    assert names(admin_client.get(f'/api/admin/products?category_id={category_id}')) == ['Oxford Shirt']
    assert names(admin_client.get('/api/admin/products?search=oxford')) == ['Oxford Shirt']


def test_delete_product(app, admin_client, make_product):
    product_id = make_product()
    assert admin_client.delete(f'/api/admin/products/{product_id}').get_json() == {'success': True}
    assert admin_client.get(f'/api/admin/products/{product_id}').status_code == 404


def test_categories_with_counts_and_delete_detaches_products(app, admin_client, make_product,
                                                              make_category):
    category_id = make_category('Women', 'women')
    product_id = make_product(category_id=category_id)
    make_product(category_id=category_id)

    categories = admin_client.get('/api/admin/categories').get_json()['categories']
    assert categories[0]['product_count'] == 2

    admin_client.delete(f'/api/admin/categories/{category_id}')
    with app.app_context():
        assert db.session.get(Product, product_id).category_id is None


def test_create_and_update_category(admin_client):
    r = admin_client.post('/api/admin/categories', json={'name': 'Summer Sale'})
    category = r.get_json()['category']
    assert category['slug'] == 'summer-sale'
    r = admin_client.patch(f"/api/admin/categories/{category['id']}", json={'status': 'archived'})
    assert r.get_json()['category']['status'] == 'archived'
    assert r.get_json()['category']['name'] == 'Summer Sale'


def test_orders_list_search_and_status_update(app, admin_client):
    with app.app_context():
        add_order('ATL-ONE', 1000, status='pending')
        add_order('ATL-TWO', 2000, email='luis@example.com')
        db.session.commit()

    data = admin_client.get('/api/admin/orders?search=luis').get_json()
    assert [o['order_number'] for o in data['orders']] == ['ATL-TWO']
    assert data['orders'][0]['payment_status'] == 'paid'

    pending = admin_client.get('/api/admin/orders?status=pending').get_json()['orders'][0]
    r = admin_client.patch(f"/api/admin/orders/{pending['id']}", json={'status': 'shipped'})
    assert r.get_json()['order']['status'] == 'shipped'
    r = admin_client.patch(f"/api/admin/orders/{pending['id']}", json={'status': 'lost'})
    assert r.status_code == 400


def test_order_detail_falls_back_to_product_image(app, admin_client, make_product):
    product_id = make_product(main_image='https://img.test/coat.jpg')
    with app.app_context():
        order = add_order('ATL-IMG', 8500, items=[(product_id, 1, 8500)])
        db.session.commit()
        order_id = order.id

    order = admin_client.get(f'/api/admin/orders/{order_id}').get_json()['order']
    assert order['items'][0]['product_image'] == 'https://img.test/coat.jpg'


def test_customers_list_with_totals(app, admin_client):
    with app.app_context():
        db.session.add(Customer(email='ana@example.com', name='Ana'))
        db.session.add(Customer(email='luis@example.com', name='Luis'))
        add_order('ATL-C1', 1000)
        add_order('ATL-C2', 3000)
        add_order('ATL-C3', 9000, status='cancelled')
        db.session.commit()

    customers = admin_client.get('/api/admin/customers?search=ana').get_json()['customers']
    assert len(customers) == 1
    assert customers[0]['order_count'] == 2
    assert customers[0]['total_spent'] == 4000


def test_user_management(app, admin_client):
    r = admin_client.post('/api/admin/users', json={'email': 'New@Atelier.mx', 'name': 'New',
                                                    'password': 'secret123'})
    assert r.status_code == 201
    user = r.get_json()['user']
    assert user == dict(user, email='new@atelier.mx', role='manager')

    assert admin_client.post('/api/admin/users', json={'email': 'x@atelier.mx', 'name': 'X',
                                                       'password': '123'}).status_code == 400
    assert admin_client.post('/api/admin/users', json={'email': 'new@atelier.mx', 'name': 'Again',
                                                       'password': 'secret123'}).status_code == 409

    r = admin_client.patch(f"/api/admin/users/{user['id']}", json={'role': 'admin'})
    assert r.get_json()['user']['role'] == 'admin'
    assert r.get_json()['user']['name'] == 'New'

    assert admin_client.delete(f"/api/admin/users/{user['id']}").get_json() == {'success': True}
    assert len(admin_client.get('/api/admin/users').get_json()['users']) == 1


def test_dashboard_stats(app, admin_client, make_product):
    shirt = make_product(name='Shirt')
    coat = make_product(name='Coat')
    now = datetime.now(timezone.utc)
    last_month = now.replace(day=1) - timedelta(days=3)
    with app.app_context():
        add_order('ATL-D1', 10000, items=[(shirt, 3, 2000), (coat, 1, 4000)])
        add_order('ATL-D2', 5000, status='cancelled', items=[(coat, 1, 5000)])
        add_order('ATL-D3', 5000, created_at=last_month)
        db.session.commit()

    stats = admin_client.get('/api/admin/dashboard').get_json()
    assert stats['total_products'] == 2
    assert stats['total_orders'] == 3
    assert stats['total_revenue'] == 15000
    assert stats['revenue_change'] == 100
    assert stats['orders_change'] == 100
    assert len(stats['recent_orders']) == 3
    top = stats['top_products']
    assert top[0]['product']['id'] == shirt
    assert top[0]['total_sold'] == 3
    assert top[1]['total_sold'] == 2


def test_percent_change():
    assert percent_change(150, 100) == 50
    assert percent_change(50, 100) == -50
    assert percent_change(10, 0) == 0


def test_revenue_chart_groups_by_year(app):
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    with app.app_context():
        add_order('ATL-Y1', 1000, created_at=datetime(2024, 3, 1, tzinfo=timezone.utc))
        add_order('ATL-Y2', 2000, created_at=datetime(2026, 1, 5, tzinfo=timezone.utc))
        add_order('ATL-Y3', 3000, created_at=datetime(2026, 6, 5, tzinfo=timezone.utc))
        add_order('ATL-Y4', 9000, status='cancelled', created_at=datetime(2026, 6, 6, tzinfo=timezone.utc))
        add_order('ATL-Y5', 7000, created_at=datetime(2020, 6, 6, tzinfo=timezone.utc))
        db.session.commit()

        assert revenue_chart('years', now=now) == [{'label': '2024', 'revenue': 1000},
                                                   {'label': '2026', 'revenue': 5000}]
        assert revenue_chart('months', now=now) == [{'label': 'Jan', 'revenue': 2000},
                                                    {'label': 'Jun', 'revenue': 3000}]


def test_revenue_endpoint_rejects_unknown_period(admin_client):
    assert admin_client.get('/api/admin/revenue?period=7days').status_code == 200
    assert admin_client.get('/api/admin/revenue?period=decades').status_code == 400


@pytest.mark.parametrize('text, slug', [('Vestido Rojo', 'vestido-rojo'), ('  ', 'item'), ('A&B', 'a-b')])
def test_slugify(text, slug):
    from admin import slugify
    assert slugify(text) == slug
