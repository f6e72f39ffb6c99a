from models import db, AdminUser, Customer, Order, OrderItem


def test_anonymous_session_is_null(client):
    assert client.get('/api/auth/customer').get_json() == {'user': None}
    assert client.get('/api/auth/admin').get_json() == {'user': None}


def test_signup_logs_in_and_lowercases_email(client):
    r = client.post('/api/auth/customer', json={'action': 'signup', 'email': ' Ana@Example.COM ',
                                                'password': 'secret123', 'name': 'Ana'})
    assert r.status_code == 200
    assert r.get_json()['user']['email'] == 'ana@example.com'
    assert client.get('/api/auth/customer').get_json()['user']['name'] == 'Ana'


def test_signup_rejects_short_password_and_duplicates(client, customer_client):
    r = client.post('/api/auth/customer', json={'action': 'signup', 'email': 'x@example.com',
                                                'password': '123'})
    assert r.status_code == 400
    assert r.get_json()['error'] == 'Password must be at least 6 characters'

    r = client.post('/api/auth/customer', json={'action': 'signup', 'email': 'ana@example.com',
                                                'password': 'another1'})
    assert r.status_code == 409


def test_signup_claims_account_created_at_checkout(app, client):
    with app.app_context():
        db.session.add(Customer(email='guest@example.com', phone='5512345678'))
        db.session.commit()

    r = client.post('/api/auth/customer', json={'action': 'signup', 'email': 'guest@example.com',
                                                'password': 'secret123'})

    assert r.status_code == 200
    assert r.get_json()['user']['phone'] == '5512345678'
    with app.app_context():
        assert Customer.query.count() == 1


def test_login_and_logout(client, customer_client):
    client.post('/api/auth/customer', json={'action': 'logout'})
    assert client.get('/api/auth/customer').get_json() == {'user': None}

    r = client.post('/api/auth/customer', json={'action': 'login', 'email': 'ana@example.com',
                                                'password': 'wrong-pass'})
    assert r.status_code == 401
    assert r.get_json()['error'] == 'Invalid email or password'

    r = client.post('/api/auth/customer', json={'action': 'login', 'email': 'ana@example.com',
                                                'password': 'secret123'})
    assert r.status_code == 200


def test_login_without_password_hash(app, client):
    with app.app_context():
        db.session.add(Customer(email='old@example.com'))
        db.session.commit()
    r = client.post('/api/auth/customer', json={'action': 'login', 'email': 'old@example.com',
                                                'password': 'whatever'})
    assert r.status_code == 401
    assert r.get_json()['error'].startswith('Account migrated without password')


def test_invalid_action(client):
    r = client.post('/api/auth/customer', json={'action': 'dance'})
    assert r.status_code == 400


def test_update_profile_is_partial(client, customer_client):
    client.patch('/api/auth/customer', json={'action': 'updateProfile', 'city': 'Puebla'})
    r = client.patch('/api/auth/customer', json={'action': 'updateProfile', 'phone': '2221234567'})
    user = r.get_json()['user']
    assert user['city'] == 'Puebla'
    assert user['phone'] == '2221234567'
    assert user['name'] == 'Ana Lopez'


def test_patch_requires_session(client):
    r = client.patch('/api/auth/customer', json={'action': 'updateProfile', 'city': 'Puebla'})
    assert r.status_code == 401


def test_update_email(app, client, customer_client):
    with app.app_context():
        db.session.add(Customer(email='taken@example.com'))
        db.session.commit()

    r = client.patch('/api/auth/customer', json={'action': 'updateEmail', 'newEmail': 'new@example.com',
                                                 'password': 'bad-password'})
    assert r.status_code == 401

    r = client.patch('/api/auth/customer', json={'action': 'updateEmail', 'newEmail': 'taken@example.com',
                                                 'password': 'secret123'})
    assert r.status_code == 409

    r = client.patch('/api/auth/customer', json={'action': 'updateEmail', 'newEmail': 'New@Example.com',
                                                 'password': 'secret123'})
    assert r.get_json()['user']['email'] == 'new@example.com'


def test_update_password(client, customer_client):
    r = client.patch('/api/auth/customer', json={'action': 'updatePassword', 'currentPassword': 'nope12',
                                                 'newPassword': 'newsecret'})
    assert r.status_code == 401
    assert r.get_json()['error'] == 'Current password is incorrect'

    r = client.patch('/api/auth/customer', json={'action': 'updatePassword',
                                                 'currentPassword': 'secret123', 'newPassword': 'abc'})
    assert r.status_code == 400

    r = client.patch('/api/auth/customer', json={'action': 'updatePassword',
                                                 'currentPassword': 'secret123', 'newPassword': 'newsecret'})
    assert r.get_json() == {'success': True}

    client.post('/api/auth/customer', json={'action': 'logout'})
    r = client.post('/api/auth/customer', json={'action': 'login', 'email': 'ana@example.com',
                                                'password': 'newsecret'})
    assert r.status_code == 200


def test_account_orders_with_product_images(app, client, customer_client, make_product):
    product_id = make_product(main_image='https://img.test/shirt.jpg')
    with app.app_context():
        for number in ('ATL-A', 'ATL-B'):
            order = Order(order_number=number, customer_email='ana@example.com', status='paid',
                          subtotal=8500, shipping=12000, tax=1360, total=21860)
            db.session.add(order)
            db.session.flush()
            db.session.add(OrderItem(order_id=order.id, product_id=product_id, product_name='Shirt',
                                     product_sku='SKU-001', quantity=1, unit_price=8500, total_price=8500))
        db.session.add(Order(order_number='ATL-OTHER', customer_email='someone@example.com',
                             subtotal=1, shipping=0, tax=0, total=1))
        db.session.commit()

    orders = client.get('/api/account/orders').get_json()['orders']
    assert {o['order_number'] for o in orders} == {'ATL-A', 'ATL-B'}
    assert orders[0]['items'][0]['product'] == {'main_image': 'https://img.test/shirt.jpg'}
    assert len(client.get('/api/account/orders?limit=1').get_json()['orders']) == 1


def test_account_orders_anonymous(client):
    assert client.get('/api/account/orders').get_json() == {'orders': []}


def test_admin_login(app, client):
    with app.app_context():
        admin = AdminUser(email='staff@atelier.mx', name='Staff', role='manager')
        admin.set_password('secret123')
        db.session.add(admin)
        db.session.commit()

    r = client.post('/api/auth/admin', json={'action': 'login', 'email': 'nobody@atelier.mx',
                                             'password': 'secret123'})
    assert r.status_code == 403
    assert r.get_json()['error'] == 'You do not have admin access'

    r = client.post('/api/auth/admin', json={'action': 'login', 'email': 'staff@atelier.mx',
                                             'password': 'secret123'})
    assert r.status_code == 200
    assert client.get('/api/auth/admin').get_json()['user']['role'] == 'manager'
    # an admin session is not a customer session
    assert client.get('/api/auth/customer').get_json() == {'user': None}


def test_admin_seeded_from_config():
    from app import create_app
    from conftest import TEST_CONFIG

    app = create_app(dict(TEST_CONFIG, ADMIN_EMAIL='Boss@Atelier.mx', ADMIN_PASSWORD='topsecret'))
    with app.app_context():
        admin = AdminUser.query.one()
        assert admin.email == 'boss@atelier.mx'
        assert admin.role == 'admin'
        assert admin.check_password('topsecret')
        db.drop_all()


def test_non_object_bodies_are_400(client, customer_client):
    for method in (client.post, client.patch):
        r = method('/api/auth/customer', json=['login'])
        assert r.status_code == 400
        assert r.get_json() == {'error': 'Expected a JSON object'}
    assert client.post('/api/auth/admin', json='login').status_code == 400
