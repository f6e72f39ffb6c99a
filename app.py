# app.py - builds the flask app: config, database, sessions and the api blueprints
# run this file to start a local server: python app.py

import logging
import os
from datetime import timedelta

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from admin import admin_bp
from auth import auth_bp, login_manager
from cart import cart_bp
from checkout import checkout_bp
from models import db, AdminUser, Category, Product
from shop import shop_bp
from webhooks import webhooks_bp


def database_url():
    url = os.environ.get('DATABASE_URL', 'sqlite:///atelier.db')
    # hosted postgres hands out postgres:// urls, sqlalchemy wants the driver spelled out
    for prefix in ('postgres://', 'postgresql://'):
        if url.startswith(prefix):
            return 'postgresql+psycopg://' + url[len(prefix):]
    return url


def env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def load_config(app):
    env = os.environ
    app.config.update(
        SQLALCHEMY_DATABASE_URI=database_url(),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SQLALCHEMY_ENGINE_OPTIONS={'pool_pre_ping': True},
        SECRET_KEY=env.get('SECRET_KEY', 'atelier-dev-secret-key'),
        REMEMBER_COOKIE_DURATION=timedelta(days=14),
        APP_URL=env.get('APP_URL', 'http://localhost:5000'),
        CLIP_API_URL=env.get('CLIP_API_URL', 'https://api.payclip.com'),
        CLIP_API_KEY=env.get('CLIP_API_KEY'),
        CLIP_SECRET_KEY=env.get('CLIP_SECRET_KEY'),
        CLIP_PUBLIC_KEY=env.get('CLIP_PUBLIC_KEY'),
        CONEKTA_API_URL=env.get('CONEKTA_API_URL', 'https://api.conekta.io'),
        CONEKTA_PRIVATE_KEY=env.get('CONEKTA_PRIVATE_KEY'),
        CONEKTA_PUBLIC_KEY=env.get('CONEKTA_PUBLIC_KEY'),
        MERCADO_PAGO_API_URL=env.get('MERCADO_PAGO_API_URL', 'https://api.mercadopago.com'),
        MERCADO_PAGO_ACCESS_TOKEN=env.get('MERCADO_PAGO_ACCESS_TOKEN'),
        MERCADO_PAGO_PUBLIC_KEY=env.get('MERCADO_PAGO_PUBLIC_KEY'),
        PAYMENT_TIMEOUT=int(env.get('PAYMENT_TIMEOUT', 20)),
        SEPOMEX_API_URL=env.get('SEPOMEX_API_URL', 'https://sepomex.icalialabs.com'),
        SHIPPING_RATES={'standard': 12000, 'express': 25000},
        TAX_RATE=0.16,
        ADMIN_EMAIL=env.get('ADMIN_EMAIL'),
        ADMIN_PASSWORD=env.get('ADMIN_PASSWORD'),
        SEED_SAMPLE_DATA=env_flag('SEED_SAMPLE_DATA', True),
        LOG_LEVEL=env.get('LOG_LEVEL', 'INFO'),
    )


def register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def http_error(exc):
        return jsonify(error=exc.description), exc.code

    @app.errorhandler(Exception)
    def unhandled_error(exc):
        db.session.rollback()
        app.logger.exception('unhandled error: %s', exc)
        return jsonify(error='Internal server error'), 500


def seed_admin(app):
    # first admin comes from the environment, password is refreshed on every start
    email, password = app.config['ADMIN_EMAIL'], app.config['ADMIN_PASSWORD']
    if not email or not password:
        return
    admin = AdminUser.query.filter_by(email=email.lower()).first()
    if not admin:
        admin = AdminUser(email=email.lower(), name='Administrator', role='admin')
        db.session.add(admin)
    admin.set_password(password)
    db.session.commit()


def seed_catalog():
    # starter catalog for a clothing store, prices in centavos
    if Product.query.count() > 0:
        return
    women = Category(name='Women', slug='women', description='Dresses, tops and skirts')
    men = Category(name='Men', slug='men', description='Shirts, trousers and outerwear')
    accessories = Category(name='Accessories', slug='accessories', description='Bags, belts and scarves')
    db.session.add_all([women, men, accessories])
    db.session.flush()

    sizes = {'sizes': ['S', 'M', 'L'], 'colors': [{'name': 'Black', 'value': '#000000'},
                                                  {'name': 'Ivory', 'value': '#f8f4e8'}]}
    samples = [
        Product(sku='ATL-DR-001', name='Linen Midi Dress', slug='linen-midi-dress', price=189900,
                status='active', category_id=women.id, featured=True, variants=sizes),
        Product(sku='ATL-SH-001', name='Oxford Cotton Shirt', slug='oxford-cotton-shirt', price=129900,
                status='active', category_id=men.id, featured=True, variants=sizes),
        Product(sku='ATL-AC-001', name='Leather Tote Bag', slug='leather-tote-bag', price=249900,
                status='active', category_id=accessories.id, variants={'sizes': [], 'colors': []}),
    ]
    db.session.add_all(samples)
    db.session.commit()


def create_app(test_config=None):
    app = Flask(__name__)
    load_config(app)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))

    uri = app.config['SQLALCHEMY_DATABASE_URI']
    if uri.startswith('postgresql') and 'localhost' not in uri and '127.0.0.1' not in uri:
        app.config['SQLALCHEMY_ENGINE_OPTIONS'] = dict(app.config['SQLALCHEMY_ENGINE_OPTIONS'],
                                                       connect_args={'sslmode': 'require'})

    db.init_app(app)
    login_manager.init_app(app)

    register_error_handlers(app)
    for blueprint in (shop_bp, cart_bp, checkout_bp, webhooks_bp, auth_bp, admin_bp):
        app.register_blueprint(blueprint)

    # setup database and default data
    with app.app_context():
        db.create_all()
        seed_admin(app)
        if app.config['SEED_SAMPLE_DATA']:
            seed_catalog()

    return app


if __name__ == '__main__':
    create_app().run(debug=True)
