# this file defines the database structure for the storefront
# it uses 7 tables to handle the catalog, customers, orders, carts and admin staff
# all money columns hold integer centavos (MXN) to avoid float rounding

import re
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

CATALOG_STATUSES = ('active', 'draft', 'archived')
ORDER_STATUSES = ('pending', 'paid', 'confirmed', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded')
ADMIN_ROLES = ('admin', 'manager')
METHOD_LABEL_RE = re.compile(r'\bmethod: ([^|]+)')


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    return value.isoformat() if value else None


def cents_to_pesos(cents):
    # gateways that take decimal amounts (clip, mercado pago)
    return round(cents / 100, 2)


class PasswordMixin:
    password_hash = db.Column(db.String(255))  # null means no local login
    password_updated_at = db.Column(db.DateTime(timezone=True))

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)
        self.password_updated_at = utcnow()

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)


# table 1: categories - groups products on the shop pages
class Category(db.Model):
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), unique=True, nullable=False)
    description = db.Column(db.Text)
    image = db.Column(db.String(500))
    status = db.Column(db.String(20), nullable=False, default='active')
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    products = db.relationship('Product', backref='category', lazy='dynamic')

    def __repr__(self):
        return f'<Category {self.slug}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'description': self.description,
            'image': self.image,
            'status': self.status,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }


# table 2: products - item details, price and sellable variants
class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), unique=True, nullable=False)
    name = db.Column(db.String(250), nullable=False)
    slug = db.Column(db.String(270), unique=True, nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Integer, nullable=False)  # centavos
    status = db.Column(db.String(20), nullable=False, default='draft')
    category_id = db.Column(db.Integer, db.ForeignKey('categories.id'))
    main_image = db.Column(db.String(500))
    gallery = db.Column(db.JSON)  # list of image urls
    featured = db.Column(db.Boolean, nullable=False, default=False)
    variants = db.Column(db.JSON)  # {"sizes": [...], "colors": [{"name", "value"}]}
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<Product {self.name}>'

    def to_dict(self, with_category=False):
        data = {
            'id': self.id,
            'sku': self.sku,
            'name': self.name,
            'slug': self.slug,
            'description': self.description,
            'price': self.price,
            'status': self.status,
            'category_id': self.category_id,
            'main_image': self.main_image,
            'gallery': self.gallery or [],
            'featured': self.featured,
            'variants': self.variants,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if with_category:
            data['category'] = self.category.to_dict() if self.category else None
        return data


# table 3: customers - created on first checkout or on signup
class Customer(PasswordMixin, UserMixin, db.Model):
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200))
    phone = db.Column(db.String(40))
    address = db.Column(db.String(500))
    city = db.Column(db.String(120))
    state = db.Column(db.String(120))
    neighborhood = db.Column(db.String(160))
    country = db.Column(db.String(80))
    postal_code = db.Column(db.String(20))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    orders = db.relationship('Order', backref='customer', lazy='dynamic')

    role = 'customer'

    def get_id(self):
        return f'customer:{self.id}'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'phone': self.phone,
            'address': self.address,
            'city': self.city,
            'state': self.state,
            'neighborhood': self.neighborhood,
            'country': self.country,
            'postal_code': self.postal_code,
            'created_at': isoformat(self.created_at),
        }


# table 4: orders - one row per checkout, totals are copied at purchase time
class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), unique=True, nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'))
    customer_email = db.Column(db.String(255), nullable=False, index=True)
    customer_name = db.Column(db.String(200))
    status = db.Column(db.String(20), nullable=False, default='pending')
    subtotal = db.Column(db.Integer, nullable=False)
    shipping = db.Column(db.Integer, nullable=False, default=0)
    tax = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False)  # subtotal + shipping + tax
    shipping_address = db.Column(db.JSON)  # snapshot of the checkout form
    notes = db.Column(db.Text)  # provider payment ids live here
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = db.relationship('OrderItem', backref='order', lazy='select',
                            order_by='OrderItem.id', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Order {self.order_number}>'

    @property
    def payment_status(self):
        if self.status in ('paid', 'confirmed', 'processing', 'shipped', 'delivered'):
            return 'paid'
        if self.status == 'refunded':
            return 'refunded'
        if self.status == 'cancelled':
            return 'failed'
        return 'pending'

    @property
    def payment_method(self):
        # inferred from the notes written by the gateways, the method label wins
        # over the rest of the note (a spei bank name can read like a cash store)
        notes = (self.notes or '').lower()
        label = METHOD_LABEL_RE.search(notes)
        text = label.group(1) if label else notes
        if any(k in text for k in ('oxxo', 'cash', 'paycash', 'bancomer')):
            return 'cash'
        if 'spei' in text or 'transfer' in text:
            return 'transfer'
        if 'card' in text or 'charge:' in text or 'clip payment id' in text:
            return 'card'
        return None

    def to_dict(self, with_items=True):
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'customer_id': self.customer_id,
            'customer_email': self.customer_email,
            'customer_name': self.customer_name,
            'status': self.status,
            'payment_status': self.payment_status,
            'payment_method': self.payment_method,
            'subtotal': self.subtotal,
            'shipping': self.shipping,
            'tax': self.tax,
            'total': self.total,
            'shipping_address': self.shipping_address,
            'notes': self.notes,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if with_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data


# table 5: order items - denormalized product snapshot, never edited afterwards
class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='SET NULL'))
    product_name = db.Column(db.String(250), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)
    product_image = db.Column(db.String(500))
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Integer, nullable=False)
    variant_size = db.Column(db.String(40))
    variant_color = db.Column(db.String(60))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    product = db.relationship('Product')

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'product_sku': self.product_sku,
            'product_image': self.product_image,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total_price': self.total_price,
            'variant_size': self.variant_size,
            'variant_color': self.variant_color,
        }


# table 6: admin users - staff accounts for the back office
class AdminUser(PasswordMixin, UserMixin, db.Model):
    __tablename__ = 'admin_users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='manager')
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def get_id(self):
        return f'admin:{self.id}'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'created_at': isoformat(self.created_at),
        }


# table 7: saved carts - keeps a signed-in customer's cart between devices
class SavedCart(db.Model):
    __tablename__ = 'saved_carts'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), unique=True, nullable=False)
    cart_data = db.Column(db.JSON, nullable=False, default=list)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)
