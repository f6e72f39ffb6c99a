# cart.py - shopping cart value and the saved cart api for signed-in customers
# a line is identified by product id + size + color

from flask import Blueprint, jsonify

from auth import current_customer, json_payload
from models import db, SavedCart, utcnow

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


def _to_int(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def normalize_line(raw):
    """Flatten a cart line into the stored shape.

    Accepts flat lines ``{product_id, quantity, size, color, ...}`` and the
    storefront's nested ``{product: {...}, variant: {size, color: {name}}}``.
    Returns None when the product id is not an integer.
    """
    if not isinstance(raw, dict):
        return None

    product = raw.get('product')
    if isinstance(product, dict):
        variant = raw.get('variant')
        if not isinstance(variant, dict):
            variant = {}
        color = variant.get('color')
        line = {
            'product_id': product.get('id'),
            'name': product.get('name'),
            'sku': product.get('sku'),
            'price': product.get('price'),
            'image': product.get('main_image') or product.get('image'),
            'size': variant.get('size'),
            'color': color.get('name') if isinstance(color, dict) else color,
        }
    else:
        line = {
            'product_id': raw.get('product_id', raw.get('id')),
            'name': raw.get('name'),
            'sku': raw.get('sku'),
            'price': raw.get('price'),
            'image': raw.get('image'),
            'size': raw.get('size'),
            'color': raw.get('color'),
        }

    line['product_id'] = _to_int(line['product_id'])
    if line['product_id'] is None:
        return None
    line['price'] = _to_int(line['price']) or 0
    quantity = _to_int(raw.get('quantity', 1))
    line['quantity'] = quantity if quantity is not None else 0
    return line


class Cart:
    def __init__(self, lines=None):
        self.lines = []
        for raw in lines or []:
            line = normalize_line(raw)
            if line and line['quantity'] > 0:
                self.add_item(line)

    def _find(self, product_id, size=None, color=None):
        for line in self.lines:
            if line['product_id'] == product_id and line['size'] == size and line['color'] == color:
                return line
        return None

    def add_item(self, item, quantity=None):
        line = normalize_line(item)
        if line is None:
            raise ValueError('cart items need an integer product id')
        if quantity is not None:
            line['quantity'] = quantity

        existing = self._find(line['product_id'], line['size'], line['color'])
        if existing:
            existing['quantity'] += line['quantity']
        else:
            self.lines.append(line)

    def remove_item(self, product_id, size=None, color=None):
        self.lines = [line for line in self.lines
                      if not (line['product_id'] == product_id and line['size'] == size
                              and line['color'] == color)]

    def update_quantity(self, product_id, quantity, size=None, color=None):
        if quantity < 1:
            self.remove_item(product_id, size, color)
            return
        line = self._find(product_id, size, color)
        if line:
            line['quantity'] = quantity

    def clear(self):
        self.lines = []

    @property
    def subtotal(self):
        return sum(line['price'] * line['quantity'] for line in self.lines)

    @property
    def item_count(self):
        return sum(line['quantity'] for line in self.lines)

    def merge(self, other):
        for line in other.lines:
            self.add_item(line)
        return self

    def to_list(self):
        return [dict(line) for line in self.lines]


def _saved_cart(customer):
    return SavedCart.query.filter_by(customer_id=customer.id).first()


def _store(customer, cart):
    saved = _saved_cart(customer)
    if saved is None:
        saved = SavedCart(customer_id=customer.id)
        db.session.add(saved)
    saved.cart_data = cart.to_list()
    saved.updated_at = utcnow()
    db.session.commit()


@cart_bp.route('', methods=['GET'])
def get_cart():
    customer = current_customer()
    if customer is None:
        return jsonify(items=[])
    saved = _saved_cart(customer)
    cart = Cart(saved.cart_data if saved else [])
    return jsonify(items=cart.to_list(), subtotal=cart.subtotal, item_count=cart.item_count)


@cart_bp.route('', methods=['PUT'])
def save_cart():
    customer = current_customer()
    if customer is None:
        return jsonify(error='Unauthorized'), 401

    payload = json_payload()
    items = payload.get('items')
    if not isinstance(items, list):
        return jsonify(error='items must be a list'), 400

    cart = Cart(items)
    _store(customer, cart)
    return jsonify(success=True, items=cart.to_list())


@cart_bp.route('/merge', methods=['POST'])
def merge_cart():
    customer = current_customer()
    if customer is None:
        return jsonify(error='Unauthorized'), 401

    payload = json_payload()
    items = payload.get('items') or []
    if not isinstance(items, list):
        return jsonify(error='items must be a list'), 400

    saved = _saved_cart(customer)
    cart = Cart(saved.cart_data if saved else []).merge(Cart(items))
    _store(customer, cart)
    return jsonify(items=cart.to_list(), subtotal=cart.subtotal, item_count=cart.item_count)
