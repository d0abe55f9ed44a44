# storefront/catalog.py
from typing import List, Optional

from .schemas import Product

# 🛍️ Витрина: фиксированный каталог, цены в USD (оплата в USDC 1:1)
PRODUCTS: List[Product] = [
    Product(
        id="coffee-beans",
        name="Colombian Coffee Beans",
        description="Premium single-origin Arabica beans from Huila region. 500g bag.",
        price=24.99,
        image="/products/coffee.svg",
    ),
    Product(
        id="emerald-pendant",
        name="Emerald Pendant",
        description="Handcrafted silver pendant with genuine Colombian emerald.",
        price=149.99,
        image="/products/emerald.svg",
    ),
    Product(
        id="panela-pack",
        name="Organic Panela Pack",
        description="Traditional unrefined cane sugar. Pack of 6 blocks (3kg total).",
        price=18.50,
        image="/products/panela.svg",
    ),
    Product(
        id="aguardiente",
        name="Aguardiente Antioqueño",
        description="Classic Colombian anise-flavored spirit. 750ml bottle.",
        price=32.00,
        image="/products/aguardiente.svg",
    ),
]


def get_product(product_id: str) -> Optional[Product]:
    return next((p for p in PRODUCTS if p.id == product_id), None)
