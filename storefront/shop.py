# storefront/shop.py
from typing import List

from fastapi import APIRouter, HTTPException

from .catalog import PRODUCTS, get_product as find_product
from .schemas import Product

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("", response_model=List[Product])
async def list_products():
    return PRODUCTS


@router.get("/{product_id}", response_model=Product)
async def get_product(product_id: str):
    product = find_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
