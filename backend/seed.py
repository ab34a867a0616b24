from __future__ import annotations
import logging
from motor.motor_asyncio import AsyncIOMotorDatabase

from database import PRODUCTS, create_document
from schemas import ProductCreate, ProductLifecycle

logger = logging.getLogger(__name__)

# Demo catalog
SEED_PRODUCTS: list[dict] = [
    {"title": "Wireless Bluetooth Headphones", "description": "High-quality wireless headphones with noise cancellation and 30-hour battery life.", "price": 299.99, "image": "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=300&h=300&fit=crop", "category": "Electronics", "stock": 25, "sku": "WBH-001", "tags": ["wireless", "bluetooth", "headphones", "audio"]},
    {"title": "Organic Cotton T-Shirt", "description": "Comfortable and sustainable organic cotton t-shirt. Available in multiple colors and sizes.", "price": 29.99, "image": "https://images.unsplash.com/photo-1521572163474-6864f9cf17ab?w=300&h=300&fit=crop", "category": "Clothing", "stock": 100, "sku": "OCT-001", "tags": ["organic", "cotton", "sustainable", "basic"]},
    {"title": "Smart Fitness Watch", "description": "Advanced fitness tracking with heart rate monitor, GPS, and smartphone connectivity.", "price": 199.99, "image": "https://images.unsplash.com/photo-1434493789847-2f02dc6ca35d?w=300&h=300&fit=crop", "category": "Electronics", "stock": 15, "sku": "SFW-001", "tags": ["fitness", "smartwatch", "health", "tracking"]},
    {"title": "Ceramic Coffee Mug Set", "description": "Beautiful handcrafted ceramic mugs, perfect for your morning coffee. Set of 4 mugs.", "price": 49.99, "image": "https://images.unsplash.com/photo-1514228742587-6b1558fcf93a?w=300&h=300&fit=crop", "category": "Home & Kitchen", "stock": 50, "sku": "CCM-001", "tags": ["ceramic", "coffee", "handcrafted", "set"]},
    {"title": "Leather Laptop Bag", "description": "Premium leather laptop bag with multiple compartments. Fits laptops up to 15 inches.", "price": 149.99, "image": "https://images.unsplash.com/photo-1553062407-98eeb64c6a62?w=300&h=300&fit=crop", "category": "Accessories", "stock": 30, "sku": "LLB-001", "tags": ["leather", "laptop", "professional", "bag"]},
    {"title": "Yoga Mat Premium", "description": "Non-slip premium yoga mat made from eco-friendly materials.", "price": 79.99, "image": "https://images.unsplash.com/photo-1544367567-0f2fcb009e0b?w=300&h=300&fit=crop", "category": "Sports & Fitness", "stock": 40, "sku": "YMP-001", "tags": ["yoga", "fitness", "eco-friendly", "exercise"]},
    {"title": "Stainless Steel Water Bottle", "description": "Insulated stainless steel water bottle that keeps drinks cold for 24 hours or hot for 12 hours.", "price": 34.99, "image": "https://images.unsplash.com/photo-1602143407151-7111542de6e8?w=300&h=300&fit=crop", "category": "Sports & Fitness", "stock": 75, "sku": "SSW-001", "tags": ["water bottle", "insulated", "hydration"]},
    {"title": "Gaming Mouse RGB", "description": "High-precision gaming mouse with customizable RGB lighting and programmable buttons.", "price": 89.99, "image": "https://images.unsplash.com/photo-1527814050087-3793815479db?w=300&h=300&fit=crop", "category": "Electronics", "stock": 8, "sku": "GMR-001", "tags": ["gaming", "mouse", "rgb"]},
]


async def seed_products(db: AsyncIOMotorDatabase) -> int:
    # Insert only if products collection is empty
    if await db[PRODUCTS].count_documents({}) > 0:
        return 0
    for p in SEED_PRODUCTS:
        data = ProductCreate(**p).model_dump(exclude_none=True)
        await create_document(db, PRODUCTS, {**data, "lifecycle": ProductLifecycle.ACTIVE.value})
    logger.info("Seeded %d products", len(SEED_PRODUCTS))
    return len(SEED_PRODUCTS)
