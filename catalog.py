import logging
import re
from typing import Any, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError
from pymongo import ReturnDocument

from database import create_document, get_db, get_documents, oid, serialize, utcnow
from schemas import Category as CategorySchema, Product as ProductSchema, Variant as VariantSchema, normalize_images
from security import require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])
seller_router = APIRouter(prefix="/seller/products", tags=["seller"])

RELATED_LIMIT = 7

SORTS = {
    "price-asc": [("price", 1)],
    "price-desc": [("price", -1)],
    "name-asc": [("name", 1)],
}


def parse_id_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    ids = []
    for part in value.split(","):
        part = part.strip()
        if ObjectId.is_valid(part):
            ids.append(part)
    return ids


def valid_images(value: Any, alt: str = ""):
    try:
        return [img.model_dump() for img in normalize_images(value, alt)]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def valid_changes(schema, current: dict, changes: dict) -> dict:
    """Checks changes merged over the stored document; returns just the changed fields."""
    merged = {name: current[name] for name in schema.model_fields if name in current}
    merged.update(changes)
    try:
        checked = schema(**merged).model_dump()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))
    return {name: checked[name] for name in changes}


# Public catalog
@router.get("/products")
def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: Optional[str] = None,
    page: int = 1,
    limit: int = 12,
):
    db = get_db()
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    filt = {"is_active": True}
    if search and search.strip():
        filt["name"] = {"$regex": re.escape(search.strip()), "$options": "i"}
    category_ids = parse_id_list(category)
    if category_ids:
        filt["category_id"] = {"$in": category_ids}
    brand_ids = parse_id_list(brand)
    if brand_ids:
        filt["brand_id"] = {"$in": brand_ids}
    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price

    total = db["product"].count_documents(filt)
    docs = db["product"].find(filt).sort(SORTS.get(sort, [("created_at", -1)])).skip((page - 1) * limit).limit(limit)
    pages = (total + limit - 1) // limit
    return {
        "products": [serialize(d) for d in docs],
        "pagination": {"current": page, "pages": pages, "total": total},
    }


@router.get("/products/featured")
def featured_products():
    docs = get_db()["product"].find({"is_active": True, "is_featured": True}).sort("created_at", -1).limit(8)
    return [serialize(d) for d in docs]


@router.get("/products/filters")
def product_filters():
    db = get_db()
    categories = db["category"].find({}, {"name": 1, "slug": 1})
    brands = db["brand"].find({}, {"name": 1})
    return {"categories": [serialize(c) for c in categories], "brands": [serialize(b) for b in brands]}


@router.get("/products/related/{product_id}")
def related_products(product_id: str):
    db = get_db()
    current = db["product"].find_one({"_id": oid(product_id)})
    if not current:
        raise HTTPException(status_code=404, detail="Product not found")

    related = []
    excluded = [current["_id"]]
    if current.get("brand_id"):
        related = list(db["product"].find({
            "_id": {"$nin": excluded},
            "is_active": True,
            "brand_id": current["brand_id"],
        }).sort("created_at", -1).limit(RELATED_LIMIT))
        excluded.extend(p["_id"] for p in related)

    if len(related) < RELATED_LIMIT and current.get("category_id"):
        related += list(db["product"].find({
            "_id": {"$nin": excluded},
            "is_active": True,
            "category_id": current["category_id"],
        }).sort("created_at", -1).limit(RELATED_LIMIT - len(related)))

    return {"related_products": [serialize(p) for p in related]}


@router.get("/products/{product_id}")
def get_product(product_id: str):
    db = get_db()
    _id = oid(product_id)
    product = db["product"].find_one_and_update({"_id": _id}, {"$inc": {"views": 1}}, return_document=ReturnDocument.AFTER)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    variants = db["variant"].find({"product_id": product_id})
    return {"product": serialize(product), "variants": [serialize(v) for v in variants]}


# Categories and brands
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: str = ""
    image: str = ""
    parent_id: Optional[str] = None
    sort_order: int = 0


@router.get("/categories")
def list_categories():
    docs = [serialize(c) for c in get_db()["category"].find({"is_active": True}).sort("sort_order", 1)]
    children = {}
    for c in docs:
        if c.get("parent_id"):
            children.setdefault(c["parent_id"], []).append(c)
    roots = [c for c in docs if not c.get("parent_id")]
    for c in roots:
        c["children"] = children.get(c["id"], [])
    return roots


@router.post("/categories", status_code=201)
def create_category(payload: CategoryCreate, _: dict = Depends(require_role("admin"))):
    db = get_db()
    if payload.parent_id and not db["category"].find_one({"_id": oid(payload.parent_id)}):
        raise HTTPException(status_code=404, detail="Parent category not found")
    category = CategorySchema(**payload.model_dump())
    if db["category"].find_one({"$or": [{"name": category.name}, {"slug": category.slug}]}):
        raise HTTPException(status_code=400, detail="Category already exists")
    category_id = create_document("category", category)
    return serialize(db["category"].find_one({"_id": ObjectId(category_id)}))


@router.get("/brands")
def list_brands():
    return [serialize(b) for b in get_documents("brand")]


@router.get("/brands/{brand_id}")
def get_brand(brand_id: str):
    brand = get_db()["brand"].find_one({"_id": oid(brand_id)})
    if not brand:
        raise HTTPException(status_code=404, detail="Brand not found")
    return serialize(brand)


# Seller product management
class ProductCreate(BaseModel):
    name: str
    description: str
    price: float
    original_price: Optional[float] = None
    images: Any = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    sku: Optional[str] = None
    stock: int = 0
    tags: List[str] = []
    is_featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    images: Any = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    stock: Optional[int] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


def owned_product(db, product_id: str, seller: dict):
    product = db["product"].find_one({"_id": oid(product_id), "seller_id": str(seller["_id"])})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@seller_router.get("")
def my_products(seller: dict = Depends(require_role("seller"))):
    docs = [serialize(p) for p in get_db()["product"].find({"seller_id": str(seller["_id"])}).sort("created_at", -1)]
    return {"success": True, "count": len(docs), "products": docs}


@seller_router.post("", status_code=201)
def create_product(payload: ProductCreate, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    if payload.sku and db["product"].find_one({"sku": payload.sku}):
        raise HTTPException(status_code=400, detail="SKU already exists")
    data = payload.model_dump()
    data["images"] = valid_images(data["images"], payload.name)
    try:
        product = ProductSchema(**data, seller_id=str(seller["_id"]), brand_id=seller.get("brand_id"))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))
    product_id = create_document("product", product)
    logger.info("Seller %s created product %s", seller["_id"], product_id)
    return {"success": True, "product": serialize(db["product"].find_one({"_id": ObjectId(product_id)}))}


@seller_router.get("/{product_id}")
def my_product(product_id: str, seller: dict = Depends(require_role("seller"))):
    return {"product": serialize(owned_product(get_db(), product_id, seller))}


@seller_router.put("/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    product = owned_product(db, product_id, seller)
    update = payload.model_dump(exclude_unset=True)
    if "images" in update:
        update["images"] = valid_images(update["images"], update.get("name") or product.get("name", ""))
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")
    update = valid_changes(ProductSchema, product, update)
    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return {"message": "Product updated", "product": serialize(db["product"].find_one({"_id": product["_id"]}))}


@seller_router.delete("/{product_id}")
def delete_product(product_id: str, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    product = owned_product(db, product_id, seller)
    db["product"].delete_one({"_id": product["_id"]})
    db["variant"].delete_many({"product_id": product_id})
    return {"success": True, "message": "Product deleted"}


# Variants
class VariantCreate(BaseModel):
    product_id: str
    sku: str
    size: str
    color: str
    price: float
    compare_price: Optional[float] = None
    stock: int


class VariantUpdate(BaseModel):
    sku: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    price: Optional[float] = None
    compare_price: Optional[float] = None
    stock: Optional[int] = None


def owned_variant(db, variant_id: str, seller: dict):
    variant = db["variant"].find_one({"_id": oid(variant_id)})
    if not variant:
        raise HTTPException(status_code=404, detail="Variant not found")
    owned_product(db, variant["product_id"], seller)
    return variant


@router.get("/variants/{product_id}")
def list_variants(product_id: str):
    return {"success": True, "variants": [serialize(v) for v in get_db()["variant"].find({"product_id": product_id})]}


@router.post("/variants", status_code=201)
def create_variant(payload: VariantCreate, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    owned_product(db, payload.product_id, seller)
    try:
        variant = VariantSchema(**payload.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))
    variant_id = create_document("variant", variant)
    return {"success": True, "variant": serialize(db["variant"].find_one({"_id": ObjectId(variant_id)}))}


@router.put("/variants/{variant_id}")
def update_variant(variant_id: str, payload: VariantUpdate, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    variant = owned_variant(db, variant_id, seller)
    update = payload.model_dump(exclude_unset=True)
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")
    update = valid_changes(VariantSchema, variant, update)
    update["updated_at"] = utcnow()
    db["variant"].update_one({"_id": variant["_id"]}, {"$set": update})
    return {"success": True, "variant": serialize(db["variant"].find_one({"_id": variant["_id"]}))}


@router.delete("/variants/{variant_id}")
def delete_variant(variant_id: str, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    variant = owned_variant(db, variant_id, seller)
    db["variant"].delete_one({"_id": variant["_id"]})
    return {"success": True, "message": "Variant deleted"}
