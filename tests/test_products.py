"""Tests for the product catalog and stock counters."""

from __future__ import annotations

from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from database import get_collection
from errors import DuplicateError, InsufficientStockError, NotFoundError
from store import products as product_store
from store.products import _raise_duplicate, derive_fields, is_in_stock, make_sku, slugify

PRODUCT_BODY = {
    "title": "Galaxy Tab S9",
    "description": "An 11 inch Android tablet with stylus support.",
    "price": 799.0,
    "category": "tablets",
    "brand": "Samsung",
    "stock": 5,
}


class TestDerivation:
    """Tests for slug, SKU and original price derivation."""

    def test_slugify(self) -> None:
        assert slugify("  iPhone 15 Pro (256GB)!  ") == "iphone-15-pro-256gb"
        assert slugify("Already-a-slug") == "already-a-slug"

    def test_sku_is_deterministic(self) -> None:
        assert make_sku("Samsung", "Galaxy Tab S9") == make_sku("Samsung", "Galaxy Tab S9")
        assert make_sku("Samsung", "Galaxy Tab S9").startswith("SAMSUNG-")
        assert make_sku("Samsung", "Galaxy Tab S9") != make_sku("Samsung", "Galaxy Tab S10")

    def test_explicit_sku_kept(self) -> None:
        assert derive_fields({**PRODUCT_BODY, "sku": "TAB-1"})["sku"] == "TAB-1"

    def test_original_price_from_discount(self) -> None:
        out = derive_fields({**PRODUCT_BODY, "price": 80.0, "discount": 20})

        assert out["original_price"] == 100.0

    def test_is_in_stock(self) -> None:
        assert is_in_stock({"stock": 2, "is_active": True}, 2)
        assert not is_in_stock({"stock": 2, "is_active": True}, 3)
        assert not is_in_stock({"stock": 2, "is_active": False})

    @pytest.mark.parametrize(
        ("key_pattern", "message"),
        [
            ({"slug": 1}, "Product with this slug already exists"),
            ({"sku": 1}, "Product with this SKU already exists"),
        ],
    )
    def test_duplicate_message_follows_index(self, key_pattern: dict[str, int], message: str) -> None:
        """Test the violated index picks the message, not the offending value."""
        exc = DuplicateKeyError(
            "E11000 duplicate key error dup key: { sku: \"slug-holder\" }",
            11000,
            {"keyPattern": key_pattern},
        )

        with pytest.raises(DuplicateError, match=message):
            _raise_duplicate(exc)


class TestReduceStock:
    """Tests for the conditional stock decrement."""

    def test_success(self, make_product: Callable[..., dict[str, Any]]) -> None:
        product = make_product(stock=10)

        updated = product_store.reduce_stock(product["_id"], 3)

        assert updated["stock"] == 7
        assert updated["sales_count"] == 3

    def test_exact_stock(self, make_product: Callable[..., dict[str, Any]]) -> None:
        product = make_product(stock=2)

        assert product_store.reduce_stock(product["_id"], 2)["stock"] == 0

    def test_insufficient_leaves_state(self, make_product: Callable[..., dict[str, Any]]) -> None:
        product = make_product(stock=2)

        with pytest.raises(InsufficientStockError) as exc_info:
            product_store.reduce_stock(product["_id"], 3)

        assert exc_info.value.available == 2
        doc = get_collection("product").find_one({"_id": product["_id"]})
        assert doc["stock"] == 2
        assert doc["sales_count"] == 0

    def test_last_unit_sold_once(self, make_product: Callable[..., dict[str, Any]]) -> None:
        """Test two quantity-1 purchases of the last unit: exactly one wins."""
        product = make_product(stock=1)
        outcomes = []
        for _ in range(2):
            try:
                product_store.reduce_stock(product["_id"], 1)
                outcomes.append("ok")
            except InsufficientStockError:
                outcomes.append("insufficient")

        assert sorted(outcomes) == ["insufficient", "ok"]
        assert get_collection("product").find_one({"_id": product["_id"]})["stock"] == 0

    def test_inactive_product(self, make_product: Callable[..., dict[str, Any]]) -> None:
        product = make_product(stock=5)
        product_store.deactivate_product(product["_id"])

        with pytest.raises(NotFoundError):
            product_store.reduce_stock(product["_id"], 1)

    def test_restock(self, make_product: Callable[..., dict[str, Any]]) -> None:
        product = make_product(stock=5)
        product_store.reduce_stock(product["_id"], 2)

        product_store.restock(product["_id"], 2)

        doc = get_collection("product").find_one({"_id": product["_id"]})
        assert doc["stock"] == 5
        assert doc["sales_count"] == 0


class TestAdminEndpoints:
    def test_create_requires_admin(self, client: TestClient, user: dict[str, Any]) -> None:
        res = client.post("/api/products", json=PRODUCT_BODY, headers=user["headers"])

        assert res.status_code == 403
        assert res.json()["message"] == "Admin access required"

    def test_create_requires_token(self, client: TestClient) -> None:
        res = client.post("/api/products", json=PRODUCT_BODY)

        assert res.status_code == 401

    def test_create(self, client: TestClient, admin: dict[str, Any]) -> None:
        res = client.post("/api/products", json=PRODUCT_BODY, headers=admin["headers"])

        assert res.status_code == 201
        product = res.json()["product"]
        assert product["slug"] == "galaxy-tab-s9"
        assert product["sku"] == make_sku("Samsung", "Galaxy Tab S9")
        assert product["ratings"] == {"average": 0.0, "count": 0}
        assert product["is_active"] is True

    def test_create_duplicate(self, client: TestClient, admin: dict[str, Any]) -> None:
        client.post("/api/products", json=PRODUCT_BODY, headers=admin["headers"])

        res = client.post("/api/products", json=PRODUCT_BODY, headers=admin["headers"])

        assert res.status_code == 400
        assert "already exists" in res.json()["message"]

    def test_create_validation(self, client: TestClient, admin: dict[str, Any]) -> None:
        res = client.post(
            "/api/products",
            json={**PRODUCT_BODY, "category": "toasters", "price": -1},
            headers=admin["headers"],
        )

        assert res.status_code == 400
        fields = {e["field"] for e in res.json()["errors"]}
        assert {"category", "price"} <= fields

    def test_update_reslugs(self, client: TestClient, admin: dict[str, Any]) -> None:
        created = client.post("/api/products", json=PRODUCT_BODY, headers=admin["headers"]).json()["product"]

        res = client.put(
            f"/api/products/{created['id']}",
            json={**PRODUCT_BODY, "title": "Galaxy Tab S9 FE", "price": 499.0},
            headers=admin["headers"],
        )

        assert res.status_code == 200
        product = res.json()["product"]
        assert product["slug"] == "galaxy-tab-s9-fe"
        assert product["price"] == 499.0
        assert product["sku"] == created["sku"]

    def test_update_unknown(self, client: TestClient, admin: dict[str, Any]) -> None:
        res = client.put("/api/products/ffffffffffffffffffffffff", json=PRODUCT_BODY, headers=admin["headers"])

        assert res.status_code == 404

    def test_soft_delete(self, client: TestClient, admin: dict[str, Any]) -> None:
        created = client.post("/api/products", json=PRODUCT_BODY, headers=admin["headers"]).json()["product"]

        res = client.delete(f"/api/products/{created['id']}", headers=admin["headers"])

        assert res.status_code == 200
        assert get_collection("product").count_documents({}) == 1
        assert client.get(f"/api/products/{created['id']}").status_code == 404


class TestListing:
    @pytest.fixture
    def catalog(self, make_product: Callable[..., dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            make_product(title="Budget Phone", price=99.0, brand="Acme", stock=0),
            make_product(title="Mid Phone", price=399.0, brand="Acme", is_featured=True, tags=["5g"]),
            make_product(title="Gaming Laptop", price=1999.0, brand="Razer", category="laptops"),
            make_product(title="Old Phone", price=49.0, brand="Nokia", is_active=False),
        ]

    def test_only_active(self, client: TestClient, catalog: list[dict[str, Any]]) -> None:
        body = client.get("/api/products").json()

        assert body["pagination"]["total"] == 3
        assert {p["title"] for p in body["products"]} == {"Budget Phone", "Mid Phone", "Gaming Laptop"}
        assert body["filters"]["brands"] == ["Acme", "Razer"]

    def test_price_sort_and_range(self, client: TestClient, catalog: list[dict[str, Any]]) -> None:
        body = client.get("/api/products?sort=price-desc&minPrice=50&maxPrice=1000").json()

        assert [p["title"] for p in body["products"]] == ["Mid Phone", "Budget Phone"]

    def test_filters(self, client: TestClient, catalog: list[dict[str, Any]]) -> None:
        assert client.get("/api/products?category=laptops").json()["pagination"]["total"] == 1
        assert client.get("/api/products?brand=acme").json()["pagination"]["total"] == 2
        assert client.get("/api/products?inStock=true").json()["pagination"]["total"] == 2
        assert client.get("/api/products?featured=true").json()["products"][0]["title"] == "Mid Phone"
        assert client.get("/api/products?search=gaming").json()["products"][0]["title"] == "Gaming Laptop"
        assert client.get("/api/products?search=5G").json()["products"][0]["title"] == "Mid Phone"

    def test_pagination(self, client: TestClient, catalog: list[dict[str, Any]]) -> None:
        body = client.get("/api/products?page=2&limit=2&sort=price-asc").json()

        assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
        assert [p["title"] for p in body["products"]] == ["Gaming Laptop"]

    def test_invalid_query(self, client: TestClient) -> None:
        res = client.get("/api/products?sort=cheapest&limit=500")

        assert res.status_code == 400
        body = res.json()
        assert body["message"] == "Invalid query parameters"
        assert {e["field"] for e in body["errors"]} == {"sort", "limit"}

    def test_featured(self, client: TestClient, catalog: list[dict[str, Any]]) -> None:
        body = client.get("/api/products/featured").json()

        assert [p["title"] for p in body["products"]] == ["Mid Phone"]

    def test_meta(self, client: TestClient, catalog: list[dict[str, Any]]) -> None:
        categories = client.get("/api/products/meta/categories").json()["categories"]
        brands = client.get("/api/products/meta/brands").json()["brands"]

        assert categories == [{"name": "smartphones", "count": 2}, {"name": "laptops", "count": 1}]
        assert brands[0] == {"name": "Acme", "count": 2}


class TestDetail:
    def test_by_id_and_slug(self, client: TestClient, make_product: Callable[..., dict[str, Any]]) -> None:
        product = make_product(title="Pixel 8")
        make_product(title="Pixel 7")

        by_id = client.get(f"/api/products/{product['_id']}").json()
        by_slug = client.get("/api/products/pixel-8").json()

        assert by_id["product"]["id"] == by_slug["product"]["id"] == str(product["_id"])
        assert [p["title"] for p in by_id["related_products"]] == ["Pixel 7"]

    def test_view_count(self, client: TestClient, make_product: Callable[..., dict[str, Any]]) -> None:
        product = make_product()

        client.get(f"/api/products/{product['_id']}")
        res = client.get(f"/api/products/{product['_id']}")

        assert res.json()["product"]["view_count"] == 2

    def test_unknown(self, client: TestClient) -> None:
        res = client.get("/api/products/no-such-thing")

        assert res.status_code == 404
        assert res.json() == {"message": "Product not found"}
