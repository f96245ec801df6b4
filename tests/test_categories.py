"""
Tests for category listing and admin category management.
"""
from sqlalchemy import select

from models import Category


class TestReadCategories:
    def test_list_counts_active_products_only(self, client, register, make_category, make_product):
        user, _ = register()
        electronics = make_category("Electronics")
        make_category("Books")
        make_product(user["id"], category_id=electronics)
        make_product(user["id"], category_id=electronics, is_active=False)

        categories = client.get("/api/categories").json()["categories"]

        assert [c["name"] for c in categories] == ["Books", "Electronics"]
        assert {c["name"]: c["product_count"] for c in categories} == {"Books": 0, "Electronics": 1}

    def test_get_one(self, client, make_category):
        category_id = make_category("Vehicles", icon="car")
        body = client.get(f"/api/categories/{category_id}").json()
        assert body["category"]["icon"] == "car"
        assert body["category"]["product_count"] == 0

    def test_missing_category(self, client):
        response = client.get("/api/categories/999")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Category not found"}


class TestManageCategories:
    def test_admin_creates_category(self, client, admin):
        _, headers = admin
        response = client.post("/api/categories", json={"name": "Fashion", "icon": "shirt"}, headers=headers)

        assert response.status_code == 201
        assert response.json()["category"]["name"] == "Fashion"

    def test_duplicate_name_is_rejected(self, client, admin, make_category):
        _, headers = admin
        make_category("Fashion")
        response = client.post("/api/categories", json={"name": "Fashion"}, headers=headers)
        assert response.status_code == 400

    def test_regular_user_is_forbidden(self, client, register, make_category):
        _, headers = register()
        category_id = make_category()

        assert client.post("/api/categories", json={"name": "X"}, headers=headers).status_code == 403
        assert client.put(f"/api/categories/{category_id}", json={"name": "Y"}, headers=headers).status_code == 403
        assert client.delete(f"/api/categories/{category_id}", headers=headers).status_code == 403

    def test_update_replaces_icon_and_description(self, client, admin, make_category):
        _, headers = admin
        category_id = make_category("Books", icon="book", description="Novels")

        category = client.put(
            f"/api/categories/{category_id}", json={"name": "Books & Media"}, headers=headers
        ).json()["category"]

        assert category["name"] == "Books & Media"
        assert category["icon"] is None
        assert category["description"] is None

    def test_delete_blocked_by_any_product(self, client, database, admin, make_category, make_product):
        admin_user, headers = admin
        category_id = make_category()
        make_product(admin_user["id"], category_id=category_id, is_active=False)

        response = client.delete(f"/api/categories/{category_id}", headers=headers)

        assert response.status_code == 400
        assert response.json()["message"] == "Cannot delete category with existing products"
        with database.session() as s:
            assert s.get(Category, category_id) is not None

    def test_delete_empty_category(self, client, database, admin, make_category):
        _, headers = admin
        category_id = make_category()

        assert client.delete(f"/api/categories/{category_id}", headers=headers).status_code == 200
        with database.session() as s:
            assert s.execute(select(Category).where(Category.id == category_id)).first() is None
