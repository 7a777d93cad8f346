"""
Tests for the admin back office.
"""
import io
import os

from sqlalchemy import func, select

from storefront.models import CompanySettings, LoyaltyConfig, Order, OrderItem, Product, Promotion, Review, User


def product_form(**overrides):
    data = {
        "name": "Desk Lamp",
        "description": "Warm light",
        "price": "24.90",
        "stock": "5",
        "category": "Home",
        "images": "https://img.test/lamp.png",
        "available_colors": "Black, White, Black",
        "color_images": "White=https://img.test/lamp-white.png\nGreen=https://img.test/green.png",
        "allow_cod": "on",
    }
    data.update(overrides)
    return data


def make_order(db, product=None, status="pending"):
    order = Order(shipping_address={"full_name": "Ana"}, is_guest=True,
                  guest_info={"full_name": "Ana", "email": "ana@example.com", "phone": "1"},
                  payment_method="cash_on_delivery", status=status, payment_status="pending_cod",
                  total_cents=1000)
    if product is not None:
        order.items.append(OrderItem(product_id=product.id, product_name=product.name, quantity=1,
                                     price_at_time_cents=product.price_cents))
    db.add(order)
    db.commit()
    return order


def uploads(app):
    upload_dir = app.config["UPLOAD_DIR"]
    return os.listdir(upload_dir) if os.path.isdir(upload_dir) else []


class TestProducts:
    def test_create(self, admin_client, db):
        resp = admin_client.post("/admin/products/new", data=product_form())
        assert resp.status_code == 302
        p = db.execute(select(Product).where(Product.name == "Desk Lamp")).scalar_one()
        assert p.price_cents == 2490
        assert p.available_colors == ["Black", "White"]
        assert p.color_images == [{"color": "White", "image": "https://img.test/lamp-white.png"}]
        assert p.payment_methods()["cash_on_delivery"] is True
        assert p.payment_methods()["card"] is False

    def test_create_with_uploads(self, admin_client, db, app):
        data = product_form(images="")
        data["image_files"] = (io.BytesIO(b"\x89PNG fake"), "lamp.png")
        data["instructions_file"] = (io.BytesIO(b"%PDF fake"), "manual.pdf")
        resp = admin_client.post("/admin/products/new", data=data, content_type="multipart/form-data")
        assert resp.status_code == 302
        p = db.execute(select(Product)).scalar_one()
        assert p.images[0].startswith("/media/") and p.images[0].endswith("lamp.png")
        assert p.instructions_file.endswith("manual.pdf")
        assert admin_client.get(p.images[0]).data == b"\x89PNG fake"

    def test_rejects_bad_upload(self, admin_client, db):
        data = product_form()
        data["image_files"] = (io.BytesIO(b"MZ"), "virus.exe")
        resp = admin_client.post("/admin/products/new", data=data, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert b"Unsupported file type" in resp.data

    def test_rejected_form_keeps_no_uploads(self, admin_client, app):
        data = product_form(price="abc")
        data["image_files"] = (io.BytesIO(b"\x89PNG fake"), "lamp.png")
        resp = admin_client.post("/admin/products/new", data=data, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert uploads(app) == []

    def test_rejected_instructions_discard_images(self, admin_client, app):
        data = product_form()
        data["image_files"] = (io.BytesIO(b"\x89PNG fake"), "lamp.png")
        data["instructions_file"] = (io.BytesIO(b"MZ"), "setup.exe")
        resp = admin_client.post("/admin/products/new", data=data, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert uploads(app) == []

    def test_validation_errors(self, admin_client, db):
        resp = admin_client.post("/admin/products/new", data=product_form(price="0"))
        assert resp.status_code == 400
        assert b"Price must be" in resp.data
        assert db.execute(select(func.count()).select_from(Product)).scalar_one() == 0

    def test_edit(self, admin_client, db, make_product):
        p = make_product()
        resp = admin_client.post(f"/admin/products/{p.id}/edit", data=product_form(name="Renamed", stock="9"))
        assert resp.status_code == 302
        db.expire_all()
        p = db.get(Product, p.id)
        assert (p.name, p.stock) == ("Renamed", 9)
        assert admin_client.get(f"/admin/products/{p.id}/edit").status_code == 200

    def test_delete_keeps_order_history(self, admin_client, db, make_product):
        p = make_product(name="Gone")
        pid = p.id
        order = make_order(db, p)
        resp = admin_client.post(f"/admin/products/{pid}/delete")
        assert resp.status_code == 302
        db.expire_all()
        assert db.get(Product, pid) is None
        item = db.get(Order, order.id).items[0]
        assert item.product_id is None
        assert item.product_name == "Gone"

    def test_list(self, admin_client, make_product):
        make_product(name="Listed")
        assert b"Listed" in admin_client.get("/admin/products").data


class TestOrders:
    def test_list_and_filter(self, admin_client, db):
        make_order(db, status="pending")
        make_order(db, status="shipped")
        resp = admin_client.get("/admin/orders?status=shipped")
        assert resp.status_code == 200
        assert resp.data.count(b'name="order_ids"') == 1
        assert admin_client.get("/admin/orders?status=bogus").status_code == 400

    def test_detail(self, admin_client, db, make_product):
        order = make_order(db, make_product(name="Kettle"))
        resp = admin_client.get(f"/admin/orders/{order.id}")
        assert b"Kettle" in resp.data
        assert b"ana@example.com" in resp.data
        assert admin_client.get("/admin/orders/999").status_code == 404

    def test_update_status(self, admin_client, db):
        order = make_order(db)
        admin_client.post(f"/admin/orders/{order.id}/status", data={"status": "shipped", "payment_status": "paid"})
        db.expire_all()
        updated = db.get(Order, order.id)
        assert (updated.status, updated.payment_status) == ("shipped", "paid")

    def test_invalid_status_is_rejected(self, admin_client, db):
        order = make_order(db)
        resp = admin_client.post(f"/admin/orders/{order.id}/status", data={"status": "lost"},
                                 follow_redirects=True)
        assert b"Invalid order status" in resp.data
        db.expire_all()
        assert db.get(Order, order.id).status == "pending"

    def test_delete_and_bulk_delete(self, admin_client, db, make_product):
        p = make_product()
        first, second, third = make_order(db, p), make_order(db, p), make_order(db)
        admin_client.post(f"/admin/orders/{first.id}/delete")
        admin_client.post("/admin/orders/delete", data={"order_ids": [str(second.id), str(third.id)]})
        assert db.execute(select(func.count()).select_from(Order)).scalar_one() == 0
        assert db.execute(select(func.count()).select_from(OrderItem)).scalar_one() == 0
        assert admin_client.post("/admin/orders/999/delete").status_code == 404


class TestUsers:
    def test_change_role(self, admin_client, db, make_user):
        u = make_user("staff@example.com")
        admin_client.post(f"/admin/users/{u.id}/role", data={"role": "fulfillment"})
        db.expire_all()
        assert db.get(User, u.id).role == "fulfillment"

    def test_api(self, admin_client, db, make_user):
        u = make_user("api@example.com")
        listing = admin_client.get("/admin/api/users").json["users"]
        assert {x["email"] for x in listing} == {"admin@example.com", "api@example.com"}

        resp = admin_client.put("/admin/api/users", json={"userId": u.id, "newRole": "dropshipping"})
        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "dropshipping"

        assert admin_client.put("/admin/api/users", json={"userId": u.id, "newRole": "king"}).status_code == 400
        assert admin_client.put("/admin/api/users", json={"userId": "abc", "newRole": "admin"}).status_code == 400

    def test_cannot_demote_self(self, admin_client, db):
        me = db.execute(select(User).where(User.email == "admin@example.com")).scalar_one()
        resp = admin_client.put("/admin/api/users", json={"userId": me.id, "newRole": "customer"})
        assert resp.status_code == 400
        db.expire_all()
        assert db.get(User, me.id).role == "admin"


class TestPromotions:
    def test_create_toggle_delete(self, admin_client, db, make_product):
        p = make_product()
        resp = admin_client.post("/admin/promotions/new", data={
            "name": "Two for one", "type": "2x1", "active": "on", "product_ids": [str(p.id)],
        })
        assert resp.status_code == 302
        promo = db.execute(select(Promotion)).scalar_one()
        promo_id = promo.id
        assert [x.id for x in promo.products] == [p.id]
        assert b"Two for one" in admin_client.get("/admin/promotions").data

        admin_client.post(f"/admin/promotions/{promo_id}/toggle")
        db.expire_all()
        assert db.get(Promotion, promo_id).active is False

        admin_client.post(f"/admin/promotions/{promo_id}/delete")
        db.expire_all()
        assert db.get(Promotion, promo_id) is None

    def test_invalid_form(self, admin_client, make_product):
        make_product()
        resp = admin_client.post("/admin/promotions/new", data={"name": "Nothing", "type": "percentage",
                                                                "value": "10"})
        assert resp.status_code == 400
        assert b"Select at least one product" in resp.data


class TestReviewsAndSettings:
    def test_moderation(self, admin_client, db, make_product):
        p = make_product()
        review = Review(product_id=p.id, name="Ana", rating=5, comment="Nice", approved=False)
        db.add(review)
        db.commit()
        review_id = review.id
        assert b"Nice" in admin_client.get("/admin/reviews").data

        admin_client.post(f"/admin/reviews/{review_id}/approve")
        db.expire_all()
        assert db.get(Review, review_id).approved is True

        admin_client.post(f"/admin/reviews/{review_id}/reject")
        db.expire_all()
        assert db.get(Review, review_id).approved is False

        admin_client.post(f"/admin/reviews/{review_id}/delete")
        db.expire_all()
        assert db.get(Review, review_id) is None
        assert admin_client.post(f"/admin/reviews/{review_id}/approve").status_code == 404

    def test_settings(self, admin_client, db):
        resp = admin_client.post("/admin/settings", data={
            "name": "Acme", "logo_width": "120", "logo_height": "40", "hero_title": "Hello",
            "hero_subtitle": "World", "loyalty_active": "on", "points_per_purchase": "1.5",
        })
        assert resp.status_code == 302
        settings = db.execute(select(CompanySettings)).scalar_one()
        assert (settings.name, settings.logo_width, settings.hero_title) == ("Acme", 120, "Hello")
        loyalty = db.get(LoyaltyConfig, 1)
        assert loyalty.active is True
        assert loyalty.points_per_purchase == 1.5
        assert b"Hello" in admin_client.get("/").data

    def test_settings_reject_infinite_points(self, admin_client, db):
        resp = admin_client.post("/admin/settings", data={
            "name": "Acme", "loyalty_active": "on", "points_per_purchase": "inf",
        }, follow_redirects=True)
        assert b"must be numbers" in resp.data
        assert db.get(LoyaltyConfig, 1) is None
        assert db.execute(select(CompanySettings)).scalar_one_or_none() is None
