"""
Tests for the session cart.
"""
import pytest

from storefront.cart import SESSION_KEY, Cart, load_cart
from storefront.errors import ValidationError
from storefront.models import Product, Promotion
from storefront.promotions import AppliedPromotionRule
from tests.conftest import login


def product(pid=1, **kw):
    data = dict(id=pid, name=f"Product {pid}", description="", price_cents=1000, stock=10,
                images=[f"https://img.test/{pid}.png"], available_colors=[], color_images=[])
    data.update(kw)
    return Product(**data)


class TestCart:
    def test_add_merges_same_product_and_color(self):
        cart = Cart()
        p = product()
        cart.add(p, 1)
        cart.add(p, 2)
        assert len(cart) == 1
        assert cart.count == 3
        assert cart.total_cents == 3000

    def test_colors_are_separate_lines(self):
        cart = Cart()
        p = product(available_colors=["Red", "Blue"],
                    color_images=[{"color": "Red", "image": "https://img.test/red.png"}])
        cart.add(p, 1, "Red")
        cart.add(p, 1, "Blue")
        assert len(cart) == 2
        assert cart.lines[0].image == "https://img.test/red.png"
        assert cart.lines[1].image == "https://img.test/1.png"

    def test_rejects_unknown_color(self):
        with pytest.raises(ValidationError, match="not available"):
            Cart().add(product(available_colors=["Red"]), 1, "Green")

    def test_rejects_non_positive_quantity(self):
        with pytest.raises(ValidationError):
            Cart().add(product(), 0)

    def test_rejects_more_than_stock(self):
        cart = Cart()
        p = product(stock=3)
        cart.add(p, 2)
        with pytest.raises(ValidationError, match="in stock"):
            cart.add(p, 2)
        assert cart.count == 2

    def test_update_quantity_and_remove(self):
        cart = Cart()
        cart.add(product(1), 1)
        cart.add(product(2), 1)
        cart.update_quantity(1, 4)
        assert cart.total_cents == 5000
        cart.update_quantity(1, 0)
        assert [l.product_id for l in cart] == [2]
        cart.remove(2)
        assert cart.is_empty
        assert cart.total_cents == 0

    def test_update_over_stock(self):
        cart = Cart()
        cart.add(product(stock=2), 1)
        with pytest.raises(ValidationError):
            cart.update_quantity(1, 5)

    def test_stock_is_shared_by_color_lines(self):
        cart = Cart()
        p = product(stock=5, available_colors=["Red", "Blue"])
        cart.add(p, 3, "Red")
        with pytest.raises(ValidationError, match="Only 5 units"):
            cart.add(p, 3, "Blue")
        cart.add(p, 2, "Blue")
        assert cart.product_quantity(p.id) == 5

    def test_update_counts_other_color_lines(self):
        cart = Cart()
        p = product(stock=5, available_colors=["Red", "Blue"])
        cart.add(p, 2, "Red")
        cart.add(p, 2, "Blue")
        cart.update_quantity(p.id, 3, "Red")
        with pytest.raises(ValidationError):
            cart.update_quantity(p.id, 3, "Blue")
        assert [l.quantity for l in cart] == [3, 2]

    def test_clear(self):
        cart = Cart()
        cart.add(product(), 2)
        cart.clear()
        assert cart.is_empty
        assert cart.total_cents == 0

    def test_promotions_applied_and_cleared(self):
        p = product()
        rule = AppliedPromotionRule(Promotion(id=7, name="2x1", type="2x1", active=True, products=[p]))
        cart = Cart()
        cart.add(p, 2)
        cart.apply_promotions([rule])
        assert cart.total_cents == 1000
        assert cart.savings_cents == 1000

        cart.apply_promotions([])
        assert cart.lines[0].promotion is None
        assert cart.total_cents == 2000

    def test_payment_methods_intersection(self):
        cart = Cart()
        cart.add(product(1), 1)
        assert cart.payment_methods() == {"cash_on_delivery": True, "card": True}
        cart.add(product(2, allowed_payment_methods={"cash_on_delivery": False, "card": True}), 1)
        assert cart.payment_methods() == {"cash_on_delivery": False, "card": True}

    def test_session_round_trip_drops_missing_products(self):
        cart = Cart()
        cart.add(product(1), 2, None)
        cart.add(product(2), 1)
        entries = cart.to_session()
        assert entries[0] == {"product_id": 1, "quantity": 2, "selected_color": None}

        restored = Cart.from_session(entries + [{"product_id": "x"}], {1: product(1, price_cents=1500)})
        assert [l.product_id for l in restored] == [1]
        assert restored.total_cents == 3000

    def test_refresh_uses_current_prices(self):
        cart = Cart()
        cart.add(product(1), 2)
        cart.refresh({1: product(1, price_cents=500, name="Renamed")})
        assert cart.lines[0].name == "Renamed"
        assert cart.total_cents == 1000


class TestCartRoutes:
    def test_add_and_view(self, client, make_product):
        p = make_product(name="Lamp", price_cents=2500)
        resp = client.post("/cart/add", data={"product_id": p.id, "quantity": 2})
        assert resp.status_code == 302
        with client.session_transaction() as sess:
            assert sess[SESSION_KEY] == [{"product_id": p.id, "quantity": 2, "selected_color": None}]
        page = client.get("/cart")
        assert b"Lamp" in page.data
        assert b"$50.00" in page.data

    def test_add_over_stock_is_flashed(self, client, make_product):
        p = make_product(stock=1)
        resp = client.post("/cart/add", data={"product_id": p.id, "quantity": 3}, follow_redirects=True)
        assert b"in stock" in resp.data
        with client.session_transaction() as sess:
            assert not sess.get(SESSION_KEY)

    def test_update_remove_clear(self, client, make_product):
        a = make_product(name="A", available_colors=["Red"])
        b = make_product(name="B")
        client.post("/cart/add", data={"product_id": a.id, "quantity": 1, "color": "Red"})
        client.post("/cart/add", data={"product_id": b.id, "quantity": 1})

        client.post("/cart/update", data={f"qty_{a.id}_Red": "3"})
        with client.session_transaction() as sess:
            assert sess[SESSION_KEY][0]["quantity"] == 3

        client.post("/cart/remove", data={"line": f"{a.id}:Red"})
        with client.session_transaction() as sess:
            assert [e["product_id"] for e in sess[SESSION_KEY]] == [b.id]

        client.post("/cart/clear")
        with client.session_transaction() as sess:
            assert sess[SESSION_KEY] == []

    def test_deleted_product_drops_out(self, app, client, db, make_product):
        p = make_product()
        client.post("/cart/add", data={"product_id": p.id, "quantity": 1})
        db.delete(p)
        db.commit()
        client.get("/cart")
        with client.session_transaction() as sess:
            assert sess[SESSION_KEY] == []

    def test_load_cart_applies_promotions(self, db, make_product):
        p = make_product(price_cents=1000)
        db.add(Promotion(name="Half", type="percentage", value=50, active=True, products=[p]))
        db.commit()
        cart = load_cart(db, [{"product_id": p.id, "quantity": 2, "selected_color": None}])
        assert cart.total_cents == 1000
        assert cart.lines[0].promotion.name == "Half"

    def test_recover_snapshot(self, client, make_user, make_product):
        make_user("shopper@example.com")
        login(client, "shopper@example.com")
        p = make_product()
        client.post("/cart/add", data={"product_id": p.id, "quantity": 2})
        with client.session_transaction() as sess:
            sess[SESSION_KEY] = []
        client.post("/cart/recover")
        with client.session_transaction() as sess:
            assert sess[SESSION_KEY][0]["quantity"] == 2
