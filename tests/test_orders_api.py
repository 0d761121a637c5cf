"""Tests for the order endpoints."""

import csv
import io
from datetime import datetime, timezone


class TestCreateOrder:
    def test_derived_fields_are_computed(self, make_order):
        order = make_order(prices=(100, 50))
        assert order["totalAmount"] == 150
        assert order["balanceAmount"] == 150
        assert order["paymentStatus"] == "pending"
        assert order["uniqueId"].startswith("ORDER")

    def test_client_totals_are_ignored(self, client, customer):
        res = client.post("/api/orders", json={
            "customerDetails": {"uniqueId": customer["uniqueId"]},
            "items": [{"name": "Okra", "quantity": 3, "price": 90}],
            "totalPaid": 20,
            "totalAmount": 5000,
            "balanceAmount": 0,
            "paymentStatus": "paid",
        })
        data = res.json()["data"]
        assert data["totalAmount"] == 90
        assert data["balanceAmount"] == 70
        assert data["paymentStatus"] == "partial"

    def test_customer_snapshot_comes_from_store(self, client, customer):
        res = client.post("/api/orders", json={
            "customerDetails": {"uniqueId": customer["uniqueId"], "fullName": "Someone Else"},
            "items": [{"name": "Okra", "quantity": 1, "price": 10}],
        })
        details = res.json()["data"]["customerDetails"]
        assert details["fullName"] == customer["fullName"]
        assert details["phone"] == customer["phone"]
        assert details["id"] == customer["id"]

    def test_unknown_customer(self, client):
        res = client.post("/api/orders", json={
            "customerDetails": {"uniqueId": "NOPE"},
            "items": [{"name": "Okra", "quantity": 1, "price": 10}],
        })
        assert res.status_code == 404
        assert res.json() == {"success": False, "status": 404, "message": "Customer not found"}

    def test_negative_price_rejected(self, client, customer):
        res = client.post("/api/orders", json={
            "customerDetails": {"uniqueId": customer["uniqueId"]},
            "items": [{"name": "Okra", "quantity": 1, "price": -1}],
        })
        assert res.status_code == 400
        assert res.json()["success"] is False
        assert res.json()["message"].startswith("items.0.price")

    def test_zero_quantity_rejected(self, client, customer):
        res = client.post("/api/orders", json={
            "customerDetails": {"uniqueId": customer["uniqueId"]},
            "items": [{"name": "Okra", "quantity": 0, "price": 10}],
        })
        assert res.status_code == 400

    def test_sub_cent_price_rejected(self, client, customer):
        res = client.post("/api/orders", json={
            "customerDetails": {"uniqueId": customer["uniqueId"]},
            "items": [{"name": "Okra", "quantity": 1, "price": 0.004}],
        })
        assert res.status_code == 400
        assert res.json()["message"].startswith("items.0.price")

    def test_infinite_price_rejected(self, client, customer):
        body = '{"customerDetails": {"uniqueId": "%s"}, "items": [{"name": "Okra", "quantity": 1, "price": Infinity}]}'
        res = client.post("/api/orders", content=body % customer["uniqueId"], headers={"Content-Type": "application/json"})
        assert res.status_code == 400
        assert client.get("/api/orders").json()["data"] == []

    def test_sub_cent_total_paid_rejected(self, client, customer):
        res = client.post("/api/orders", json={
            "customerDetails": {"uniqueId": customer["uniqueId"]},
            "items": [{"name": "Okra", "quantity": 1, "price": 10}],
            "totalPaid": 0.005,
        })
        assert res.status_code == 400
        assert res.json()["message"].startswith("totalPaid")

    def test_overpaid_at_creation(self, make_order):
        order = make_order(prices=(40,), total_paid=50)
        assert order["balanceAmount"] == -10
        assert order["paymentStatus"] == "overpaid"


class TestPayments:
    def test_payment_scenario(self, client, make_order):
        order = make_order(prices=(100, 50))
        url = f"/api/orders/{order['id']}/payment"

        data = client.post(url, json={"amount": 60}).json()["data"]
        assert (data["totalPaid"], data["balanceAmount"], data["paymentStatus"]) == (60, 90, "partial")

        data = client.post(url, json={"amount": 90}).json()["data"]
        assert (data["totalPaid"], data["balanceAmount"], data["paymentStatus"]) == (150, 0, "paid")

        res = client.post(url, json={"amount": 10})
        assert res.json()["message"] == "Payment added successfully"
        data = res.json()["data"]
        assert (data["totalPaid"], data["balanceAmount"], data["paymentStatus"]) == (160, -10, "overpaid")

    def test_non_positive_amount(self, client, make_order):
        order = make_order(prices=(100,))
        for amount in (0, -20):
            res = client.post(f"/api/orders/{order['id']}/payment", json={"amount": amount})
            assert res.status_code == 400
            assert res.json()["message"] == "Valid payment amount is required"
        stored = client.get(f"/api/orders/{order['id']}").json()["data"]
        assert stored["totalPaid"] == 0

    def test_sub_cent_amount(self, client, make_order):
        order = make_order(prices=(100,))
        res = client.post(f"/api/orders/{order['id']}/payment", json={"amount": 0.004})
        assert res.status_code == 400
        assert res.json()["message"] == "Valid payment amount is required"

    def test_infinite_amount(self, client, make_order):
        order = make_order(prices=(100,))
        res = client.post(
            f"/api/orders/{order['id']}/payment",
            content='{"amount": Infinity}',
            headers={"Content-Type": "application/json"},
        )
        assert res.status_code == 400
        assert res.json()["message"] == "Valid payment amount is required"
        assert client.get(f"/api/orders/{order['id']}").json()["data"]["totalPaid"] == 0

    def test_list_and_detail_agree_after_payment(self, client, make_order):
        order = make_order(prices=(100,))
        client.post(f"/api/orders/{order['id']}/payment", json={"amount": 60})
        listed = client.get("/api/customers").json()["data"][0]
        detail = client.get(f"/api/customers/{listed['id']}").json()["data"]
        assert listed["outstandingBalance"] == detail["outstandingBalance"] == 40
        assert listed["paymentSummary"] == detail["paymentSummary"] == "partial"
        stats = client.get("/api/orders/stats").json()["data"]
        assert stats["totalOutstanding"] == 40
        assert stats["statusCounts"]["partial"] == 1

    def test_conflict_after_repeated_races(self, client, make_order, monkeypatch):
        import main

        class RacingOrders:
            def __init__(self, inner):
                self.inner = inner

            def __getattr__(self, name):
                return getattr(self.inner, name)

            def find_one_and_update(self, filt, update, *args, **kwargs):
                self.inner.update_one({"_id": filt["_id"]}, {"$inc": {"revision": 1}})
                return self.inner.find_one_and_update(filt, update, *args, **kwargs)

        order = make_order()
        real_collection = main.collection
        monkeypatch.setattr(
            main, "collection",
            lambda name: RacingOrders(real_collection(name)) if name == "order" else real_collection(name),
        )
        res = client.post(f"/api/orders/{order['id']}/payment", json={"amount": 5})
        assert res.status_code == 409
        assert res.json()["message"] == "Order was modified concurrently, please retry"

    def test_missing_amount(self, client, make_order):
        order = make_order()
        res = client.post(f"/api/orders/{order['id']}/payment", json={})
        assert res.status_code == 400
        assert res.json()["message"] == "Valid payment amount is required"

    def test_unknown_order(self, client):
        res = client.post("/api/orders/65f000000000000000000000/payment", json={"amount": 5})
        assert res.status_code == 404

    def test_invalid_id(self, client):
        res = client.post("/api/orders/not-an-id/payment", json={"amount": 5})
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid ID"


class TestUpdateOrder:
    def test_items_replacement_keeps_payments(self, client, make_order):
        order = make_order(prices=(100, 50), total_paid=100)
        res = client.put(f"/api/orders/{order['id']}", json={"items": [{"name": "Beans", "quantity": 1, "price": 80}]})
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["totalAmount"] == 80
        assert data["totalPaid"] == 100
        assert data["balanceAmount"] == -20
        assert data["paymentStatus"] == "overpaid"
        assert [i["name"] for i in data["items"]] == ["Beans"]

    def test_total_paid_overwrite(self, client, make_order):
        order = make_order(prices=(100,), total_paid=100)
        data = client.put(f"/api/orders/{order['id']}", json={"totalPaid": 0}).json()["data"]
        assert data["paymentStatus"] == "pending"
        assert data["balanceAmount"] == 100

    def test_date_only_change(self, client, make_order):
        order = make_order(prices=(30,), total_paid=10)
        data = client.put(f"/api/orders/{order['id']}", json={"date": "2024-03-02"}).json()["data"]
        assert data["date"].startswith("2024-03-02")
        assert data["balanceAmount"] == 20

    def test_change_customer(self, client, make_customer, make_order):
        order = make_order()
        other = make_customer(unique_id="CUST2", full_name="Lakshmi", phone="9000000001")
        data = client.put(f"/api/orders/{order['id']}", json={"customerDetails": {"uniqueId": "CUST2"}}).json()["data"]
        assert data["customerDetails"]["uniqueId"] == other["uniqueId"]
        assert data["customerDetails"]["fullName"] == "Lakshmi"

    def test_update_unknown(self, client):
        res = client.put("/api/orders/65f000000000000000000000", json={"totalPaid": 1})
        assert res.status_code == 404

    def test_conflict_after_repeated_races(self, client, make_order, monkeypatch):
        import main

        class RacingOrders:
            """Another writer bumps the revision between every read and write."""

            def __init__(self, inner):
                self.inner = inner

            def __getattr__(self, name):
                return getattr(self.inner, name)

            def update_one(self, filt, update, *args, **kwargs):
                self.inner.update_one({"_id": filt["_id"]}, {"$inc": {"revision": 1}})
                return self.inner.update_one(filt, update, *args, **kwargs)

        order = make_order()
        real_collection = main.collection
        monkeypatch.setattr(
            main, "collection",
            lambda name: RacingOrders(real_collection(name)) if name == "order" else real_collection(name),
        )
        res = client.put(f"/api/orders/{order['id']}", json={"totalPaid": 5})
        assert res.status_code == 409
        assert res.json()["message"] == "Order was modified concurrently, please retry"


class TestReadOrders:
    def test_get_and_list(self, client, make_order):
        first = make_order(prices=(10,), date="2024-05-01T09:00:00")
        second = make_order(prices=(20,), date="2024-05-02T09:00:00")
        assert client.get(f"/api/orders/{first['id']}").json()["data"]["totalAmount"] == 10
        listed = client.get("/api/orders").json()["data"]
        assert [o["id"] for o in listed] == [second["id"], first["id"]]

    def test_get_missing(self, client):
        res = client.get("/api/orders/65f000000000000000000000")
        assert res.status_code == 404
        assert res.json()["message"] == "Order not found"

    def test_date_range_requires_both(self, client):
        res = client.get("/api/orders/date-range", params={"startDate": "2024-05-01"})
        assert res.status_code == 400
        assert res.json()["message"] == "Start date and end date are required"

    def test_date_range_end_day_inclusive(self, client, make_order):
        inside = make_order(date="2024-05-01T18:30:00")
        make_order(date="2024-05-02T08:00:00")
        res = client.get("/api/orders/date-range", params={"startDate": "2024-05-01", "endDate": "2024-05-01"})
        assert [o["id"] for o in res.json()["data"]] == [inside["id"]]

    def test_date_range_invalid(self, client):
        res = client.get("/api/orders/date-range", params={"startDate": "yesterday", "endDate": "2024-05-01"})
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid startDate"

    def test_by_customer(self, client, make_customer, make_order):
        make_customer(unique_id="CUST2", full_name="Lakshmi", phone="9000000001")
        mine = make_order()
        make_order(unique_id="CUST2")
        data = client.get(f"/api/orders/customer/{mine['customerDetails']['uniqueId']}").json()["data"]
        assert [o["id"] for o in data] == [mine["id"]]

    def test_by_customer_and_date(self, client, make_order):
        wanted = make_order(date="2024-06-10T07:15:00")
        make_order(date="2024-06-11T07:15:00")
        res = client.get(f"/api/orders/customer/{wanted['customerDetails']['uniqueId']}/date/2024-06-10")
        assert [o["id"] for o in res.json()["data"]] == [wanted["id"]]

    def test_legacy_document_is_rederived(self, client, mongo, customer):
        mongo["order"].insert_one({
            "customerDetails": {"uniqueId": customer["uniqueId"], "fullName": "x", "phone": "y", "id": customer["id"]},
            "date": datetime(2024, 1, 1),
            "items": [{"name": "Peas", "quantity": 1, "price": 70}],
            "totalPrice": 70,
            "totalPaid": 20,
            "uniqueId": "ORDERLEGACY",
        })
        data = client.get("/api/orders").json()["data"][0]
        assert data["totalAmount"] == 70
        assert data["balanceAmount"] == 50
        assert data["paymentStatus"] == "partial"


class TestOrderStats:
    def test_stats(self, client, make_order):
        today = datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
        make_order(prices=(100,), total_paid=100, date=today)
        make_order(prices=(50,), total_paid=0, date="2020-01-01")
        make_order(prices=(40,), total_paid=60, date="2020-01-02")
        data = client.get("/api/orders/stats").json()["data"]
        assert data["totalOrders"] == 3
        assert data["totalRevenue"] == 190
        assert data["totalPaid"] == 160
        assert data["totalOutstanding"] == 30
        assert data["todayOrders"] == 1
        assert data["todayRevenue"] == 100
        assert data["statusCounts"] == {"pending": 1, "partial": 0, "paid": 1, "overpaid": 1}

    def test_empty_stats(self, client):
        data = client.get("/api/orders/stats").json()["data"]
        assert data["totalOrders"] == 0
        assert data["totalRevenue"] == 0


class TestDeleteAndExport:
    def test_delete(self, client, make_order):
        order = make_order()
        res = client.delete(f"/api/orders/{order['id']}")
        assert res.json() == {"success": True, "message": "Order deleted successfully", "data": None}
        assert client.get(f"/api/orders/{order['id']}").status_code == 404
        assert client.delete(f"/api/orders/{order['id']}").status_code == 404

    def test_export_csv(self, client, make_order):
        make_order(prices=(100, 50), total_paid=60)
        res = client.get("/api/orders/export")
        assert res.headers["content-type"].startswith("text/csv")
        rows = list(csv.reader(io.StringIO(res.text)))
        assert rows[0][:3] == ["Date", "Order", "Customer"]
        assert len(rows) == 3
        assert rows[1][6] == "100.0"
        assert rows[1][-2:] == ["90.0", "partial"]
