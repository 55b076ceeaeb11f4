"""
HTTP surface: initiate -> notification -> return page -> admin refund.
"""
import json
from datetime import timedelta

from payflow.models.payment import PaymentStatus
from payflow.services import payment_store
from payflow.services.p24_client import GatewayError


def _initiate(api, auth_header, user, order_id):
    return api.post("/api/v1/payments/initiate", json={"orderId": order_id}, headers=auth_header(user))


def test_health(api) -> None:
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_full_payment_lifecycle(api, db, gateway, customer, admin, make_order, notification, auth_header) -> None:
    make_order(customer, total="50.00", order_id="ord-1")

    response = _initiate(api, auth_header, customer, "ord-1")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["paymentUrl"] == "https://sandbox.przelewy24.pl/trnRequest/TOKEN-1"
    assert body["sessionId"].startswith("ord-1_")
    payment = payment_store.get_payment(db, body["paymentId"])
    assert payment.amount == 5000

    response = api.post("/api/v1/payments/callback", content=json.dumps(notification(payment, p24_order_id=777)))
    assert response.status_code == 200
    assert response.text == "OK"

    response = api.get("/api/v1/payments/return", params={"orderId": "ord-1"})
    assert response.json() == {
        "success": True, "orderId": "ord-1", "orderStatus": "PROCESSING", "paymentStatus": "COMPLETED",
    }

    response = api.post("/api/v1/admin/payments/refund", json={"orderId": "ord-1", "reason": "Customer request"},
                        headers=auth_header(admin))
    assert response.status_code == 200
    assert response.json()["payment"] == {"id": payment.id, "status": "REFUNDED"}
    assert gateway.refund.call_args.kwargs["order_id"] == 777

    response = api.get("/api/v1/payments/return", params={"orderId": "ord-1"})
    assert response.json()["orderStatus"] == "REFUND"
    assert response.json()["paymentStatus"] == "REFUNDED"


def test_duplicate_callback_is_acknowledged(api, db, gateway, customer, make_order, notification, auth_header) -> None:
    make_order(customer, order_id="ord-2")
    payment_id = _initiate(api, auth_header, customer, "ord-2").json()["paymentId"]
    body = json.dumps(notification(payment_store.get_payment(db, payment_id)))

    first = api.post("/api/v1/payments/callback", content=body)
    second = api.post("/api/v1/payments/callback", content=body)

    assert first.text == second.text == "OK"
    assert gateway.verify.call_count == 1


def test_callback_with_bad_signature(api, db, customer, make_order, notification, auth_header) -> None:
    make_order(customer, order_id="ord-3")
    payment_id = _initiate(api, auth_header, customer, "ord-3").json()["paymentId"]
    body = notification(payment_store.get_payment(db, payment_id))
    body["amount"] = 1

    response = api.post("/api/v1/payments/callback", content=json.dumps(body))

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature", "statusCode": 400}
    db.expire_all()
    assert payment_store.get_payment(db, payment_id).status == PaymentStatus.INITIATED.value


def test_callback_rejects_garbage(api) -> None:
    assert api.post("/api/v1/payments/callback", content=b"not json").status_code == 400
    assert api.post("/api/v1/payments/callback", content=b"{}").status_code == 400


def test_initiate_requires_token(api, customer, make_order) -> None:
    order = make_order(customer)

    response = api.post("/api/v1/payments/initiate", json={"orderId": order.id})

    assert response.status_code == 401
    assert response.json()["statusCode"] == 401


def test_initiate_rejects_bad_token(api, customer, make_order) -> None:
    order = make_order(customer)

    response = api.post("/api/v1/payments/initiate", json={"orderId": order.id},
                        headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_initiate_for_other_users_order(api, customer, make_user, make_order, auth_header) -> None:
    order = make_order(make_user("customer"))

    assert _initiate(api, auth_header, customer, order.id).status_code == 403


def test_initiate_unknown_order(api, customer, auth_header) -> None:
    response = _initiate(api, auth_header, customer, "missing")

    assert response.status_code == 404
    assert response.json() == {"error": "Order not found", "statusCode": 404}


def test_initiate_missing_order_id(api, customer, auth_header) -> None:
    response = api.post("/api/v1/payments/initiate", json={}, headers=auth_header(customer))

    assert response.status_code == 400
    assert response.json()["fields"] == ["body.orderId"]


def test_initiate_when_gateway_down(api, gateway, customer, make_order, auth_header) -> None:
    order = make_order(customer)
    gateway.register.side_effect = GatewayError("Przelewy24 unreachable: ConnectionError")

    response = _initiate(api, auth_header, customer, order.id)

    assert response.status_code == 502
    assert response.json()["error"] == "Payment gateway registration failed"


def test_refund_is_staff_only(api, customer, auth_header) -> None:
    response = api.post("/api/v1/admin/payments/refund", json={"paymentId": "x"}, headers=auth_header(customer))

    assert response.status_code == 403


def test_refund_needs_a_reference(api, admin, auth_header) -> None:
    response = api.post("/api/v1/admin/payments/refund", json={"reason": "x"}, headers=auth_header(admin))

    assert response.status_code == 400


def test_refund_of_unpaid_payment(api, gateway, customer, admin, make_order, auth_header) -> None:
    make_order(customer, order_id="ord-4")
    payment_id = _initiate(api, auth_header, customer, "ord-4").json()["paymentId"]

    response = api.post("/api/v1/admin/payments/refund", json={"paymentId": payment_id}, headers=auth_header(admin))

    assert response.status_code == 400
    gateway.refund.assert_not_called()


def test_admin_payment_list(api, customer, make_user, admin, make_order, auth_header) -> None:
    make_order(customer, order_id="ord-5")
    make_order(customer, order_id="ord-6")
    _initiate(api, auth_header, customer, "ord-5")
    _initiate(api, auth_header, customer, "ord-6")
    employee = make_user("employee")

    response = api.get("/api/v1/admin/payments", headers=auth_header(employee))
    assert response.status_code == 200
    body = response.json()
    assert body["viewerRole"] == "employee"
    assert len(body["payments"]) == 2
    first = body["payments"][0]
    assert first["user"]["email"] == "jan@example.com"
    assert first["order"]["totalPrice"] == 129.99

    response = api.get("/api/v1/admin/payments", params={"search": "ord-5"}, headers=auth_header(admin))
    assert [p["order"]["id"] for p in response.json()["payments"]] == ["ord-5"]

    response = api.get("/api/v1/admin/payments", params={"status": "completed"}, headers=auth_header(admin))
    assert response.json()["payments"] == []

    assert api.get("/api/v1/admin/payments", headers=auth_header(customer)).status_code == 403


def test_return_for_unknown_order(api) -> None:
    response = api.get("/api/v1/payments/return", params={"orderId": "nope"})

    assert response.status_code == 200
    assert response.json()["paymentStatus"] is None


def test_refresh_token_is_not_accepted(api, customer, make_order, auth_header) -> None:
    order = make_order(customer)

    response = api.post("/api/v1/payments/initiate", json={"orderId": order.id},
                        headers=auth_header(customer, token_type="refresh", expires_in=timedelta(days=1)))

    assert response.status_code == 401


def test_expired_token_is_not_accepted(api, customer, make_order, auth_header) -> None:
    order = make_order(customer)

    response = api.post("/api/v1/payments/initiate", json={"orderId": order.id},
                        headers=auth_header(customer, expires_in=timedelta(minutes=-1)))

    assert response.status_code == 401
