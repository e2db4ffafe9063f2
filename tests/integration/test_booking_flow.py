import io
import zipfile

from conftest import sign, webhook_body


def _book(client, event_id, quantity, customer_id="customer-a"):
    return client.post(
        "/bookings",
        json={"customer_id": customer_id, "event_id": event_id, "quantity": quantity},
        headers={"X-Customer-Id": customer_id},
    )


def _open_session(client, booking_id):
    return client.post("/payment/sessions", json={"booking_id": booking_id})


def _deliver(client, event, session_id):
    body = webhook_body(event, session_id)
    return client.post(
        "/payment/webhook",
        content=body,
        headers={"X-Razorpay-Signature": sign(body), "Content-Type": "application/json"},
    )


def test_booking_flow(client, make_event, gateway):
    event_id = make_event(capacity=10, ticket_price=1500)

    response = _book(client, event_id, 6)
    assert response.status_code == 200
    booking_id = response.json()["booking_id"]
    assert response.json()["status"] == "PENDING"
    assert response.json()["total_amount"] == 9000
    assert response.json()["currency"] == "INR"

    session_response = _open_session(client, booking_id)
    assert session_response.status_code == 200
    session_id = session_response.json()["session_id"]
    assert session_response.json()["redirect_url"] == f"https://rzp.io/i/{session_id}"
    assert gateway.sessions[0]["amount"] == 9000
    assert gateway.sessions[0]["success_ref"].endswith(f"/payment/success?booking_id={booking_id}")
    assert gateway.sessions[0]["cancel_ref"].endswith(f"/payment/cancel?booking_id={booking_id}")

    first = _deliver(client, "payment_link.paid", session_id)
    assert first.status_code == 200
    assert first.json() == {"status": "ok", "outcome": "FINALIZED"}

    second = _deliver(client, "payment_link.paid", session_id)
    assert second.status_code == 200
    assert second.json()["outcome"] == "DUPLICATE"

    detail = client.get(f"/bookings/{booking_id}").json()
    assert detail["status"] == "BOOKED"
    assert detail["payment_status"] == "PAID"
    assert detail["ticket_count"] == 6

    loyalty = client.get("/customers/customer-a/loyalty").json()
    assert loyalty["points"] == 1

    availability = client.get(f"/events/{event_id}/availability").json()
    assert availability == {"event_id": event_id, "capacity": 10, "sold": 6, "held": 0, "available": 4}

    tickets = client.get(f"/bookings/{booking_id}/tickets", headers={"X-Customer-Id": "customer-a"})
    assert tickets.status_code == 200
    assert tickets.headers["content-type"] == "application/zip"
    assert len(zipfile.ZipFile(io.BytesIO(tickets.content)).namelist()) == 6


def test_pending_holds_block_oversell(client, make_event):
    event_id = make_event(capacity=10)

    assert _book(client, event_id, 6, customer_id="customer-a").status_code == 200

    rejected = _book(client, event_id, 5, customer_id="customer-b")
    assert rejected.status_code == 409

    accepted = _book(client, event_id, 4, customer_id="customer-c")
    assert accepted.status_code == 200

    availability = client.get(f"/events/{event_id}/availability").json()
    assert availability["held"] == 10
    assert availability["available"] == 0


def test_failed_payment_releases_seats(client, make_event):
    event_id = make_event(capacity=4)
    booking_id = _book(client, event_id, 4).json()["booking_id"]
    session_id = _open_session(client, booking_id).json()["session_id"]

    response = _deliver(client, "payment_link.expired", session_id)
    assert response.status_code == 200
    assert response.json()["outcome"] == "CANCELLED"

    detail = client.get(f"/bookings/{booking_id}").json()
    assert detail["status"] == "CANCELLED"
    assert detail["payment_status"] == "FAILED"
    assert detail["ticket_count"] == 0

    late = _deliver(client, "payment_link.paid", session_id)
    assert late.status_code == 200
    assert late.json()["outcome"] == "LATE"
    assert client.get(f"/bookings/{booking_id}").json()["status"] == "CANCELLED"

    assert _book(client, event_id, 4, customer_id="customer-b").status_code == 200
    assert client.get("/customers/customer-a/loyalty").json()["points"] == 0


def test_webhook_with_bad_signature_is_rejected(client, make_event):
    event_id = make_event(capacity=4)
    booking_id = _book(client, event_id, 1).json()["booking_id"]
    session_id = _open_session(client, booking_id).json()["session_id"]
    body = webhook_body("payment_link.paid", session_id)

    response = client.post(
        "/payment/webhook",
        content=body,
        headers={"X-Razorpay-Signature": "0" * 64},
    )
    assert response.status_code == 400

    missing = client.post("/payment/webhook", content=body)
    assert missing.status_code == 400

    assert client.get(f"/bookings/{booking_id}").json()["status"] == "PENDING"


def test_webhook_for_unknown_session_is_acknowledged(client):
    response = _deliver(client, "payment_link.paid", "plink_nobody")

    assert response.status_code == 200
    assert response.json()["outcome"] == "UNKNOWN_SESSION"


def test_unrelated_webhook_is_acknowledged(client):
    response = _deliver(client, "refund.processed", None)

    assert response.status_code == 200
    assert response.json()["outcome"] == "IGNORED"


def test_booking_requires_customer_identity(client, make_event):
    event_id = make_event(capacity=4)
    payload = {"customer_id": "customer-a", "event_id": event_id, "quantity": 1}

    assert client.post("/bookings", json=payload).status_code == 401
    assert client.post(
        "/bookings", json=payload, headers={"X-Customer-Id": "customer-b"}
    ).status_code == 403


def test_booking_validation(client, make_event):
    event_id = make_event(capacity=4)

    assert _book(client, event_id, 0).status_code == 422
    assert _book(client, event_id, -2).status_code == 422
    assert _book(client, "missing-event", 1).status_code == 404

    no_venue = make_event(capacity=None)
    assert _book(client, no_venue, 1).status_code == 409


def test_tickets_are_private_and_issued_after_payment(client, make_event):
    event_id = make_event(capacity=4)
    booking_id = _book(client, event_id, 2).json()["booking_id"]

    pending = client.get(f"/bookings/{booking_id}/tickets", headers={"X-Customer-Id": "customer-a"})
    assert pending.status_code == 409

    other = client.get(f"/bookings/{booking_id}/tickets", headers={"X-Customer-Id": "customer-b"})
    assert other.status_code == 403

    assert client.get(f"/bookings/{booking_id}/tickets").status_code == 401
    assert client.get(
        "/bookings/missing/tickets", headers={"X-Customer-Id": "customer-a"}
    ).status_code == 404


def test_gateway_outage_leaves_booking_retryable(client, make_event, gateway):
    event_id = make_event(capacity=4)
    booking_id = _book(client, event_id, 2).json()["booking_id"]

    gateway.unavailable = True
    outage = _open_session(client, booking_id)
    assert outage.status_code == 503

    detail = client.get(f"/bookings/{booking_id}").json()
    assert detail["status"] == "PENDING"
    assert detail["gateway_session_id"] is None

    gateway.unavailable = False
    retry = _open_session(client, booking_id)
    assert retry.status_code == 200

    again = _open_session(client, booking_id)
    assert again.json()["session_id"] == retry.json()["session_id"]
    assert len(gateway.sessions) == 1


def test_payment_session_for_unknown_or_paid_booking(client, make_event):
    assert _open_session(client, "missing").status_code == 404

    event_id = make_event(capacity=4)
    booking_id = _book(client, event_id, 1).json()["booking_id"]
    session_id = _open_session(client, booking_id).json()["session_id"]
    _deliver(client, "payment_link.paid", session_id)

    assert _open_session(client, booking_id).status_code == 409


def test_expired_reservation_is_swept(client, make_event, clock):
    event_id = make_event(capacity=4)
    booking_id = _book(client, event_id, 4).json()["booking_id"]

    clock.advance(minutes=16)
    assert _open_session(client, booking_id).status_code == 409

    availability = client.get(f"/events/{event_id}/availability").json()
    assert availability["available"] == 4

    sweep = client.post("/maintenance/expire-reservations")
    assert sweep.status_code == 200
    assert sweep.json() == {"expired": 1}
    assert client.post("/maintenance/expire-reservations").json() == {"expired": 0}

    detail = client.get(f"/bookings/{booking_id}").json()
    assert detail["status"] == "CANCELLED"
    assert detail["payment_status"] == "FAILED"


def test_checkout_return_pages_do_not_change_state(client, make_event):
    event_id = make_event(capacity=4)
    booking_id = _book(client, event_id, 1).json()["booking_id"]

    success = client.get("/payment/success", params={"booking_id": booking_id})
    assert success.status_code == 200
    assert success.json()["status"] == "PENDING"

    cancel = client.get("/payment/cancel", params={"booking_id": booking_id})
    assert cancel.status_code == 200
    assert cancel.json()["status"] == "PENDING"

    assert client.get("/payment/cancel", params={"booking_id": "missing"}).status_code == 404
