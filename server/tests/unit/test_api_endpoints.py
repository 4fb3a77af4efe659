"""Integration tests for API endpoints."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

ROUTE_DATA = {
    "name": "Lima - Chimbote Express",
    "stops": [
        {"name": "Lima", "ordinal": 0},
        {"name": "Huacho", "ordinal": 1},
        {"name": "Barranca", "ordinal": 2},
        {"name": "Chimbote", "ordinal": 3},
    ],
}


async def seed_trip(client, admin_headers, seats: int = 10) -> dict:
    """Create a route, a bus and a trip three days out through the API."""
    route = (await client.post("/v1/route/create", json=ROUTE_DATA, headers=admin_headers)).json()
    bus = (await client.post(
        "/v1/bus/create",
        json={"plate": "API-001", "seat_numbers": [str(number) for number in range(1, seats + 1)]},
        headers=admin_headers,
    )).json()
    departure_at = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
    response = await client.post(
        "/v1/trip/create",
        json={"route_id": route["id"], "bus_id": bus["id"], "departure_at": departure_at},
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_create_route_endpoint(test_client, admin_headers):
    """Test the route creation endpoint."""
    response = await test_client.post("/v1/route/create", json=ROUTE_DATA, headers=admin_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == ROUTE_DATA["name"]
    assert data["origin"] == "Lima"
    assert data["destination"] == "Chimbote"
    assert [stop["ordinal"] for stop in data["stops"]] == [0, 1, 2, 3]

    stop_id = data["stops"][2]["id"]
    response = await test_client.post(
        "/v1/route/ordinal", json={"route_id": data["id"], "stop_id": stop_id}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["ordinal"] == 2


@pytest.mark.asyncio
async def test_create_route_twice_conflicts(test_client, admin_headers, caplog):
    caplog.set_level(logging.INFO)

    first = await test_client.post("/v1/route/create", json=ROUTE_DATA, headers=admin_headers)
    second = await test_client.post("/v1/route/create", json=ROUTE_DATA, headers=admin_headers)

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["status"] == 409


@pytest.mark.asyncio
async def test_create_route_missing_auth(test_client):
    """Test route creation without authentication."""
    response = await test_client.post("/v1/route/create", json=ROUTE_DATA)

    assert response.status_code == 401
    data = response.json()
    assert data["status"] == 401
    assert "authentication" in data["title"].lower()


@pytest.mark.asyncio
async def test_create_route_forbidden_for_passenger(test_client, passenger_headers):
    response = await test_client.post("/v1/route/create", json=ROUTE_DATA, headers=passenger_headers)

    assert response.status_code == 403
    assert response.json()["required_permissions"] == ["ADMIN"]


@pytest.mark.asyncio
async def test_create_route_invalid_data(test_client, admin_headers):
    """Test route creation with invalid data."""
    invalid_data = {"name": "", "stops": [{"name": "Lima", "ordinal": 0}]}

    response = await test_client.post("/v1/route/create", json=invalid_data, headers=admin_headers)

    assert response.status_code == 422
    data = response.json()
    assert data["status"] == 422
    assert "violations" in data


@pytest.mark.asyncio
async def test_booking_flow(test_client, admin_headers, passenger_headers, headers_for):
    """Hold, replay, conflict, ticket and cancel over HTTP."""
    trip = await seed_trip(test_client, admin_headers)

    response = await test_client.post(
        "/v1/availability/query",
        json={"trip_id": trip["id"], "from_ordinal": 0, "to_ordinal": 3},
        headers=passenger_headers,
    )
    assert response.status_code == 200
    availability = response.json()
    assert availability["free_count"] == 10
    assert availability["occupancy_rate"] == 0.0

    hold_body = {"trip_id": trip["id"], "seat_number": "5", "from_ordinal": 0, "to_ordinal": 2}
    keyed = headers_for("passenger-1", "PASSENGER", idempotency_key="hold-abc")
    first = await test_client.post("/v1/hold/create", json=hold_body, headers=keyed)
    assert first.status_code == 201
    hold = first.json()
    assert hold["status"] == "ACTIVE"
    assert hold["holder_id"] == "passenger-1"

    replay = await test_client.post("/v1/hold/create", json=hold_body, headers=keyed)
    assert replay.status_code == 201
    assert replay.json()["id"] == hold["id"]

    conflict = await test_client.post(
        "/v1/hold/create",
        json={**hold_body, "from_ordinal": 1, "to_ordinal": 3},
        headers=headers_for("passenger-2", "PASSENGER"),
    )
    assert conflict.status_code == 409
    assert conflict.headers["content-type"].startswith("application/problem+json")
    assert conflict.json()["code"] == "SEGMENT_CONFLICT"

    response = await test_client.post(
        "/v1/ticket/create",
        json={"hold_id": hold["id"], "passenger_id": "passenger-1", "payment_method": "CARD"},
        headers=passenger_headers,
    )
    assert response.status_code == 201
    ticket = response.json()
    assert ticket["status"] == "SOLD"
    assert ticket["seat_number"] == "5"

    response = await test_client.post("/v1/ticket/get", json={"code": ticket["code"]}, headers=passenger_headers)
    assert response.status_code == 200
    assert response.json()["id"] == ticket["id"]

    response = await test_client.post(
        "/v1/ticket/get", json={"ticket_id": ticket["id"]}, headers=headers_for("passenger-2", "PASSENGER")
    )
    assert response.status_code == 403

    response = await test_client.post(
        "/v1/ticket/cancel", json={"ticket_id": ticket["id"], "reason": "Plans changed"}, headers=passenger_headers
    )
    assert response.status_code == 200
    cancelled = response.json()
    assert cancelled["status"] == "CANCELLED"
    assert cancelled["refund_amount"] == ticket["price"]


@pytest.mark.asyncio
async def test_idempotency_key_reuse_with_different_body(test_client, admin_headers, headers_for):
    trip = await seed_trip(test_client, admin_headers)
    keyed = headers_for("passenger-1", "PASSENGER", idempotency_key="hold-reused")

    first = await test_client.post(
        "/v1/hold/create",
        json={"trip_id": trip["id"], "seat_number": "1", "from_ordinal": 0, "to_ordinal": 1},
        headers=keyed,
    )
    assert first.status_code == 201

    second = await test_client.post(
        "/v1/hold/create",
        json={"trip_id": trip["id"], "seat_number": "2", "from_ordinal": 0, "to_ordinal": 1},
        headers=keyed,
    )
    assert second.status_code == 422
    assert second.json()["code"] == "IDEMPOTENCY_KEY_MISMATCH"


@pytest.mark.asyncio
async def test_invalid_segment_endpoint(test_client, admin_headers, passenger_headers):
    trip = await seed_trip(test_client, admin_headers)

    response = await test_client.post(
        "/v1/hold/create",
        json={"trip_id": trip["id"], "seat_number": "1", "from_ordinal": 2, "to_ordinal": 2},
        headers=passenger_headers,
    )

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_SEGMENT"


@pytest.mark.asyncio
async def test_trip_operations(test_client, admin_headers, dispatcher_headers, driver_headers, passenger_headers):
    trip = await seed_trip(test_client, admin_headers)
    body = {"trip_id": trip["id"]}

    response = await test_client.post("/v1/trip/depart", json=body, headers=driver_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_STATE_TRANSITION"

    response = await test_client.post("/v1/trip/open-boarding", json=body, headers=driver_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "BOARDING"

    response = await test_client.post(
        "/v1/trip/cancel", json={**body, "reason": "Storm"}, headers=passenger_headers
    )
    assert response.status_code == 403

    response = await test_client.post(
        "/v1/trip/cancel", json={**body, "reason": "Storm"}, headers=dispatcher_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["trip"]["status"] == "CANCELLED"
    assert data["tickets_cancelled"] == 0


@pytest.mark.asyncio
async def test_parcel_flow(test_client, admin_headers, clerk_headers, driver_headers):
    trip = await seed_trip(test_client, admin_headers)

    response = await test_client.post(
        "/v1/parcel/create",
        json={
            "sender_name": "Rosa Quispe",
            "sender_phone": "+51 999 111 222",
            "receiver_name": "Luis Ramos",
            "receiver_phone": "+51 999 333 444",
            "price": 1500,
            "trip_id": trip["id"],
        },
        headers=clerk_headers,
    )
    assert response.status_code == 201
    parcel = response.json()
    assert parcel["status"] == "CREATED"
    otp = parcel["delivery_otp"]

    response = await test_client.post("/v1/parcel/in-transit", json={"code": parcel["code"]}, headers=driver_headers)
    assert response.status_code == 200
    assert "delivery_otp" not in response.json()

    wrong = "000000" if otp != "000000" else "111111"
    response = await test_client.post(
        "/v1/parcel/deliver", json={"code": parcel["code"], "otp": wrong}, headers=driver_headers
    )
    assert response.status_code == 422
    assert response.json()["code"] == "OTP_MISMATCH"

    response = await test_client.post(
        "/v1/parcel/deliver", json={"code": parcel["code"], "otp": otp}, headers=driver_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "DELIVERED"


@pytest.mark.asyncio
async def test_overbooking_occupancy_endpoint(test_client, admin_headers, dispatcher_headers):
    trip = await seed_trip(test_client, admin_headers, seats=40)

    response = await test_client.post(
        "/v1/overbooking/occupancy", json={"trip_id": trip["id"]}, headers=dispatcher_headers
    )

    assert response.status_code == 200
    data = response.json()
    assert data["capacity"] == 40
    assert data["max_exceptions"] == 2
    assert data["open_exceptions"] == 0
    assert data["can_overbook"] is False

    response = await test_client.post("/v1/overbooking/pending", json={}, headers=dispatcher_headers)
    assert response.status_code == 200
    assert response.json()["items"] == []


@pytest.mark.asyncio
async def test_hold_creation_logged_once(test_client, admin_headers, passenger_headers, caplog):
    trip = await seed_trip(test_client, admin_headers)
    caplog.set_level(logging.INFO, logger="seatline")

    response = await test_client.post(
        "/v1/hold/create",
        json={"trip_id": trip["id"], "seat_number": "3", "from_ordinal": 0, "to_ordinal": 1},
        headers=passenger_headers,
    )

    assert response.status_code == 201
    assert [record.getMessage() for record in caplog.records].count("Hold created successfully") == 1


@pytest.mark.asyncio
async def test_quick_sale_endpoint(test_client, admin_headers, clerk_headers, passenger_headers):
    trip = await seed_trip(test_client, admin_headers)
    body = {
        "trip_id": trip["id"], "seat_number": "4", "from_ordinal": 0, "to_ordinal": 2,
        "passenger_id": "walk-in-1", "payment_method": "CASH",
    }

    response = await test_client.post("/v1/ticket/quick-sale", json=body, headers=passenger_headers)
    assert response.status_code == 403

    # Three days out is far outside the quick sale window
    response = await test_client.post("/v1/ticket/quick-sale", json=body, headers=clerk_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "QUICK_SALE_CLOSED"

    response = await test_client.post(
        "/v1/ticket/quick-sale", json={**body, "passenger_type": "TODDLER"}, headers=clerk_headers
    )
    assert response.status_code == 422
