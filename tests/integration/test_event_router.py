"""Integration tests for event and form endpoints."""

from conftest import ORGANIZER, event_payload, participant


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "felicity-engine"


class TestCreateEvent:
    async def test_requires_api_key(self, client):
        resp = await client.post("/events", json=event_payload(), headers=participant("p-1"))
        assert resp.status_code == 403
        assert resp.json()["kind"] == "Forbidden"

    async def test_rejects_wrong_api_key(self, client):
        headers = {"X-Felicity-Api-Key": "guess", "X-Actor-Id": "p-1"}
        resp = await client.post("/events", json=event_payload(), headers=headers)
        assert resp.status_code == 403

    async def test_create_draft(self, client, organizer_headers):
        resp = await client.post("/events", json=event_payload(), headers=organizer_headers)
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "draft"
        assert data["organizer_id"] == ORGANIZER
        assert data["requires_payment"] is False
        assert data["form_locked"] is False

    async def test_definition_errors(self, client, organizer_headers):
        body = event_payload(kind="stock", capacity=None)
        resp = await client.post("/events", json=body, headers=organizer_headers)
        assert resp.status_code == 422
        data = resp.json()
        assert data["kind"] == "ValidationError"
        assert {"field": "total_stock",
                "message": "Stock events need total_stock or stock_by_variant"} in data["details"]

    async def test_malformed_body(self, client, organizer_headers):
        body = event_payload()
        del body["name"]
        resp = await client.post("/events", json=body, headers=organizer_headers)
        assert resp.status_code == 422
        data = resp.json()
        assert data["kind"] == "ValidationError"
        assert any(d["field"] == "name" for d in data["details"])


class TestReadEvents:
    async def test_get_and_list(self, client, create_event):
        event = await create_event()
        resp = await client.get(f"/events/{event['id']}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "published"

        resp = await client.get("/events", params={"status": "published"})
        assert [e["id"] for e in resp.json()] == [event["id"]]

    async def test_unknown_event(self, client):
        resp = await client.get("/events/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"kind": "NotFound", "message": "Event not found", "details": []}

    async def test_inventory(self, client, create_event):
        event = await create_event(
            kind="stock", capacity=None, sizes=["S", "M"], stock_by_variant={"S": 3}, total_stock=5,
        )
        resp = await client.get(f"/events/{event['id']}/inventory")
        assert resp.status_code == 200
        buckets = {b["variant_key"]: b for b in resp.json()["buckets"]}
        assert buckets["S"]["remaining"] == 3
        assert buckets["M"]["capacity"] is None
        assert buckets["*"]["capacity"] == 5


class TestLifecycle:
    async def test_invalid_transition(self, client, organizer_headers, create_event):
        event = await create_event(publish=False)
        resp = await client.post(
            f"/events/{event['id']}/status", json={"status": "completed"}, headers=organizer_headers,
        )
        assert resp.status_code == 409
        assert resp.json()["kind"] == "InvalidTransition"

    async def test_registration_toggle(self, client, organizer_headers, create_event):
        event = await create_event()
        resp = await client.post(
            f"/events/{event['id']}/registration-open", json={"open": False},
            headers=organizer_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["registration_open"] is False

        resp = await client.post(
            f"/events/{event['id']}/registrations", json={}, headers=participant("p-1"),
        )
        assert resp.status_code == 409
        assert resp.json()["kind"] == "RegistrationClosed"

    async def test_capacity_only_grows_after_publish(self, client, organizer_headers, create_event):
        event = await create_event(capacity=5)
        resp = await client.post(
            f"/events/{event['id']}/capacity", json={"capacity": 8}, headers=organizer_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {"variant_key": "seats", "capacity": 8, "reserved": 0, "remaining": 8}

        resp = await client.post(
            f"/events/{event['id']}/capacity", json={"capacity": 2}, headers=organizer_headers,
        )
        assert resp.status_code == 422


class TestFormEndpoints:
    async def test_edit_until_first_registration(self, client, organizer_headers, create_event):
        event = await create_event()
        url = f"/events/{event['id']}/form"

        resp = await client.put(url, json={
            "op": "add",
            "field": {"name": "college", "type": "text", "required": True},
        }, headers=organizer_headers)
        assert resp.status_code == 200
        assert resp.json()["schema_version"] == 1

        resp = await client.get(url)
        assert [f["name"] for f in resp.json()["fields"]] == ["college"]

        resp = await client.post(
            f"/events/{event['id']}/registrations",
            json={"answers": {"college": "IIIT Hyderabad"}},
            headers=participant("p-1"),
        )
        assert resp.status_code == 201

        resp = await client.put(url, json={"op": "delete", "name": "college"},
                                headers=organizer_headers)
        assert resp.status_code == 409
        assert resp.json()["kind"] == "FormLocked"

    async def test_form_edit_requires_key(self, client, create_event):
        event = await create_event()
        resp = await client.put(f"/events/{event['id']}/form", json={"op": "delete", "name": "x"})
        assert resp.status_code == 403

    async def test_invalid_op(self, client, organizer_headers, create_event):
        event = await create_event()
        resp = await client.put(
            f"/events/{event['id']}/form",
            json={"op": "add", "field": {"name": "track", "type": "dropdown"}},
            headers=organizer_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["message"] == "Invalid form schema"

    async def test_answers_checked_on_register(self, client, organizer_headers, create_event):
        event = await create_event(form_schema=[
            {"name": "email", "type": "email", "required": True},
        ])
        resp = await client.post(
            f"/events/{event['id']}/registrations", json={"answers": {}},
            headers=participant("p-1"),
        )
        assert resp.status_code == 422
        assert resp.json()["details"] == [{"field": "email", "message": "This field is required"}]
