# Overview: HTTP-level tests for the barcode, batch, claim and health endpoints.

from datetime import timedelta

import pytest

from warranty.services import barcode_codec
from warranty.time_utils import utcnow


BARCODES = "/api/warranty/barcodes"
CLAIMS = "/api/warranty/claims"


def _generate(client, **overrides):
    body = {"product_id": 10, "storefront_id": 1, "warranty_period_months": 12, "actor_id": 7}
    body.update(overrides)
    return client.post(BARCODES, json=body)


def _activated(client, customer_id=55):
    number = _generate(client).get_json()["barcode"]["barcode_number"]
    purchase = (utcnow() - timedelta(days=10)).date().isoformat()
    resp = client.post(f"{BARCODES}/{number}/activate", json={"customer_id": customer_id, "purchase_date": purchase})
    assert resp.status_code == 200
    return number


def _submit(client, number, **overrides):
    body = {
        "barcode_number": number,
        "customer_id": 55,
        "storefront_id": 1,
        "issue_description": "Fan rattles under load",
        "issue_category": "cooling",
        "issue_date": utcnow().date().isoformat(),
        "customer_name": "Ana Lima",
        "customer_email": "ana@example.com",
        "pickup_address": {"street": "1 Main St", "city": "Springfield"},
    }
    body.update(overrides)
    return client.post(f"{CLAIMS}/", json=body)


def _act(client, claim_id, action, **body):
    body.setdefault("actor_id", 1)
    return client.post(f"{CLAIMS}/{claim_id}/{action}", json=body)


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["details"] == {"barcodes": 0, "batches": 0, "claims": 0}


class TestBarcodeRoutes:

    def test_generate(self, client, db_session):
        resp = _generate(client)
        assert resp.status_code == 201
        barcode = resp.get_json()["barcode"]
        assert barcode_codec.BARCODE_PATTERN.match(barcode["barcode_number"])
        assert barcode["status"] == "generated"
        assert barcode["generation_attempt"] == 1
        assert barcode["qr_code_data"].endswith(barcode["barcode_number"])

    def test_generate_rejects_bad_period(self, client, db_session):
        resp = _generate(client, warranty_period_months=0)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "validation_error"

    def test_lookup(self, client, db_session):
        number = _generate(client).get_json()["barcode"]["barcode_number"]

        assert client.get(f"{BARCODES}/{number.lower()}").status_code == 200
        assert client.get(f"{BARCODES}/{number}?storefront_id=1").status_code == 200
        assert client.get(f"{BARCODES}/{number}?storefront_id=2").status_code == 404
        assert client.get(f"{BARCODES}/REX25ZZZZZZZZZZZZ").status_code == 404

    def test_list_requires_storefront(self, client, db_session):
        _generate(client)
        assert client.get(BARCODES).status_code == 400
        resp = client.get(f"{BARCODES}?storefront_id=1&status=generated")
        assert len(resp.get_json()["barcodes"]) == 1

    @pytest.mark.parametrize("value, kind", [
        ("REX25", "length"),
        ("XYZ25ABCDEFGHJKLM", "prefix"),
        ("REX2OABCDEFGHJKLM", "year"),
        ("REX25ABCDEFGHJKL1", "character"),
    ])
    def test_validate_invalid(self, client, value, kind):
        resp = client.post(f"{BARCODES}/validate", json={"barcode_number": value})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["valid"] is False
        assert data["error"]["details"]["kind"] == kind

    def test_validate_valid(self, client):
        resp = client.post(f"{BARCODES}/validate", json={"barcode_number": "rex25-abcd-efgh-jklm"})
        data = resp.get_json()
        assert data["valid"] is True
        assert data["barcode_number"] == "REX25ABCDEFGHJKLM"
        assert data["year_digits"] == "25"

    def test_distribute_activate_info(self, client, db_session):
        number = _generate(client).get_json()["barcode"]["barcode_number"]

        resp = client.post(f"{BARCODES}/{number}/distribute", json={"recipient": "Retailer 9"})
        assert resp.get_json()["barcode"]["status"] == "distributed"

        purchase = (utcnow() - timedelta(days=3)).date().isoformat()
        resp = client.post(f"{BARCODES}/{number}/activate", json={"customer_id": 55, "purchase_date": purchase})
        assert resp.status_code == 200
        assert resp.get_json()["barcode"]["status"] == "activated"

        again = client.post(f"{BARCODES}/{number}/activate", json={"customer_id": 55, "purchase_date": purchase})
        assert again.status_code == 409
        assert again.get_json()["error"]["code"] == "invalid_transition"

        info = client.get(f"{BARCODES}/{number}/info").get_json()["warranty"]
        assert info["can_claim"] is True
        assert info["is_active"] is True

    def test_activate_rejects_bad_date(self, client, db_session):
        number = _generate(client).get_json()["barcode"]["barcode_number"]
        resp = client.post(f"{BARCODES}/{number}/activate", json={"customer_id": 55, "purchase_date": "soon"})
        assert resp.status_code == 400

    def test_activation_in_the_past_expires_immediately(self, client, db_session):
        number = _generate(client).get_json()["barcode"]["barcode_number"]
        resp = client.post(f"{BARCODES}/{number}/activate", json={"customer_id": 55, "purchase_date": "2015-01-01"})
        assert resp.status_code == 200
        assert resp.get_json()["barcode"]["status"] == "expired"


class TestBatchRoutes:

    def test_generate_and_fetch_batch(self, client, db_session):
        resp = client.post("/api/warranty/batches", json={
            "product_id": 10, "storefront_id": 1, "quantity": 3,
            "warranty_period_months": 24, "actor_id": 7, "batch_number": "BATCH-R1",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["batch"]["generation_status"] == "completed"
        assert data["statistics"]["generated_quantity"] == 3
        assert len(data["barcodes"]) == 3

        batch_id = data["batch"]["id"]
        assert client.get(f"/api/warranty/batches/{batch_id}").get_json()["batch"]["batch_number"] == "BATCH-R1"
        assert client.get("/api/warranty/batches/9999").status_code == 404
        assert client.get("/api/warranty/batches").status_code == 400
        listed = client.get("/api/warranty/batches?storefront_id=1").get_json()["batches"]
        assert [b["id"] for b in listed] == [batch_id]

        dup = client.post("/api/warranty/batches", json={
            "product_id": 10, "storefront_id": 1, "quantity": 1,
            "warranty_period_months": 24, "actor_id": 7, "batch_number": "BATCH-R1",
        })
        assert dup.status_code == 409

    @pytest.mark.parametrize("quantity", [0, 10001])
    def test_quantity_limits(self, client, db_session, quantity):
        resp = client.post("/api/warranty/batches", json={
            "product_id": 10, "storefront_id": 1, "quantity": quantity,
            "warranty_period_months": 24, "actor_id": 7,
        })
        assert resp.status_code == 400

    def test_stats_endpoints(self, client, db_session):
        _generate(client)
        generation = client.get("/api/warranty/stats/generation?storefront_id=1").get_json()["stats"]
        assert generation["total_generated"] == 1
        assert generation["security_status"] == "EXCELLENT"

        collisions = client.get("/api/warranty/stats/collisions").get_json()["stats"]
        assert collisions["total_collisions"] == 0

        bad = client.get("/api/warranty/stats/generation?start=2025-02-01T00:00:00Z&end=2025-01-01T00:00:00Z")
        assert bad.status_code == 400
        assert client.get("/api/warranty/stats/collisions?start=yesterday").status_code == 400

    def test_generator_info(self, client):
        data = client.get("/api/warranty/generator").get_json()["generator"]
        assert data["total_entropy_bits"] == 60
        assert data["format"] == "REX[YY][RANDOM_12]"


class TestClaimRoutes:

    def test_submit_and_fetch(self, client, db_session):
        number = _activated(client)
        resp = _submit(client, number)
        assert resp.status_code == 201
        claim = resp.get_json()["claim"]
        assert claim["status"] == "pending"
        assert claim["claim_number"].startswith("CLM-")
        assert claim["display_status"] == "Pending Review"

        fetched = client.get(f"{CLAIMS}/{claim['id']}?storefront_id=1").get_json()["claim"]
        assert fetched["claim_number"] == claim["claim_number"]
        assert client.get(f"{CLAIMS}/{claim['id']}?storefront_id=2").status_code == 404

        by_number = client.get(f"{CLAIMS}/number/{claim['claim_number']}?storefront_id=1")
        assert by_number.status_code == 200
        assert client.get(f"{CLAIMS}/number/{claim['claim_number']}").status_code == 400

        listed = client.get(f"{CLAIMS}/?storefront_id=1&status=pending").get_json()["claims"]
        assert [c["id"] for c in listed] == [claim["id"]]
        assert client.get(f"{CLAIMS}/").status_code == 400

        barcode = client.get(f"{BARCODES}/{number}").get_json()["barcode"]
        assert barcode["status"] == "used"

    def test_submit_errors(self, client, db_session):
        number = _activated(client)
        assert _submit(client, "REX25").status_code == 400
        assert _submit(client, "REX25ZZZZZZZZZZZZ").status_code == 404
        assert _submit(client, number, customer_id=56).status_code == 400
        assert _submit(client, number, issue_date="not-a-date").status_code == 400
        assert _submit(client, number, storefront_id=2).status_code == 404

    def test_workflow_through_http(self, client, db_session, sink):
        number = _activated(client)
        claim_id = _submit(client, number).get_json()["claim"]["id"]

        resp = _act(client, claim_id, "validate", notes="ok")
        assert resp.status_code == 200
        assert resp.get_json()["claim"]["status"] == "validated"

        illegal = _act(client, claim_id, "ship", shipping_provider="DHL", tracking_number="T1")
        assert illegal.status_code == 409
        assert illegal.get_json()["error"]["code"] == "invalid_transition"

        resp = _act(client, claim_id, "assign", technician_id=9, estimated_completion_date="2030-01-01")
        assert resp.get_json()["claim"]["status"] == "assigned"
        resp = _act(client, claim_id, "start-repair", actor_id=9, actor_type="technician")
        assert resp.get_json()["claim"]["status"] == "in_repair"

        tickets = client.get(f"{CLAIMS}/{claim_id}/repair-tickets").get_json()["repair_tickets"]
        assert len(tickets) == 1
        ticket_url = f"{CLAIMS}/{claim_id}/repair-tickets/{tickets[0]['id']}"

        assert client.post(f"{ticket_url}/start", json={"actor_id": 9}).status_code == 400
        assert client.post(f"{ticket_url}/start", json={"actor_id": 9, "diagnosis": "Worn bearing"}).status_code == 200
        client.post(f"{ticket_url}/parts", json={
            "part_number": "F-1", "part_name": "Fan", "quantity": 1, "unit_cost": "18.00",
        })
        resp = client.post(f"{ticket_url}/labor", json={"hours": "0.5", "hourly_rate": "40"})
        assert resp.get_json()["repair_ticket"]["total_cost"] == "38.00"
        resp = client.post(f"{ticket_url}/complete", json={"actor_id": 9, "quality_check_passed": True})
        assert resp.get_json()["repair_ticket"]["status"] == "completed"
        assert client.post(f"{ticket_url}/teleport", json={}).status_code == 404

        resp = _act(client, claim_id, "complete-repair", actor_id=9, actor_type="technician")
        assert resp.get_json()["claim"]["repair_cost"] == "38.00"

        resp = _act(client, claim_id, "ship", shipping_provider="DHL", tracking_number="T1", cost="12")
        claim = resp.get_json()["claim"]
        assert claim["status"] == "shipped"
        assert claim["total_cost"] == "50.00"

        resp = _act(client, claim_id, "delivery-status", delivery_status="out_for_delivery")
        assert resp.get_json()["claim"]["delivery_status"] == "out_for_delivery"

        _act(client, claim_id, "deliver")
        resp = _act(client, claim_id, "complete", actor_id=55, actor_type="customer", rating=5)
        claim = resp.get_json()["claim"]
        assert claim["status"] == "completed"
        assert claim["is_terminal"] is True
        assert claim["completed_at"] is not None
        assert "ClaimCompleted" in sink.types()

        timeline = client.get(f"{CLAIMS}/{claim_id}/timeline?event_type=status_change").get_json()["timeline"]
        assert [e["to_status"] for e in timeline] == [
            "validated", "assigned", "in_repair", "repaired", "shipped", "delivered", "completed",
        ]

    def test_stale_expected_version_is_conflict(self, client, db_session):
        claim_id = _submit(client, _activated(client)).get_json()["claim"]["id"]

        resp = _act(client, claim_id, "validate", expected_version=1)
        assert resp.status_code == 200
        assert resp.get_json()["claim"]["version_id"] == 2

        stale = _act(client, claim_id, "cancel", expected_version=1)
        assert stale.status_code == 409
        assert stale.get_json()["error"]["code"] == "conflicting_transition"

    def test_unknown_action_and_claim(self, client, db_session):
        claim_id = _submit(client, _activated(client)).get_json()["claim"]["id"]
        assert _act(client, claim_id, "teleport").status_code == 404
        assert _act(client, 9999, "validate").status_code == 404

    def test_customer_view_and_notes(self, client, db_session):
        claim_id = _submit(client, _activated(client)).get_json()["claim"]["id"]

        resp = client.post(f"{CLAIMS}/{claim_id}/notes", json={"note": "internal only", "actor_id": 1})
        assert resp.status_code == 201
        client.post(f"{CLAIMS}/{claim_id}/notes", json={
            "note": "We received your claim", "actor_id": 1, "customer_visible": True,
        })
        assert client.post(f"{CLAIMS}/{claim_id}/contacts", json={
            "method": "phone", "reason": "confirm pickup", "actor_id": 1,
        }).status_code == 201
        assert client.post(f"{CLAIMS}/{claim_id}/attachments", json={
            "attachment_id": 4, "filename": "photo.jpg", "actor_id": 55, "actor_type": "customer",
        }).status_code == 201
        assert client.post(f"{CLAIMS}/{claim_id}/notes", json={"actor_id": 1}).status_code == 400

        view = client.get(f"{CLAIMS}/{claim_id}?view=customer").get_json()["claim"]
        assert "admin_notes" not in view
        assert [e["event_type"] for e in view["timeline"]] == ["note_added", "attachment_uploaded"]

        full = client.get(f"{CLAIMS}/{claim_id}").get_json()["claim"]
        assert full["admin_notes"] == "internal only\nWe received your claim"

        customer_timeline = client.get(f"{CLAIMS}/{claim_id}/timeline?view=customer").get_json()["timeline"]
        assert len(customer_timeline) == 2

    def test_claim_stats(self, client, db_session):
        _submit(client, _activated(client))
        assert client.get(f"{CLAIMS}/stats").status_code == 400
        stats = client.get(f"{CLAIMS}/stats?storefront_id=1").get_json()["stats"]
        assert stats["total_claims"] == 1
        assert stats["by_status"] == {"pending": 1}
