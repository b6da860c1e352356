# Overview: Flask API routes for warranty claims, timeline and repair tickets; parses input and returns JSON responses.

# backend/warranty/routes/claims.py
"""
Warranty Claim API Routes

- Submit claims against activated barcodes
- Drive the claim workflow (validate, assign, repair, ship, deliver, complete)
- Timeline listing with a customer view, notes and contact records
- Technician repair tickets nested under a claim

Every workflow action accepts an optional `expected_version`. When given,
a stale version is answered with 409 instead of being retried.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import claim_service, repair_service, reporting_service, timeline_service
from warranty.errors import ValidationError, WarrantyError
from warranty.time_utils import parse_iso_date, parse_iso_datetime


claims_bp = Blueprint("claims", __name__, url_prefix="/api/warranty/claims")


def _error(e: WarrantyError):
    return jsonify({"error": e.to_dict()}), e.http_status


def _date(data: dict, field: str):
    try:
        return parse_iso_date(data.get(field))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field, value=data.get(field))


def _datetime(data: dict, field: str):
    try:
        return parse_iso_datetime(data.get(field))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field} must be an ISO datetime", field=field, value=data.get(field))


# =============================================================================
# SUBMISSION / QUERIES
# =============================================================================

@claims_bp.post("/")
def submit_claim_route():
    """
    Submit a warranty claim (status: pending).

    Request body:
    {
        "barcode_number": "REX25ABCDEFGHJKLM",
        "customer_id": 55,
        "storefront_id": 1,
        "issue_description": "Screen flickers",
        "issue_category": "display",
        "issue_date": "2025-03-01",
        "customer_name": "Ana",
        "customer_email": "ana@example.com",
        "customer_phone": "...",  (optional)
        "pickup_address": {...},
        "severity": "medium",  (optional)
        "priority": "normal",  (optional)
        "tags": [],  (optional)
        "customer_notes": "..."  (optional)
    }

    Returns:
        201: claim created
        400: invalid input or barcode not claimable
        404: barcode not found
    """
    try:
        data = request.get_json() or {}

        claim = claim_service.submit_claim(
            barcode_number=data.get("barcode_number"),
            customer_id=data.get("customer_id"),
            issue_description=data.get("issue_description"),
            issue_category=data.get("issue_category"),
            issue_date=_date(data, "issue_date"),
            customer_name=data.get("customer_name"),
            customer_email=data.get("customer_email"),
            pickup_address=data.get("pickup_address"),
            customer_phone=data.get("customer_phone"),
            severity=data.get("severity", "medium"),
            priority=data.get("priority", "normal"),
            tags=data.get("tags"),
            customer_notes=data.get("customer_notes"),
            storefront_id=data.get("storefront_id"),
        )
        return jsonify({"claim": claim_service.claim_view(claim)}), 201

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to submit claim")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.get("/")
def list_claims_route():
    try:
        storefront_id = request.args.get("storefront_id", type=int)
        if storefront_id is None:
            return jsonify({"error": "storefront_id required"}), 400

        claims = claim_service.list_claims(
            storefront_id=storefront_id,
            status=request.args.get("status"),
            priority=request.args.get("priority"),
            customer_id=request.args.get("customer_id", type=int),
            technician_id=request.args.get("technician_id", type=int),
            limit=min(request.args.get("limit", 100, type=int), 500),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"claims": [claim_service.claim_view(c) for c in claims]}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list claims")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.get("/stats")
def claim_stats_route():
    try:
        storefront_id = request.args.get("storefront_id", type=int)
        if storefront_id is None:
            return jsonify({"error": "storefront_id required"}), 400

        stats = reporting_service.claim_statistics(
            storefront_id,
            start=_datetime(request.args, "start"),
            end=_datetime(request.args, "end"),
        )
        return jsonify({"stats": stats}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to compute claim statistics")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.get("/<int:claim_id>")
def get_claim_route(claim_id: int):
    """
    Query params:
        storefront_id: tenant scope (optional)
        view: "customer" hides internal notes and non-visible timeline entries
    """
    try:
        claim = claim_service.get_claim(claim_id, storefront_id=request.args.get("storefront_id", type=int))
        if request.args.get("view") == "customer":
            return jsonify({"claim": claim_service.customer_view(claim)}), 200
        return jsonify({"claim": claim_service.claim_view(claim)}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to get claim")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.get("/number/<claim_number>")
def get_claim_by_number_route(claim_number: str):
    try:
        storefront_id = request.args.get("storefront_id", type=int)
        if storefront_id is None:
            return jsonify({"error": "storefront_id required"}), 400

        claim = claim_service.get_claim_by_number(storefront_id, claim_number)
        return jsonify({"claim": claim_service.claim_view(claim)}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to get claim by number")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# WORKFLOW ACTIONS
# =============================================================================

def _actor(data: dict) -> dict:
    return {"actor_id": data.get("actor_id"), "actor_type": data.get("actor_type")}


CLAIM_ACTIONS = {
    "status": lambda c, d: claim_service.update_status(c, d.get("status"), **_actor(d)),
    "validate": lambda c, d: claim_service.validate(c, notes=d.get("notes"), **_actor(d)),
    "reject": lambda c, d: claim_service.reject(c, reason=d.get("reason"), **_actor(d)),
    "assign": lambda c, d: claim_service.assign_technician(
        c,
        technician_id=d.get("technician_id"),
        technician_name=d.get("technician_name"),
        estimated_completion_date=_date(d, "estimated_completion_date"),
        **_actor(d),
    ),
    "start-repair": lambda c, d: claim_service.start_repair(
        c, target_completion_date=_datetime(d, "target_completion_date"), **_actor(d)
    ),
    "complete-repair": lambda c, d: claim_service.complete_repair(
        c, notes=d.get("notes"), cost=d.get("cost"), **_actor(d)
    ),
    "replace": lambda c, d: claim_service.mark_replaced(
        c, replacement_product_id=d.get("replacement_product_id"), cost=d.get("cost"), **_actor(d)
    ),
    "ship": lambda c, d: claim_service.ship(
        c,
        provider=d.get("shipping_provider"),
        tracking_number=d.get("tracking_number"),
        estimated_delivery_date=_date(d, "estimated_delivery_date"),
        cost=d.get("cost"),
        **_actor(d),
    ),
    "deliver": lambda c, d: claim_service.mark_delivered(c, **_actor(d)),
    "complete": lambda c, d: claim_service.complete(
        c, feedback=d.get("feedback"), rating=d.get("rating"), **_actor(d)
    ),
    "cancel": lambda c, d: claim_service.cancel(c, reason=d.get("reason"), **_actor(d)),
    "dispute": lambda c, d: claim_service.dispute(c, reason=d.get("reason"), **_actor(d)),
    "resolve-dispute": lambda c, d: claim_service.resolve_dispute(
        c, outcome=d.get("outcome"), reason=d.get("reason"), **_actor(d)
    ),
    "refund": lambda c, d: claim_service.record_refund(c, actor_id=d.get("actor_id"), amount=d.get("amount")),
    "delivery-status": lambda c, d: claim_service.update_delivery_status(
        c,
        delivery_status=d.get("delivery_status"),
        actual_date=_datetime(d, "actual_date"),
        **_actor(d),
    ),
}


@claims_bp.post("/<int:claim_id>/<action>")
def claim_action_route(claim_id: int, action: str):
    """
    Run one workflow action on a claim.

    Request body: action-specific fields plus
    {
        "actor_id": 7,
        "actor_type": "admin",  (optional)
        "storefront_id": 1,  (optional)
        "expected_version": 3  (optional)
    }

    Returns:
        200: updated claim
        400: invalid input
        404: unknown claim or action
        409: illegal transition or concurrent modification
    """
    operation = CLAIM_ACTIONS.get(action)
    if operation is None:
        return jsonify({"error": f"Unknown claim action: {action}"}), 404

    try:
        data = request.get_json() or {}

        claim = claim_service.run_transition(
            claim_id,
            lambda c: operation(c, data),
            storefront_id=data.get("storefront_id"),
            expected_version=data.get("expected_version"),
        )
        return jsonify({"claim": claim_service.claim_view(claim)}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to run claim action %s", action)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TIMELINE
# =============================================================================

@claims_bp.get("/<int:claim_id>/timeline")
def timeline_route(claim_id: int):
    try:
        claim = claim_service.get_claim(claim_id, storefront_id=request.args.get("storefront_id", type=int))
        entries = timeline_service.list_entries(
            claim.id,
            customer_view=request.args.get("view") == "customer",
            event_type=request.args.get("event_type"),
        )
        return jsonify({"timeline": [timeline_service.entry_view(e) for e in entries]}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list claim timeline")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.post("/<int:claim_id>/notes")
def add_note_route(claim_id: int):
    """
    Request body:
    {
        "note": "Called the customer",
        "actor_id": 7,
        "actor_type": "admin",  (optional)
        "customer_visible": false  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        claim = claim_service.get_claim(claim_id, storefront_id=data.get("storefront_id"))
        claim_service.add_note(
            claim,
            note=data.get("note"),
            visible=bool(data.get("customer_visible", False)),
            **_actor(data),
        )
        return jsonify({"claim": claim_service.claim_view(claim)}), 201

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add claim note")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.post("/<int:claim_id>/contacts")
def record_contact_route(claim_id: int):
    try:
        data = request.get_json() or {}
        claim = claim_service.get_claim(claim_id, storefront_id=data.get("storefront_id"))
        claim_service.record_contact(claim, method=data.get("method"), reason=data.get("reason"), **_actor(data))
        return jsonify({"claim": claim_service.claim_view(claim)}), 201

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to record customer contact")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.post("/<int:claim_id>/attachments")
def record_attachment_route(claim_id: int):
    try:
        data = request.get_json() or {}
        claim = claim_service.get_claim(claim_id, storefront_id=data.get("storefront_id"))
        claim_service.record_attachment(
            claim,
            attachment_id=data.get("attachment_id"),
            filename=data.get("filename"),
            **_actor(data),
        )
        return jsonify({"claim": claim_service.claim_view(claim)}), 201

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to record attachment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REPAIR TICKETS
# =============================================================================

TICKET_ACTIONS = {
    "start": lambda t, d: repair_service.start(
        t, d.get("diagnosis"), actor_id=d.get("actor_id"), actor_type=d.get("actor_type") or "technician"
    ),
    "steps": lambda t, d: repair_service.add_repair_step(t, d.get("step")),
    "parts": lambda t, d: repair_service.add_part(
        t,
        part_number=d.get("part_number"),
        part_name=d.get("part_name"),
        quantity=d.get("quantity"),
        unit_cost=d.get("unit_cost"),
        description=d.get("description"),
        supplier=d.get("supplier"),
    ),
    "labor": lambda t, d: repair_service.set_labor(t, hours=d.get("hours"), hourly_rate=d.get("hourly_rate")),
    "tests": lambda t, d: repair_service.add_test_result(
        t,
        test_name=d.get("test_name"),
        result=d.get("result"),
        description=d.get("description"),
        tested_by=d.get("actor_id"),
    ),
    "photos": lambda t, d: repair_service.add_photo(t, d.get("photo_url"), d.get("category")),
    "wait-parts": lambda t, d: repair_service.wait_for_parts(t, d.get("notes")),
    "resume": lambda t, d: repair_service.resume(t),
    "complete": lambda t, d: repair_service.complete(
        t,
        quality_check_passed=bool(d.get("quality_check_passed")),
        quality_notes=d.get("quality_notes"),
        actor_id=d.get("actor_id"),
        actor_type=d.get("actor_type") or "technician",
    ),
    "fail": lambda t, d: repair_service.fail(t, d.get("reason")),
    "cancel": lambda t, d: repair_service.cancel(t, d.get("reason")),
}


@claims_bp.get("/<int:claim_id>/repair-tickets")
def list_tickets_route(claim_id: int):
    try:
        claim = claim_service.get_claim(claim_id, storefront_id=request.args.get("storefront_id", type=int))
        tickets = repair_service.list_tickets(claim_id=claim.id)
        return jsonify({"repair_tickets": [repair_service.ticket_view(t) for t in tickets]}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list repair tickets")
        return jsonify({"error": "Internal server error"}), 500


@claims_bp.post("/<int:claim_id>/repair-tickets/<int:ticket_id>/<action>")
def ticket_action_route(claim_id: int, ticket_id: int, action: str):
    operation = TICKET_ACTIONS.get(action)
    if operation is None:
        return jsonify({"error": f"Unknown repair ticket action: {action}"}), 404

    try:
        data = request.get_json() or {}
        claim = claim_service.get_claim(claim_id, storefront_id=data.get("storefront_id"))
        ticket = repair_service.get_ticket(ticket_id, claim_id=claim.id)
        ticket = operation(ticket, data)
        return jsonify({"repair_ticket": repair_service.ticket_view(ticket)}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to run repair ticket action %s", action)
        return jsonify({"error": "Internal server error"}), 500
