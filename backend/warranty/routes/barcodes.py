# Overview: Flask API routes for warranty barcodes and generation batches; parses input and returns JSON responses.

# backend/warranty/routes/barcodes.py
"""
Warranty Barcode API Routes

- Generate single barcodes and tracked batches
- Look up, validate, distribute and activate barcodes
- Customer-facing warranty info
- Generation health statistics

Authentication is handled upstream; the acting user id travels in the body
as `actor_id`.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import barcode_codec, barcode_generator, barcode_lifecycle, barcode_store
from ..services import batch_service, reporting_service
from warranty.errors import NotFound, ValidationError, WarrantyError
from warranty.time_utils import parse_iso_date, parse_iso_datetime


barcodes_bp = Blueprint("barcodes", __name__, url_prefix="/api/warranty")


def _error(e: WarrantyError):
    return jsonify({"error": e.to_dict()}), e.http_status


def _date_arg(value, field):
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field, value=value)


def _datetime_arg(value, field):
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field} must be an ISO datetime", field=field, value=value)


def _scoped_barcode(barcode_number: str):
    number = barcode_codec.normalize_barcode(barcode_number)
    barcode = barcode_store.get_by_number_or_404(number)
    storefront_id = request.args.get("storefront_id", type=int)
    if storefront_id is not None and barcode.storefront_id != storefront_id:
        raise NotFound("WarrantyBarcode", number)
    return barcode


# =============================================================================
# SINGLE BARCODES
# =============================================================================

@barcodes_bp.post("/barcodes")
def generate_barcode_route():
    """
    Generate one barcode.

    Request body:
    {
        "product_id": 10,
        "storefront_id": 1,
        "warranty_period_months": 12,
        "actor_id": 7
    }

    Returns:
        201: barcode created
        400: invalid input
        503: generation exhausted or store unavailable
    """
    try:
        data = request.get_json() or {}

        barcode = barcode_generator.generate_barcode(
            product_id=data.get("product_id"),
            storefront_id=data.get("storefront_id"),
            created_by=data.get("actor_id"),
            warranty_period_months=data.get("warranty_period_months"),
        )
        return jsonify({"barcode": barcode.to_dict()}), 201

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to generate barcode")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.get("/barcodes")
def list_barcodes_route():
    try:
        storefront_id = request.args.get("storefront_id", type=int)
        if storefront_id is None:
            return jsonify({"error": "storefront_id required"}), 400

        barcodes = barcode_store.list_barcodes(
            storefront_id=storefront_id,
            product_id=request.args.get("product_id", type=int),
            status=request.args.get("status"),
            batch_id=request.args.get("batch_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            limit=min(request.args.get("limit", 200, type=int), 1000),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"barcodes": [b.to_dict() for b in barcodes]}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list barcodes")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.post("/barcodes/validate")
def validate_barcode_route():
    """
    Format check only (no store lookup).

    Returns 200 with {"valid": false, "error": {...}} for a malformed value.
    """
    try:
        data = request.get_json() or {}
        number = barcode_codec.normalize_barcode(data.get("barcode_number") or "")
        try:
            parsed = barcode_codec.parse_barcode(number)
        except ValidationError as e:
            return jsonify({"valid": False, "barcode_number": number, "error": e.to_dict()}), 200

        return jsonify({
            "valid": True,
            "barcode_number": number,
            "year_digits": parsed.year_digits,
            "random_part": parsed.random_part,
        }), 200

    except Exception:
        current_app.logger.exception("Failed to validate barcode")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.get("/barcodes/<barcode_number>")
def lookup_barcode_route(barcode_number: str):
    try:
        barcode = _scoped_barcode(barcode_number)
        return jsonify({"barcode": barcode.to_dict()}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to look up barcode")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.get("/barcodes/<barcode_number>/info")
def warranty_info_route(barcode_number: str):
    try:
        barcode = _scoped_barcode(barcode_number)
        return jsonify({"warranty": barcode_lifecycle.warranty_info(barcode)}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to load warranty info")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.post("/barcodes/<barcode_number>/distribute")
def distribute_barcode_route(barcode_number: str):
    """
    Request body:
    {
        "recipient": "Reseller ABC",
        "notes": "carton 14"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        barcode = _scoped_barcode(barcode_number)
        barcode = barcode_lifecycle.mark_distributed(
            barcode,
            data.get("recipient"),
            batch_id=data.get("batch_id"),
            notes=data.get("notes"),
        )
        return jsonify({"barcode": barcode.to_dict()}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to distribute barcode")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.post("/barcodes/<barcode_number>/activate")
def activate_barcode_route(barcode_number: str):
    """
    Request body:
    {
        "customer_id": 55,
        "purchase_date": "2024-01-15",
        "purchase_location": "Main St store",  (optional)
        "purchase_invoice": "INV-9"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        purchase_date = _date_arg(data.get("purchase_date"), "purchase_date")
        barcode = _scoped_barcode(barcode_number)
        barcode = barcode_lifecycle.activate(
            barcode,
            data.get("customer_id"),
            purchase_date,
            purchase_location=data.get("purchase_location"),
            purchase_invoice=data.get("purchase_invoice"),
        )
        barcode_lifecycle.check_expiry(barcode)
        return jsonify({"barcode": barcode.to_dict()}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to activate barcode")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BATCHES
# =============================================================================

@barcodes_bp.post("/batches")
def generate_batch_route():
    """
    Request body:
    {
        "product_id": 10,
        "storefront_id": 1,
        "quantity": 500,
        "warranty_period_months": 24,
        "actor_id": 7,
        "batch_number": "BATCH-X",  (optional)
        "intended_recipient": "...",  (optional)
        "distribution_notes": "..."  (optional)
    }

    Returns:
        201: batch closed (completed, partial or failed); statistics included
        400: invalid input
        409: batch_number already used
    """
    try:
        data = request.get_json() or {}

        result = batch_service.generate_batch(
            product_id=data.get("product_id"),
            storefront_id=data.get("storefront_id"),
            quantity=data.get("quantity"),
            warranty_period_months=data.get("warranty_period_months"),
            requested_by=data.get("actor_id"),
            batch_number=data.get("batch_number"),
            intended_recipient=data.get("intended_recipient"),
            distribution_notes=data.get("distribution_notes"),
        )
        include_barcodes = bool(data.get("include_barcodes", True))
        return jsonify(result.to_dict(include_barcodes=include_barcodes)), 201

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to generate barcode batch")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.get("/batches")
def list_batches_route():
    try:
        storefront_id = request.args.get("storefront_id", type=int)
        if storefront_id is None:
            return jsonify({"error": "storefront_id required"}), 400

        batches = batch_service.list_batches(
            storefront_id=storefront_id,
            product_id=request.args.get("product_id", type=int),
            status=request.args.get("status"),
            limit=min(request.args.get("limit", 100, type=int), 500),
        )
        return jsonify({"batches": [batch_service.batch_view(b) for b in batches]}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list batches")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.get("/batches/<int:batch_id>")
def get_batch_route(batch_id: int):
    try:
        batch = batch_service.get_batch(batch_id)
        return jsonify({"batch": batch_service.batch_view(batch)}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to get batch")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATISTICS / CONFIG
# =============================================================================

@barcodes_bp.get("/stats/generation")
def generation_stats_route():
    try:
        stats = reporting_service.generation_stats(
            storefront_id=request.args.get("storefront_id", type=int),
            product_id=request.args.get("product_id", type=int),
            start=_datetime_arg(request.args.get("start"), "start"),
            end=_datetime_arg(request.args.get("end"), "end"),
        )
        return jsonify({"stats": stats}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to compute generation stats")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.get("/stats/collisions")
def collision_stats_route():
    try:
        stats = reporting_service.collision_stats(
            start=_datetime_arg(request.args.get("start"), "start"),
            end=_datetime_arg(request.args.get("end"), "end"),
        )
        return jsonify({"stats": stats}), 200

    except WarrantyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to compute collision stats")
        return jsonify({"error": "Internal server error"}), 500


@barcodes_bp.get("/generator")
def generator_config_route():
    return jsonify({"generator": barcode_generator.describe()}), 200
