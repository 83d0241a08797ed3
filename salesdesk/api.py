# salesdesk/api.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from .errors import ValidationError
from .serializers import (
    communication_dict,
    customer_dict,
    follow_up_dict,
    history_dict,
    invoice_dict,
    metrics_dict,
    order_dict,
    quotation_dict,
)
from .services.communications import CommunicationData, SendFollowUpMessageData
from .services.follow_ups import FollowUpData
from .services.invoices import PaymentInfo
from .services.quotations import QuotationLine, QuotationRequest

api = Blueprint("api", __name__, url_prefix="/api")


# ======================
# Helpers
# ======================
def _services():
    return current_app.extensions["salesdesk"]


def _body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _actor() -> str | None:
    return getattr(current_user, "id", None)


def _required(payload: dict, key: str):
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{key} is required", field=key)
    return value


def _parse_datetime(value, field: str) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        # fromisoformat only learned "Z" in 3.11
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)


def _parse_int(value, field: str, default: int) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)


# =========================================================
# Quotations
# =========================================================
@api.route("/quotations", methods=["POST"])
@login_required
def create_quotation():
    payload = _body()
    items = payload.get("items") or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list", field="items")

    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", field="items")
        lines.append(QuotationLine(product_id=_required(raw, "product_id"), quantity=raw.get("quantity")))

    quotation = _services().quotations.create_quotation(
        QuotationRequest(
            customer_id=_required(payload, "customer_id"),
            items=lines,
            shipping_address_id=payload.get("shipping_address_id"),
            notes=payload.get("notes"),
        )
    )
    return jsonify(quotation_dict(quotation)), 201


@api.route("/quotations", methods=["GET"])
@login_required
def list_quotations():
    quotations = _services().quotations.list_quotations(request.args.get("status"))
    return jsonify([quotation_dict(q) for q in quotations])


@api.route("/quotations/<quotation_id>", methods=["GET"])
@login_required
def get_quotation(quotation_id):
    quotation = _services().quotations.get_quotation(quotation_id)
    return jsonify(quotation_dict(quotation, with_history=True))


@api.route("/quotations/<quotation_id>/status", methods=["PATCH"])
@login_required
def update_quotation_status(quotation_id):
    payload = _body()
    quotation = _services().quotations.update_quotation_status(
        quotation_id,
        _required(payload, "status"),
        _actor(),
        notes=payload.get("notes"),
    )
    return jsonify(quotation_dict(quotation))


@api.route("/quotations/<quotation_id>/convert", methods=["POST"])
@login_required
def convert_quotation(quotation_id):
    order_id = _services().quotations.convert_to_order(quotation_id, _actor())
    current_app.logger.info("Quotation %s converted by %s", quotation_id, _actor())
    return jsonify(order_id=order_id), 201


@api.route("/quotations/<quotation_id>/follow-ups", methods=["POST"])
@login_required
def schedule_quotation_follow_up(quotation_id):
    payload = _body()
    follow_up = _services().quotations.schedule_follow_up(
        quotation_id,
        _parse_datetime(_required(payload, "scheduled_at"), "scheduled_at"),
        _actor(),
        notes=payload.get("notes"),
    )
    return jsonify(follow_up_dict(follow_up)), 201


# =========================================================
# Orders
# =========================================================
@api.route("/orders", methods=["GET"])
@login_required
def list_orders():
    orders = _services().orders.list_orders(request.args.get("status"))
    return jsonify([order_dict(o) for o in orders])


@api.route("/orders/<order_id>", methods=["GET"])
@login_required
def get_order(order_id):
    order = _services().orders.get_order(order_id)
    return jsonify(order_dict(order, with_history=True))


@api.route("/orders/<order_id>/status", methods=["PATCH"])
@login_required
def update_order_status(order_id):
    payload = _body()
    order = _services().orders.update_order_status(
        order_id,
        _required(payload, "status"),
        _actor(),
        notes=payload.get("notes"),
    )
    return jsonify(order_dict(order))


@api.route("/orders/<order_id>/tracking", methods=["POST"])
@login_required
def add_tracking_number(order_id):
    payload = _body()
    order = _services().orders.add_tracking_number(order_id, payload.get("tracking_number"), _actor())
    return jsonify(order_dict(order))


@api.route("/orders/<order_id>/invoice", methods=["POST"])
@login_required
def generate_invoice(order_id):
    invoice = _services().orders.generate_invoice(order_id)
    return jsonify(invoice_dict(invoice)), 201


# =========================================================
# Invoices
# =========================================================
@api.route("/invoices/<invoice_id>", methods=["GET"])
@login_required
def get_invoice(invoice_id):
    return jsonify(invoice_dict(_services().invoices.get_invoice(invoice_id)))


@api.route("/invoices/<invoice_id>/payment", methods=["POST"])
@login_required
def process_payment(invoice_id):
    payload = _body()
    invoice = _services().orders.process_payment(
        invoice_id,
        PaymentInfo(
            payment_method=_required(payload, "payment_method"),
            paid_at=_parse_datetime(payload.get("paid_at"), "paid_at"),
            notes=payload.get("notes"),
        ),
    )
    return jsonify(invoice_dict(invoice))


@api.route("/invoices/<invoice_id>/tax-invoice", methods=["POST"])
@login_required
def request_tax_invoice(invoice_id):
    invoice = _services().invoices.request_tax_invoice(invoice_id)
    return jsonify(invoice_dict(invoice))


# =========================================================
# Communications
# =========================================================
@api.route("/communications", methods=["POST"])
@login_required
def log_communication():
    payload = _body()
    communication = _services().communications.log_communication(
        CommunicationData(
            customer_id=_required(payload, "customer_id"),
            type=_required(payload, "type"),
            direction=_required(payload, "direction"),
            content=_required(payload, "content"),
            admin_user_id=_actor(),
            quotation_id=payload.get("quotation_id"),
            order_id=payload.get("order_id"),
            status=payload.get("status"),
            external_id=payload.get("external_id"),
        )
    )
    return jsonify(communication_dict(communication)), 201


@api.route("/customers/<customer_id>/communications", methods=["GET"])
@login_required
def customer_communications(customer_id):
    history = _services().communications.get_customer_communication_history(
        customer_id,
        limit=_parse_int(request.args.get("limit"), "limit", 50),
        offset=_parse_int(request.args.get("offset"), "offset", 0),
    )
    return jsonify(history_dict(history))


@api.route("/communications/metrics", methods=["GET"])
@login_required
def communication_metrics():
    metrics = _services().metrics.get_communication_metrics(
        start_date=_parse_datetime(request.args.get("start_date"), "start_date"),
        end_date=_parse_datetime(request.args.get("end_date"), "end_date"),
        admin_user_id=request.args.get("admin_user_id") or None,
    )
    return jsonify(metrics_dict(metrics))


# =========================================================
# Follow-ups
# =========================================================
@api.route("/follow-ups", methods=["POST"])
@login_required
def schedule_follow_up():
    payload = _body()
    follow_up = _services().follow_ups.schedule_follow_up(
        FollowUpData(
            customer_id=_required(payload, "customer_id"),
            type=_required(payload, "type"),
            scheduled_at=_parse_datetime(_required(payload, "scheduled_at"), "scheduled_at"),
            admin_user_id=_actor(),
            quotation_id=payload.get("quotation_id"),
            order_id=payload.get("order_id"),
            notes=payload.get("notes"),
        )
    )
    return jsonify(follow_up_dict(follow_up)), 201


@api.route("/follow-ups/today", methods=["GET"])
@login_required
def todays_follow_ups():
    mine = request.args.get("mine") in ("1", "true", "yes")
    follow_ups = _services().follow_ups.get_todays_pending_follow_ups(_actor() if mine else None)
    return jsonify([follow_up_dict(f) for f in follow_ups])


@api.route("/follow-ups/overdue", methods=["GET"])
@login_required
def overdue_follow_ups():
    mine = request.args.get("mine") in ("1", "true", "yes")
    follow_ups = _services().follow_ups.get_overdue_follow_ups(_actor() if mine else None)
    return jsonify([follow_up_dict(f) for f in follow_ups])


@api.route("/follow-ups/<follow_up_id>/complete", methods=["POST"])
@login_required
def complete_follow_up(follow_up_id):
    payload = _body()
    follow_up = _services().follow_ups.complete_follow_up(follow_up_id, payload.get("notes"))
    return jsonify(follow_up_dict(follow_up))


@api.route("/follow-ups/<follow_up_id>/cancel", methods=["POST"])
@login_required
def cancel_follow_up(follow_up_id):
    payload = _body()
    follow_up = _services().follow_ups.cancel_follow_up(follow_up_id, payload.get("notes"))
    return jsonify(follow_up_dict(follow_up))


@api.route("/follow-ups/send-message", methods=["POST"])
@login_required
def send_follow_up_message():
    payload = _body()
    parameters = payload.get("parameters") or {}
    if not isinstance(parameters, dict):
        raise ValidationError("parameters must be an object", field="parameters")

    result = _services().communications.send_follow_up_message(
        SendFollowUpMessageData(
            customer_id=_required(payload, "customer_id"),
            template_name=_required(payload, "template_name"),
            admin_user_id=_actor(),
            quotation_id=payload.get("quotation_id"),
            parameters={str(k): str(v) for k, v in parameters.items()},
            scheduled_at=_parse_datetime(payload.get("scheduled_at"), "scheduled_at"),
            notes=payload.get("notes"),
        )
    )
    return jsonify(
        message_id=result.message_id,
        communication=communication_dict(result.communication) if result.communication else None,
        follow_up=follow_up_dict(result.follow_up) if result.follow_up else None,
    ), 201


# =========================================================
# Customers
# =========================================================
@api.route("/customers/<customer_id>", methods=["GET"])
@login_required
def get_customer(customer_id):
    customer = _services().customers.get_customer(customer_id)
    return jsonify(customer_dict(customer))
