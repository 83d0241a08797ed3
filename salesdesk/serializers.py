# salesdesk/serializers.py
from __future__ import annotations

from dataclasses import asdict


def _dt(value):
    return value.isoformat() if value else None


def _enum(value):
    try:
        return value.value
    except AttributeError:
        return value


# ======================
# Customers
# ======================
def customer_dict(c) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "email": c.email,
        "phone": c.phone,
        "type": _enum(c.type),
        "company_id": c.company_id,
        "npwp": c.npwp,
    }


def address_dict(a) -> dict | None:
    if a is None:
        return None
    return {
        "id": a.id,
        "label": a.label,
        "address": a.address,
        "city": a.city,
        "province": a.province,
        "postal_code": a.postal_code,
        "country": a.country,
    }


# ======================
# Documents
# ======================
def _line(item) -> dict:
    return {
        "product_id": item.product_id,
        "position": item.position,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "total_price": item.total_price,
    }


def status_log_dict(log) -> dict:
    return {
        "from_status": _enum(log.from_status),
        "to_status": _enum(log.to_status),
        "notes": log.notes,
        "admin_user_id": log.admin_user_id,
        "created_at": _dt(log.created_at),
    }


def quotation_dict(q, with_history: bool = False) -> dict:
    out = {
        "id": q.id,
        "quotation_number": q.quotation_number,
        "customer_id": q.customer_id,
        "status": _enum(q.status),
        "subtotal": q.subtotal,
        "tax_amount": q.tax_amount,
        "total_amount": q.total_amount,
        "valid_until": _dt(q.valid_until),
        "shipping_address": address_dict(q.shipping_address),
        "converted_order_id": q.converted_order_id,
        "notes": q.notes,
        "items": [_line(i) for i in q.items],
        "created_at": _dt(q.created_at),
        "updated_at": _dt(q.updated_at),
    }
    if with_history:
        out["status_history"] = [status_log_dict(log) for log in q.status_logs]
    return out


def order_dict(o, with_history: bool = False) -> dict:
    out = {
        "id": o.id,
        "order_number": o.order_number,
        "quotation_id": o.quotation_id,
        "customer_id": o.customer_id,
        "status": _enum(o.status),
        "subtotal": o.subtotal,
        "tax_amount": o.tax_amount,
        "total_amount": o.total_amount,
        "shipping_address": address_dict(o.shipping_address),
        "tracking_number": o.tracking_number,
        "shipped_at": _dt(o.shipped_at),
        "delivered_at": _dt(o.delivered_at),
        "invoice_id": o.invoice.id if o.invoice else None,
        "items": [
            dict(_line(i), product_name=i.product_name, product_sku=i.product_sku)
            for i in o.items
        ],
        "created_at": _dt(o.created_at),
        "updated_at": _dt(o.updated_at),
    }
    if with_history:
        out["status_history"] = [status_log_dict(log) for log in o.status_logs]
    return out


def invoice_dict(inv) -> dict:
    return {
        "id": inv.id,
        "invoice_number": inv.invoice_number,
        "order_id": inv.order_id,
        "customer_id": inv.customer_id,
        "status": _enum(inv.status),
        "subtotal": inv.subtotal,
        "tax_amount": inv.tax_amount,
        "total_amount": inv.total_amount,
        "due_date": _dt(inv.due_date),
        "paid_at": _dt(inv.paid_at),
        "payment_method": inv.payment_method,
        "payment_notes": inv.payment_notes,
        "tax_invoice_requested": inv.tax_invoice_requested,
        "items": [dict(_line(i), description=i.description) for i in inv.items],
        "created_at": _dt(inv.created_at),
    }


# ======================
# Communication
# ======================
def communication_dict(c) -> dict:
    return {
        "id": c.id,
        "customer_id": c.customer_id,
        "quotation_id": c.quotation_id,
        "order_id": c.order_id,
        "type": _enum(c.type),
        "direction": _enum(c.direction),
        "status": _enum(c.status),
        "content": c.content,
        "external_id": c.external_id,
        "admin_user_id": c.admin_user_id,
        "created_at": _dt(c.created_at),
    }


def follow_up_dict(f) -> dict:
    return {
        "id": f.id,
        "customer_id": f.customer_id,
        "quotation_id": f.quotation_id,
        "order_id": f.order_id,
        "type": _enum(f.type),
        "status": _enum(f.status),
        "scheduled_at": _dt(f.scheduled_at),
        "completed_at": _dt(f.completed_at),
        "notes": f.notes,
        "admin_user_id": f.admin_user_id,
        "created_at": _dt(f.created_at),
    }


def history_dict(h) -> dict:
    return {
        "communications": [communication_dict(c) for c in h.communications],
        "follow_ups": [follow_up_dict(f) for f in h.follow_ups],
        "total_communications": h.total_communications,
        "total_follow_ups": h.total_follow_ups,
        "last_communication": communication_dict(h.last_communication) if h.last_communication else None,
        "next_follow_up": follow_up_dict(h.next_follow_up) if h.next_follow_up else None,
    }


def metrics_dict(m) -> dict:
    return asdict(m)
