"""Quoting routes for the internal form and the public website form.

Both are assisted channels: a missing pricing configuration falls back to
reference prices and sub-floor orders are priced at the surcharge tier and
flagged for manual review instead of being rejected.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from corrucalc.db.models import PublicQuoteModel
from corrucalc.exceptions import ValidationFailed
from corrucalc.models import BoxSpec, ContactInfo
from corrucalc.notifications.leads import LeadKind, LeadNotification
from corrucalc.pricing.assembler import parse_boxes
from corrucalc.pricing.geometry import MIN_STANDARD, is_undersized
from corrucalc.pricing.shipping import (
    delivery_date,
    is_free_shipping,
    payment_amounts,
    shipping_notes,
)
from corrucalc.web.dependencies import Services, get_services
from corrucalc.web.rate_limit import get_client_identifier

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["Quotes"])

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationFailed([], message="Invalid JSON body") from None
    if not isinstance(payload, dict):
        raise ValidationFailed([], message="Request body must be a JSON object")
    return payload


def _distance(raw: Any, field: str = "client_distance_km") -> Decimal | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationFailed([f"{field} must be a number"])
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValidationFailed([f"{field} must be a number"]) from None
    if not value.is_finite():
        raise ValidationFailed([f"{field} must be a number"])
    if value < 0:
        raise ValidationFailed([f"{field} must be zero or positive"])
    return value


def _reject_undersized(boxes: list[BoxSpec]) -> None:
    errors = [
        f"boxes[{index}] {box.describe()} es menor al tamaño mínimo permitido "
        f"({MIN_STANDARD[0]}x{MIN_STANDARD[1]}x{MIN_STANDARD[2]} mm)"
        for index, box in enumerate(boxes)
        if is_undersized(box.length_mm, box.width_mm, box.height_mm)
    ]
    if errors:
        raise ValidationFailed(errors)


@router.post("/quotes/calculate")
async def calculate_quote(request: Request, services: Services = Depends(get_services)):
    """Price a quote for the internal form without storing it.

    Adds shipping evaluation, the 50/50 payment split and the estimated
    delivery date (business days) on top of the shared quote.
    """
    payload = await _json_object(request)
    boxes = parse_boxes(payload.get("boxes"), services.config.quote.max_lines)
    _reject_undersized(boxes)
    distance_km = _distance(payload.get("client_distance_km"))

    config = await services.pricing.get_active_or_fallback()
    quote = services.assembler.assemble(boxes, config, strict=False)

    notes = shipping_notes(quote.total_m2, distance_km, config)
    free_shipping = is_free_shipping(quote.total_m2, distance_km, config)
    warnings = list(quote.warnings)
    if distance_km is not None and not free_shipping:
        warnings.append(notes)
    deposit, balance = payment_amounts(quote.subtotal)

    logger.info(
        "quote_computed",
        channel="internal",
        lines=len(quote.boxes),
        total_m2=str(quote.total_m2),
        subtotal=str(quote.subtotal),
        below_minimum=quote.below_minimum,
    )
    return {
        "quote": quote.model_dump(mode="json", exclude={"warnings"}),
        "shipping": {"free": free_shipping, "notes": notes},
        "payment": {"deposit": float(deposit), "balance": float(balance)},
        "production_days": quote.estimated_days,
        "estimated_delivery": delivery_date(quote.estimated_days).isoformat(),
        "warnings": warnings,
    }


def _validate_requester(payload: dict[str, Any]) -> list[str]:
    errors = []
    if not str(payload.get("requester_name") or "").strip():
        errors.append("El nombre es requerido")
    email = str(payload.get("requester_email") or "").strip()
    if not email:
        errors.append("El email es requerido")
    elif not EMAIL_RE.match(email):
        errors.append("El email no es válido")
    if not str(payload.get("requester_phone") or "").strip():
        errors.append("El teléfono es requerido")
    return errors


@router.post("/public/quotes", status_code=status.HTTP_201_CREATED)
async def create_public_quote(request: Request, services: Services = Depends(get_services)):
    """Website quoting form: price one box and store the requester as a lead."""
    payload = await _json_object(request)

    errors = _validate_requester(payload)
    box_fields = {
        name: payload.get(name)
        for name in ("length_mm", "width_mm", "height_mm", "quantity", "has_printing", "printing_colors")
        if payload.get(name) is not None
    }
    try:
        boxes = parse_boxes([box_fields], max_lines=1)
    except ValidationFailed as e:
        errors.extend(e.errors)
        boxes = []
    min_quantity = services.config.session.min_quantity
    if boxes and boxes[0].quantity < min_quantity:
        errors.append(f"La cantidad mínima es {min_quantity} unidades")
    try:
        distance_km = _distance(payload.get("distance_km"), "distance_km")
    except ValidationFailed as e:
        errors.extend(e.errors)
        distance_km = None
    if errors:
        raise ValidationFailed(errors, message=". ".join(errors))

    config = await services.pricing.get_active_or_fallback()
    quote = services.assembler.assemble(boxes, config, strict=False)
    line = quote.boxes[0]

    contact = ContactInfo(
        name=str(payload["requester_name"]).strip(),
        email=str(payload["requester_email"]).strip().lower(),
        phone=re.sub(r"\D", "", str(payload["requester_phone"])),
        company=str(payload.get("requester_company") or "").strip() or None,
        notes=str(payload.get("message") or "").strip() or None,
    )
    source_ip = get_client_identifier(request)
    row = PublicQuoteModel(
        requester_name=contact.name,
        requester_email=contact.email,
        requester_phone=contact.phone,
        requester_company=contact.company,
        message=contact.notes,
        distance_km=distance_km,
        boxes=[line.model_dump(mode="json")],
        total_m2=quote.total_m2,
        price_per_m2=line.price_per_m2,
        subtotal=quote.subtotal,
        estimated_days=quote.estimated_days,
        valid_until=quote.valid_until,
        below_minimum=quote.below_minimum,
        source_ip=source_ip,
        source_user_agent=(request.headers.get("user-agent") or "unknown")[:500],
    )
    async with services.session_scope() as session:
        session.add(row)
        await session.flush()
        quote_id = str(row.id)

    services.notify(
        LeadNotification.from_quote(
            LeadKind.WEB_FORM_LEAD, quote, "Web", contact=contact, source_ip=source_ip
        )
    )
    if quote.subtotal >= services.config.quote.high_value_threshold:
        services.notify(
            LeadNotification.from_quote(
                LeadKind.HIGH_VALUE_QUOTE, quote, "Web", source_ip=source_ip
            )
        )

    logger.info(
        "public_quote_saved",
        quote_id=quote_id,
        subtotal=str(quote.subtotal),
        below_minimum=quote.below_minimum,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "id": quote_id,
            "status": "pending",
            "below_minimum": quote.below_minimum,
            "quote": quote.model_dump(mode="json"),
            "shipping_free": is_free_shipping(quote.total_m2, distance_km, config),
        },
    )
