from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from qbu_api.core.errors import ApiError, bad_request, not_configured, server_error
from qbu_api.db.capabilities import SchemaCapabilities, get_schema_capabilities
from qbu_api.db.session import get_db, get_session_factory
from qbu_api.dependencies.auth import get_optional_user_id
from qbu_api.schemas.print_order import (
    CustomerIn,
    PrintQuoteIn,
    PrintQuoteOut,
    PrintSubmitIn,
    PrintSubmitOut,
    QuoteSummaryOut,
    ScaleOut,
    TelemetryIn,
)
from qbu_api.services import side_effects
from qbu_api.services.admin_email import PrintRequestNotice
from qbu_api.services.order_email import OrderEmail
from qbu_api.services.print_orders import (
    OrderInsertFailed,
    PricedOrder,
    PrintOrderError,
    build_order_values,
    guess_zone,
    insert_order,
    prepare_model,
    price_order,
)
from qbu_api.services.repository import PricingRepository, get_pricing_repository
from qbu_api.services.shipping_crypto import (
    ShippingCryptoError,
    ShippingKeyMissing,
    ShippingInfo,
    email_hash,
    encrypt_shipping,
    is_valid_postal_code,
    postal_code_prefix,
    postal_code_prefix_from_address,
)
from qbu_api.services.tickets import TicketInvalid

logger = logging.getLogger(__name__)

router = APIRouter(tags=["print"])

ANON_COOKIE = "qbu_anon"


def _anon_and_session(request: Request, telemetry: Optional[TelemetryIn]) -> tuple[Optional[str], Optional[str]]:
    anon = (telemetry.anon_id if telemetry else None) or request.cookies.get(ANON_COOKIE) or ""
    sess = (telemetry.session_id if telemetry else None) or ""
    return (anon[:80] or None, sess[:80] or None)


def _invalid_ticket(e: TicketInvalid) -> ApiError:
    return bad_request("invalid_ticket", e.message, reason=e.reason.value)


def _price(
    repo: PricingRepository,
    body_draft,
    customer: Optional[CustomerIn],
    *,
    user_id: Optional[uuid.UUID],
    anon_id: Optional[str],
) -> PricedOrder:
    try:
        model = prepare_model(body_draft)
    except PrintOrderError as e:
        raise bad_request(e.code, e.message)

    zone = guess_zone(customer.prefecture, customer.full_address) if customer else None
    ticket_code = customer.ticket_code if customer else None

    try:
        return price_order(repo, model, zone=zone, ticket_code=ticket_code, user_id=user_id, anon_id=anon_id)
    except TicketInvalid as e:
        raise _invalid_ticket(e)


def _quote_out(priced: PricedOrder) -> QuoteSummaryOut:
    return QuoteSummaryOut(**priced.quote.summary())


# =========================================================
# Quote (preview, no persistence)
# =========================================================
@router.post("/print/quote", response_model=PrintQuoteOut)
def quote_print_order(
    body: PrintQuoteIn,
    request: Request,
    repo: PricingRepository = Depends(get_pricing_repository),
    user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
):
    anon_id, _ = _anon_and_session(request, body.telemetry)
    priced = _price(repo, body.draft, body.customer, user_id=user_id, anon_id=anon_id)
    s = priced.model.scale
    return PrintQuoteOut(
        quote=_quote_out(priced),
        volume_cm3=priced.print_quote.volume_cm3,
        scale=ScaleOut(
            mode=s.mode,
            mm_per_unit=s.mm_per_unit,
            max_side_mm=s.max_side_mm,
            warn_too_large=s.warn_too_large,
        ),
        breakdown=priced.quote.breakdown,
        ticket_id=priced.ticket.id if priced.ticket else None,
    )


# =========================================================
# Submit
# =========================================================
@router.post("/print/submit", response_model=PrintSubmitOut)
def submit_print_order(
    body: PrintSubmitIn,
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    repo: PricingRepository = Depends(get_pricing_repository),
    caps: SchemaCapabilities = Depends(get_schema_capabilities),
    session_factory: sessionmaker = Depends(get_session_factory),
    user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
):
    draft = body.draft
    customer = body.customer

    if not draft.blocks:
        raise bad_request("no_blocks")

    address = customer.full_address
    if not customer.name or not customer.email or not address:
        raise bad_request("missing_customer_fields")

    if customer.postal_code and not is_valid_postal_code(customer.postal_code):
        raise bad_request("invalid_postal_code", "郵便番号の形式が正しくありません（例: 123-4567）。")

    anon_id, session_id = _anon_and_session(request, body.telemetry)
    priced = _price(repo, draft, customer, user_id=user_id, anon_id=anon_id)
    q = priced.quote

    # secure shipping
    shipping = ShippingInfo(
        name=customer.name,
        email=customer.email,
        address=address,
        phone=customer.phone,
        postal_code=customer.postal_code,
        prefecture=customer.prefecture,
        city=customer.city,
        town=customer.town,
        address_line2=customer.address_line2,
    )
    try:
        shipping_enc = encrypt_shipping(shipping)
    except ShippingKeyMissing:
        logger.error("shipping encryption key is not configured")
        raise not_configured("shipping_encryption", "配送先の暗号化キーが未設定です。")
    except ShippingCryptoError as e:
        logger.exception("shipping encryption failed")
        raise server_error("shipping_encrypt_failed", str(e))

    order_id = uuid.uuid4()
    values = build_order_values(
        priced,
        draft,
        order_id=order_id,
        user_id=user_id,
        anon_id=anon_id,
        session_id=session_id,
        customer_note=customer.notes,
    )

    try:
        insert_order(
            db,
            caps,
            values,
            shipping_enc=shipping_enc,
            email_hash=email_hash(customer.email),
            postal_code_prefix=postal_code_prefix(customer.postal_code) or postal_code_prefix_from_address(address),
        )
    except OrderInsertFailed as e:
        raise server_error("order_insert_failed", str(e))

    # ---- best-effort side effects ----
    submitted_at = datetime.now(timezone.utc)
    model_name = draft.base_name or "Q-BU"
    ticket = priced.ticket
    if ticket is not None:
        background.add_task(
            side_effects.record_ticket_redemption,
            session_factory,
            ticket_id=ticket.id,
            order_id=order_id,
            user_id=user_id,
            anon_id=anon_id,
            discount_yen=q.discount_yen,
            snapshot={
                **ticket.snapshot(),
                "shipping_waived": ticket.waives_shipping,
                "total_before": q.total_before_discount_yen,
                "total_after": q.total_yen,
            },
        )

    s = priced.model.scale
    background.add_task(
        side_effects.record_event,
        session_factory,
        event_name="order_submitted",
        path="/print",
        anon_id=anon_id,
        session_id=session_id,
        user_id=user_id,
        payload={
            "order_id": str(order_id),
            "pricing_config_id": priced.pricing_config_id,
            "shipping_config_id": q.shipping_config_id,
            "model_fingerprint": draft.model_fingerprint,
            "block_count": len(priced.model.base),
            "support_block_count": len(priced.model.support),
            "max_side_mm": s.max_side_mm,
            "mm_per_unit": s.mm_per_unit,
            "scale_mode": s.mode,
            "quote_subtotal_yen": q.item_subtotal_yen,
            "shipping_yen": q.shipping_yen,
            "discount_yen": q.discount_yen,
            "ticket_id": str(ticket.id) if ticket else None,
            "quote_total_yen": q.total_yen,
            "warn_too_large": bool(s.warn_too_large),
        },
        user_agent=request.headers.get("user-agent"),
        accept_language=request.headers.get("accept-language"),
    )

    background.add_task(
        side_effects.send_order_email_safe,
        OrderEmail(
            to=customer.email,
            customer_name=customer.name,
            order_id=str(order_id),
            created_at=submitted_at,
            model_name=model_name,
            model_fingerprint=draft.model_fingerprint,
            size_max_mm=s.max_side_mm,
            mm_per_unit=s.mm_per_unit,
            block_count=len(priced.model.base),
            support_block_count=len(priced.model.support),
            volume_cm3=priced.print_quote.volume_cm3,
            subtotal_yen=q.item_subtotal_yen,
            shipping_yen=q.shipping_yen,
            shipping_waived=bool(q.breakdown["shipping"]["waived"]),
            discount_yen=q.discount_yen,
            total_yen=q.total_yen,
            ticket_code_used=customer.ticket_code,
        ),
    )

    background.add_task(
        side_effects.notify_admins_print_request,
        session_factory,
        PrintRequestNotice(
            order_id=str(order_id),
            created_at=submitted_at,
            model_name=model_name,
            customer_name=customer.name,
            customer_email=customer.email,
            address=address,
            phone=customer.phone,
            postal_code=customer.postal_code,
            item_subtotal_yen=q.item_subtotal_yen,
            shipping_yen=q.shipping_yen,
            discount_yen=q.discount_yen,
            total_yen=q.total_yen,
            ticket_apply_scope=q.ticket_apply_scope,
            shipping_zone=q.shipping_zone,
            shipping_size_tier=q.shipping_size_tier,
        ),
    )

    return PrintSubmitOut(
        order_id=order_id,
        quote=_quote_out(priced),
        ticket_id=ticket.id if ticket else None,
    )
