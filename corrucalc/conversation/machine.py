"""Step-indexed WhatsApp quoting dialog.

Each inbound message is one turn:

1. Media attachments are rejected without touching the session.
2. Global commands (cancel, closing phrases) short-circuit any step.
3. The handler for the current step runs its deterministic parser.
4. On a parse miss: keyword shortcuts (advisor, shipping), then the intent
   classifier, then a step-specific re-prompt.

A turn runs inside `SessionStore.transaction`, so the session is written only
if the turn completes. Any exception is logged and answered with a generic
re-prompt while the session stays at its previous step.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from corrucalc.config import MessagingConfig, SessionConfig
from corrucalc.conversation import messages
from corrucalc.conversation.classifier import UNKNOWN, Classification, IntentClassifier
from corrucalc.conversation.parsers import (
    OneShotRequest,
    ParsedDimensions,
    QuotedChoice,
    is_advisor_request,
    is_cancel,
    is_closing,
    is_greeting,
    is_quote_request,
    is_shipping_question,
    is_template_request,
    parse_client_type,
    parse_company_info,
    parse_dimensions,
    parse_name,
    parse_one_shot,
    parse_printing,
    parse_quantity,
    parse_quoted_choice,
)
from corrucalc.conversation.session_store import SessionStore, SessionTransaction
from corrucalc.models import (
    BoxDimensions,
    BoxSpec,
    ClientType,
    ContactInfo,
    ConversationSession,
    ConversationStep,
    Intent,
    LastQuote,
    Quote,
)
from corrucalc.notifications.leads import LeadKind, LeadNotification
from corrucalc.pricing.assembler import QuoteAssembler, validate_box
from corrucalc.pricing.config_source import PricingConfigRepository
from corrucalc.pricing.geometry import MIN_STANDARD, is_undersized

logger = logging.getLogger(__name__)

Handler = Callable[[SessionTransaction, str], Awaitable[str]]
Notify = Callable[[LeadNotification], None]

# Fields that survive a confirmed order or a closing phrase
_IDENTITY_FIELDS = ("client_type", "client_name", "company_name", "client_email", "last_quote")


def _identity(session: ConversationSession) -> dict:
    return {name: getattr(session, name) for name in _IDENTITY_FIELDS}


class ConversationEngine:
    """Drives one conversation turn at a time.

    Args:
        store: Session persistence
        pricing: Active pricing source (assisted channel: fallback allowed)
        assembler: Shared quote assembler
        classifier: Intent fallback for unparsed messages
        settings: Session limits (minimum quantity, max sheet width)
        messaging: Business contact data for advisor replies
        notify: Non-blocking sink for team notifications
    """

    def __init__(
        self,
        store: SessionStore,
        pricing: PricingConfigRepository,
        assembler: QuoteAssembler,
        classifier: IntentClassifier,
        settings: SessionConfig | None = None,
        messaging: MessagingConfig | None = None,
        notify: Notify | None = None,
    ):
        self.store = store
        self.pricing = pricing
        self.assembler = assembler
        self.classifier = classifier
        self.settings = settings or SessionConfig()
        self.messaging = messaging or MessagingConfig()
        self.notify = notify or (lambda notification: None)

        self._handlers: dict[ConversationStep, Handler] = {
            ConversationStep.INITIAL: self._on_initial,
            ConversationStep.WAITING_CLIENT_TYPE: self._on_client_type,
            ConversationStep.WAITING_NAME: self._on_name,
            ConversationStep.WAITING_COMPANY_INFO: self._on_company_info,
            ConversationStep.WAITING_DIMENSIONS: self._on_dimensions,
            ConversationStep.WAITING_QUANTITY: self._on_quantity,
            ConversationStep.WAITING_PRINTING: self._on_printing,
            ConversationStep.QUOTED: self._on_quoted,
        }
        missing = set(ConversationStep) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for steps: {sorted(s.value for s in missing)}")

    async def handle(self, address: str, body: str, num_media: int = 0) -> str:
        """Process one inbound message and return the reply text."""
        if num_media > 0:
            logger.info("conversation_media_rejected address=%s count=%s", address, num_media)
            return messages.unsupported_media()

        text = (body or "").strip()
        try:
            async with self.store.transaction(address) as txn:
                step = txn.session.step
                reply = await self._dispatch(txn, text)
            logger.info(
                "conversation_turn address=%s step=%s next=%s",
                address, step.value, txn.session.step.value,
            )
        except Exception:
            logger.exception("conversation_turn_failed address=%s", address)
            return messages.generic_reprompt()
        return reply

    async def _dispatch(self, txn: SessionTransaction, text: str) -> str:
        if is_cancel(text):
            txn.clear()
            return messages.cancelled()
        if is_closing(text) and not self._assents_to_quote(txn, text):
            txn.reset(**_identity(txn.session))
            return messages.farewell()
        return await self._handlers[txn.session.step](txn, text)

    @staticmethod
    def _assents_to_quote(txn: SessionTransaction, text: str) -> bool:
        return (
            txn.session.step == ConversationStep.QUOTED
            and parse_quoted_choice(text) == QuotedChoice.CONFIRM
        )

    def _emit(self, txn: SessionTransaction, notification: LeadNotification) -> None:
        # Released only after the session write succeeds
        txn.on_commit(lambda: self.notify(notification))

    # Step handlers

    async def _on_initial(self, txn: SessionTransaction, text: str) -> str:
        one_shot = parse_one_shot(text)
        if one_shot is not None:
            return await self._quote_one_shot(txn, one_shot)
        if is_advisor_request(text):
            return self._advisor(txn)
        if is_shipping_question(text):
            return await self._shipping()

        session = txn.session
        if session.last_quote is not None:
            txn.update(step=ConversationStep.WAITING_DIMENSIONS)
        else:
            txn.update(step=ConversationStep.WAITING_CLIENT_TYPE)
        return messages.welcome(session)

    async def _on_client_type(self, txn: SessionTransaction, text: str) -> str:
        client_type = parse_client_type(text)
        classification: Classification | None = None
        if client_type is None and self._keyword_shortcut(text) is None:
            classification = await self._classify(text, txn.session.step)
            if classification.intent == Intent.CLIENT_PARTICULAR:
                client_type = ClientType.PARTICULAR
            elif classification.intent == Intent.CLIENT_EMPRESA:
                client_type = ClientType.EMPRESA

        if client_type == ClientType.PARTICULAR:
            txn.update(client_type=client_type, step=ConversationStep.WAITING_NAME)
            return messages.ask_name()
        if client_type == ClientType.EMPRESA:
            txn.update(client_type=client_type, step=ConversationStep.WAITING_COMPANY_INFO)
            return messages.ask_company_info()
        return await self._fallback(txn, text, messages.ask_client_type(), classification)

    async def _on_name(self, txn: SessionTransaction, text: str) -> str:
        name = None
        if not (self._keyword_shortcut(text) or is_greeting(text)):
            name = parse_name(text)
        if name is None:
            return await self._fallback(txn, text, messages.ask_name())

        txn.update(client_name=name, step=ConversationStep.WAITING_DIMENSIONS)
        return messages.ask_dimensions(name)

    async def _on_company_info(self, txn: SessionTransaction, text: str) -> str:
        info = None
        if not (self._keyword_shortcut(text) or is_greeting(text)):
            info = parse_company_info(text)
        if info is None:
            return await self._fallback(txn, text, messages.ask_company_info())

        txn.update(
            company_name=info.company_name,
            client_name=info.contact_name,
            client_email=info.email,
            step=ConversationStep.WAITING_DIMENSIONS,
        )
        return messages.ask_dimensions(info.contact_name)

    async def _on_dimensions(self, txn: SessionTransaction, text: str) -> str:
        one_shot = parse_one_shot(text)
        if one_shot is not None:
            return await self._quote_one_shot(txn, one_shot)

        parsed = parse_dimensions(text)
        if parsed is None:
            return await self._fallback(txn, text, messages.dimensions_not_understood())

        problem = self._dimension_problem(parsed)
        if problem:
            return problem

        dimensions = BoxDimensions(length=parsed.length, width=parsed.width, height=parsed.height)
        txn.update(dimensions=dimensions, step=ConversationStep.WAITING_QUANTITY)
        return messages.ask_quantity(dimensions, parsed.converted_from_cm)

    async def _on_quantity(self, txn: SessionTransaction, text: str) -> str:
        quantity = parse_quantity(text)
        if quantity is None:
            return await self._fallback(txn, text, messages.quantity_not_understood())
        if quantity < self.settings.min_quantity:
            return messages.quantity_below_minimum(self.settings.min_quantity, quantity)

        txn.update(quantity=quantity, step=ConversationStep.WAITING_PRINTING)
        return messages.ask_printing(quantity)

    async def _on_printing(self, txn: SessionTransaction, text: str) -> str:
        has_printing = parse_printing(text)
        if has_printing is None:
            return await self._fallback(txn, text, messages.printing_not_understood())

        session = txn.session
        if session.dimensions is None or session.quantity is None:
            logger.warning("conversation_incomplete_session address=%s", session.address)
            txn.update(step=ConversationStep.WAITING_DIMENSIONS)
            return messages.ask_dimensions(session.client_name)

        return await self._quote_and_store(
            txn, session.dimensions, session.quantity, has_printing
        )

    async def _on_quoted(self, txn: SessionTransaction, text: str) -> str:
        choice = parse_quoted_choice(text)
        if choice == QuotedChoice.CONFIRM:
            txn.reset(**_identity(txn.session))
            return messages.confirmation()
        if choice == QuotedChoice.MODIFY:
            txn.update(
                dimensions=None,
                quantity=None,
                has_printing=None,
                step=ConversationStep.WAITING_DIMENSIONS,
            )
            return messages.modify()
        if choice == QuotedChoice.ADVISOR:
            return self._advisor(txn)

        one_shot = parse_one_shot(text)
        if one_shot is not None:
            return await self._quote_one_shot(txn, one_shot)
        if is_quote_request(text):
            txn.update(
                dimensions=None,
                quantity=None,
                has_printing=None,
                step=ConversationStep.WAITING_DIMENSIONS,
            )
            return messages.ask_dimensions(txn.session.client_name)
        return await self._fallback(txn, text, messages.quoted_menu())

    # Shared actions

    def _dimension_problem(self, parsed: ParsedDimensions) -> str | None:
        """Production limits reply, or None when the box can be made."""
        sheet_width = parsed.height + parsed.width
        if sheet_width > self.settings.max_sheet_width_mm:
            return messages.sheet_too_wide(sheet_width, self.settings.max_sheet_width_mm)
        if is_undersized(parsed.length, parsed.width, parsed.height):
            return messages.below_minimum_size(*MIN_STANDARD)
        box = {
            "length_mm": parsed.length,
            "width_mm": parsed.width,
            "height_mm": parsed.height,
            "quantity": 1,
        }
        if validate_box(box, "box"):
            return messages.dimensions_not_understood()
        return None

    async def _quote_one_shot(self, txn: SessionTransaction, request: OneShotRequest) -> str:
        problem = self._dimension_problem(request.dimensions)
        if problem:
            return problem
        if request.quantity < self.settings.min_quantity:
            return messages.quantity_below_minimum(self.settings.min_quantity, request.quantity)

        dims = request.dimensions
        dimensions = BoxDimensions(length=dims.length, width=dims.width, height=dims.height)
        return await self._quote_and_store(txn, dimensions, request.quantity, request.has_printing)

    async def _quote_and_store(
        self,
        txn: SessionTransaction,
        dimensions: BoxDimensions,
        quantity: int,
        has_printing: bool,
    ) -> str:
        config = await self.pricing.get_active_or_fallback()
        box = BoxSpec(
            length_mm=dimensions.length,
            width_mm=dimensions.width,
            height_mm=dimensions.height,
            quantity=quantity,
            has_printing=has_printing,
            printing_colors=1 if has_printing else 0,
        )
        quote = self.assembler.assemble([box], config, strict=False)

        session = txn.update(
            dimensions=dimensions,
            quantity=quantity,
            has_printing=has_printing,
            last_quote=LastQuote(subtotal=quote.subtotal, total_m2=quote.total_m2),
            step=ConversationStep.QUOTED,
        )
        self._emit(txn, self._lead(LeadKind.CHAT_QUOTED, session, quote))
        logger.info(
            "conversation_quoted address=%s total_m2=%s subtotal=%s fallback=%s",
            session.address, quote.total_m2, quote.subtotal, quote.is_fallback_pricing,
        )
        return messages.quote_message(quote, config.quote_validity_days)

    def _advisor(self, txn: SessionTransaction) -> str:
        session = txn.update(needs_advisor=True, attended=False)
        self._emit(txn, self._lead(LeadKind.ADVISOR_REQUESTED, session))
        return messages.advisor(self.messaging)

    async def _shipping(self) -> str:
        config = await self.pricing.get_active_or_fallback()
        return messages.shipping_answer(config)

    def _lead(
        self, kind: LeadKind, session: ConversationSession, quote: Quote | None = None
    ) -> LeadNotification:
        contact = ContactInfo(
            name=session.client_name,
            company=session.company_name,
            email=session.client_email,
            phone=session.address,
        )
        if quote is not None:
            return LeadNotification.from_quote(
                kind, quote, origin="WhatsApp", contact=contact, address=session.address
            )
        return LeadNotification(kind=kind, origin="WhatsApp", contact=contact, address=session.address)

    # Fallback chain

    def _keyword_shortcut(self, text: str) -> Intent | None:
        if is_advisor_request(text):
            return Intent.ADVISOR
        if is_shipping_question(text):
            return Intent.QUESTION_SHIPPING
        return None

    async def _classify(self, text: str, step: ConversationStep) -> Classification:
        if not text:
            return UNKNOWN
        try:
            return await self.classifier.classify(text, step)
        except Exception as e:
            logger.warning("classifier_failed step=%s error=%s", step.value, e)
            return UNKNOWN

    async def _fallback(
        self,
        txn: SessionTransaction,
        text: str,
        reprompt: str,
        classification: Classification | None = None,
    ) -> str:
        if is_template_request(text):
            return messages.template_unavailable()

        intent = self._keyword_shortcut(text)
        if intent is None:
            if classification is None:
                classification = await self._classify(text, txn.session.step)
            intent = classification.intent

        if intent in (Intent.ADVISOR, Intent.QUESTION_OTHER):
            return self._advisor(txn)
        if intent == Intent.QUESTION_SHIPPING:
            return await self._shipping()
        if intent == Intent.CLOSING:
            txn.reset(**_identity(txn.session))
            return messages.farewell()
        if intent == Intent.GREETING:
            return "¡Hola! " + reprompt
        return reprompt
