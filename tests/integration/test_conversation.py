"""End-to-end tests for the WhatsApp quoting dialog against a real session store."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from corrucalc.conversation import messages
from corrucalc.conversation.classifier import Classification, IntentClassifier, NullClassifier
from corrucalc.conversation.machine import ConversationEngine
from corrucalc.conversation.session_store import SessionStore
from corrucalc.models import (
    BoxDimensions,
    ClientType,
    ConversationStep,
    Intent,
)
from corrucalc.notifications.leads import LeadKind
from corrucalc.pricing.assembler import QuoteAssembler
from corrucalc.pricing.config_source import PricingConfigRepository

pytestmark = pytest.mark.integration

ADDRESS = "+5491155550000"

COMPANY_BLOCK = "Empresa: Cartones SA\nNombre: Ana Gómez\nEmail: ana@cartones.com"


class StubClassifier(IntentClassifier):
    def __init__(self, result: Classification | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[str, ConversationStep]] = []

    async def classify(self, message, step):
        self.calls.append((message, step))
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def notifications() -> list:
    return []


@pytest.fixture
def store(session_scope) -> SessionStore:
    return SessionStore(session_scope)


def make_engine(session_scope, store, notifications, classifier=None, pricing=None):
    return ConversationEngine(
        store=store,
        pricing=pricing or PricingConfigRepository(session_scope),
        assembler=QuoteAssembler(),
        classifier=classifier or NullClassifier(),
        notify=notifications.append,
    )


@pytest.fixture
def engine(session_scope, store, notifications) -> ConversationEngine:
    return make_engine(session_scope, store, notifications)


async def chat(engine: ConversationEngine, *texts: str) -> list[str]:
    return [await engine.handle(ADDRESS, text) for text in texts]


class TestQuotingFlow:
    @pytest.mark.asyncio
    async def test_company_flow_ends_with_quote(self, engine, store, notifications, active_pricing):
        replies = await chat(engine, "hola", "2", COMPANY_BLOCK, "400x300x200", "500", "1")

        assert replies[0] == messages.welcome(await _fresh(store))
        assert replies[1] == messages.ask_company_info()
        assert replies[2].startswith("Gracias Ana Gómez.")
        assert "Caja: 400 x 300 x 200 mm" in replies[3]
        assert "Cantidad: 500 unidades" in replies[4]
        assert "Total m²: 362,5" in replies[5]
        assert "Total: $ 253.750,00" in replies[5]
        assert "Precio unitario: $ 507,50" in replies[5]
        assert "7 días hábiles" in replies[5]

        session = await store.get(ADDRESS)
        assert session.step == ConversationStep.QUOTED
        assert session.client_type == ClientType.EMPRESA
        assert session.company_name == "Cartones SA"
        assert session.client_email == "ana@cartones.com"
        assert session.last_quote.subtotal == Decimal("253750.00")

        assert [n.kind for n in notifications] == [LeadKind.CHAT_QUOTED]
        assert notifications[0].contact.company == "Cartones SA"
        assert notifications[0].address == ADDRESS

    @pytest.mark.asyncio
    async def test_particular_flow_with_centimetres_and_printing(self, engine, store, active_pricing):
        replies = await chat(engine, "hola", "1", "Juan", "40x30x20 cm", "1.000", "2")

        assert replies[2].startswith("Gracias Juan.")
        assert "(convertido de cm)" in replies[3]
        assert "Cantidad: 1.000 unidades" in replies[4]
        assert "(con impresión)" in replies[5]
        assert "Total: $ 583.625,00" in replies[5]
        assert "14 días hábiles" in replies[5]

        session = await store.get(ADDRESS)
        assert session.client_name == "Juan"
        assert session.has_printing is True

    @pytest.mark.asyncio
    async def test_one_shot_request(self, engine, store, active_pricing):
        [reply] = await chat(engine, "Necesito 500 cajas de 400x300x200")

        assert "Total: $ 253.750,00" in reply
        assert (await store.get(ADDRESS)).step == ConversationStep.QUOTED

    @pytest.mark.asyncio
    async def test_fallback_pricing_when_no_configuration(self, engine, notifications):
        replies = await chat(engine, "hola", "1", "Juan", "400x300x200", "500", "1")

        # Reference prices: 362.5 m2 is under the 1000 m2 floor, priced at 900 and flagged
        assert "Total: $ 326.250,00" in replies[-1]
        assert "revisión manual" in replies[-1]
        assert "Precios de referencia" in replies[-1]
        assert notifications[0].below_minimum is True


class TestValidation:
    @pytest.mark.asyncio
    async def test_quantity_below_minimum_keeps_step(self, engine, store):
        await chat(engine, "hola", "1", "Juan", "400x300x200")

        [reply] = await chat(engine, "50")

        assert reply == messages.quantity_below_minimum(100, 50)
        assert (await store.get(ADDRESS)).step == ConversationStep.WAITING_QUANTITY

    @pytest.mark.asyncio
    async def test_sheet_too_wide(self, engine, store):
        await chat(engine, "hola", "1", "Juan")

        [reply] = await chat(engine, "400x800x500")

        assert "1300mm" in reply
        assert (await store.get(ADDRESS)).step == ConversationStep.WAITING_DIMENSIONS

    @pytest.mark.asyncio
    async def test_undersized_box(self, engine):
        await chat(engine, "hola", "1", "Juan")

        [reply] = await chat(engine, "150x150x80")

        assert reply == messages.below_minimum_size(200, 200, 100)

    @pytest.mark.asyncio
    async def test_unparsed_dimensions_reprompt(self, engine):
        await chat(engine, "hola", "1", "Juan")

        [reply] = await chat(engine, "una caja mediana")

        assert reply == messages.dimensions_not_understood()


class TestGlobalCommands:
    @pytest.mark.asyncio
    async def test_cancel_resets(self, engine, store):
        await chat(engine, "hola", "1", "Juan")

        [reply] = await chat(engine, "cancelar")

        assert reply == messages.cancelled()
        session = await store.get(ADDRESS)
        assert session.step == ConversationStep.INITIAL
        assert session.client_name is None

    @pytest.mark.asyncio
    async def test_media_rejected_without_touching_session(self, engine, store):
        reply = await engine.handle(ADDRESS, "", num_media=1)

        assert reply == messages.unsupported_media()
        assert (await store.get(ADDRESS)).version == 0

    @pytest.mark.asyncio
    async def test_closing_keeps_identity(self, engine, store, active_pricing):
        await chat(engine, "hola", "2", COMPANY_BLOCK, "400x300x200", "500", "1")

        [reply] = await chat(engine, "gracias")

        assert reply == messages.farewell()
        session = await store.get(ADDRESS)
        assert session.step == ConversationStep.INITIAL
        assert session.company_name == "Cartones SA"
        assert session.last_quote is not None

    @pytest.mark.asyncio
    async def test_advisor_request(self, engine, store, notifications):
        await chat(engine, "hola", "1", "Juan")

        [reply] = await chat(engine, "quiero hablar con un asesor")

        assert "+5491169249801" in reply
        session = await store.get(ADDRESS)
        assert session.needs_advisor is True
        assert session.step == ConversationStep.WAITING_DIMENSIONS
        assert [n.kind for n in notifications] == [LeadKind.ADVISOR_REQUESTED]

    @pytest.mark.asyncio
    async def test_shipping_question(self, engine, active_pricing):
        [reply] = await chat(engine, "¿hacen envíos?")

        assert "GRATIS" in reply
        assert "4.000,0 m²" in reply

    @pytest.mark.asyncio
    async def test_template_request(self, engine):
        await chat(engine, "hola", "1", "Juan")

        [reply] = await chat(engine, "me pasás el desplegado?")

        assert reply == messages.template_unavailable()


class TestAfterQuote:
    @pytest.mark.asyncio
    async def test_confirm_then_returning_customer(self, engine, store, active_pricing):
        await chat(engine, "hola", "2", COMPANY_BLOCK, "400x300x200", "500", "1")

        confirm, welcome_back = await chat(engine, "1", "hola")

        assert confirm == messages.confirmation()
        assert welcome_back.startswith("¡Hola de nuevo Ana Gómez!")
        assert "$ 253.750,00" in welcome_back
        assert (await store.get(ADDRESS)).step == ConversationStep.WAITING_DIMENSIONS

    @pytest.mark.asyncio
    async def test_assent_confirms_instead_of_closing(self, engine, store, notifications, active_pricing):
        await chat(engine, "hola", "1", "Juan", "400x300x200", "500", "1")

        [reply] = await chat(engine, "Dale")

        assert reply == messages.confirmation()
        assert (await store.get(ADDRESS)).client_name == "Juan"

    @pytest.mark.asyncio
    async def test_assent_outside_quote_still_closes(self, engine, store):
        await chat(engine, "hola", "1", "Juan")

        [reply] = await chat(engine, "listo")

        assert reply == messages.farewell()
        assert (await store.get(ADDRESS)).step == ConversationStep.INITIAL

    @pytest.mark.asyncio
    async def test_modify_clears_box(self, engine, store, active_pricing):
        await chat(engine, "hola", "1", "Juan", "400x300x200", "500", "1")

        [reply] = await chat(engine, "2")

        assert reply == messages.modify()
        session = await store.get(ADDRESS)
        assert session.step == ConversationStep.WAITING_DIMENSIONS
        assert session.dimensions is None
        assert session.client_name == "Juan"

    @pytest.mark.asyncio
    async def test_new_one_shot_while_quoted(self, engine, active_pricing):
        await chat(engine, "hola", "1", "Juan", "400x300x200", "500", "1")

        [reply] = await chat(engine, "ahora 1000 cajas de 400x300x200")

        assert "Total: $ 507.500,00" in reply

    @pytest.mark.asyncio
    async def test_new_quote_request_asks_dimensions(self, engine, store, active_pricing):
        await chat(engine, "hola", "1", "Juan", "400x300x200", "500", "1")

        [reply] = await chat(engine, "quiero cotizar otra caja")

        assert reply == messages.ask_dimensions("Juan")
        session = await store.get(ADDRESS)
        assert session.step == ConversationStep.WAITING_DIMENSIONS
        assert session.dimensions is None
        assert session.last_quote is not None


class TestClassifierFallback:
    @pytest.mark.asyncio
    async def test_classifier_resolves_client_type(self, session_scope, store, notifications):
        classifier = StubClassifier(Classification(Intent.CLIENT_EMPRESA, 0.9))
        engine = make_engine(session_scope, store, notifications, classifier=classifier)

        replies = await chat(engine, "hola", "tenemos una distribuidora")

        assert replies[1] == messages.ask_company_info()
        assert classifier.calls == [("tenemos una distribuidora", ConversationStep.WAITING_CLIENT_TYPE)]

    @pytest.mark.asyncio
    async def test_classifier_failure_reprompts(self, session_scope, store, notifications):
        classifier = StubClassifier(error=RuntimeError("timeout"))
        engine = make_engine(session_scope, store, notifications, classifier=classifier)

        replies = await chat(engine, "hola", "mmm no sé")

        assert replies[1] == messages.ask_client_type()
        assert (await store.get(ADDRESS)).step == ConversationStep.WAITING_CLIENT_TYPE

    @pytest.mark.asyncio
    async def test_greeting_intent_prefixes_reprompt(self, session_scope, store, notifications):
        classifier = StubClassifier(Classification(Intent.GREETING, 0.9))
        engine = make_engine(session_scope, store, notifications, classifier=classifier)

        replies = await chat(engine, "hola", "que tal")

        assert replies[1] == "¡Hola! " + messages.ask_client_type()


class TestFailures:
    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_previous_step(self, session_scope, store, notifications):
        pricing = MagicMock()
        pricing.get_active_or_fallback = AsyncMock(side_effect=RuntimeError("boom"))
        engine = make_engine(session_scope, store, notifications, pricing=pricing)
        before = await store.update(
            ADDRESS,
            step=ConversationStep.WAITING_PRINTING,
            dimensions=BoxDimensions(length=400, width=300, height=200),
            quantity=500,
        )

        [reply] = await chat(engine, "1")

        assert reply == messages.generic_reprompt()
        after = await store.get(ADDRESS)
        assert after.step == ConversationStep.WAITING_PRINTING
        assert after.version == before.version
        assert notifications == []


async def _fresh(store: SessionStore):
    return await store.get("+0000000000")
