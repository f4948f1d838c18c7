"""Fixed customer-facing replies for the WhatsApp channel.

Replies are templates, never model output.
"""

from __future__ import annotations

from corrucalc.config import MessagingConfig
from corrucalc.models import BoxDimensions, ConversationSession, PricingConfig, Quote
from corrucalc.utils.formatting import format_ars, format_m2, format_quantity

BUSINESS_HOURS = "Lunes a Viernes 7:00 - 16:00"

DIMENSION_FORMAT_HELP = """Por favor usá el formato:
- 400x300x300
- 40x30x30 cm
- Largo 400 Ancho 300 Alto 300"""


def welcome(session: ConversationSession) -> str:
    if session.last_quote is not None:
        name = f" {session.client_name}" if session.client_name else ""
        return (
            f"¡Hola de nuevo{name}! Tu última cotización fue de "
            f"{format_ars(session.last_quote.subtotal)} "
            f"({format_m2(session.last_quote.total_m2)} m²).\n\n"
            "¿Querés cotizar otra caja? Indicame las medidas (Largo x Ancho x Alto)."
        )
    return (
        "¡Hola! Soy el asistente de Quilmes Corrugados.\n\n"
        "Para cotizarte, contame:\n\n"
        "1 - Soy particular\n"
        "2 - Soy empresa"
    )


def ask_client_type() -> str:
    return "¿Sos particular o empresa?\n\n1 - Particular\n2 - Empresa"


def ask_name() -> str:
    return "¡Genial! ¿Cuál es tu nombre?"


def ask_company_info() -> str:
    return (
        "¡Perfecto! Pasame los datos de la empresa:\n\n"
        "Empresa: ...\n"
        "Nombre de contacto: ...\n"
        "Email: ..."
    )


def ask_dimensions(name: str | None = None) -> str:
    greeting = f"Gracias {name}. " if name else ""
    return (
        f"{greeting}Indicame las medidas de la caja en mm o cm:\n"
        "Formato: Largo x Ancho x Alto\n\n"
        "Ejemplo: 400x300x300 o 40x30x30 cm"
    )


def dimensions_not_understood() -> str:
    return f"No pude entender las medidas.\n\n{DIMENSION_FORMAT_HELP}"


def sheet_too_wide(sheet_width: int, max_width: int) -> str:
    return (
        "Esas medidas exceden nuestro límite de producción.\n\n"
        f"El ancho de plancha (Alto + Ancho = {sheet_width}mm) no puede superar {max_width}mm.\n\n"
        'Por favor, indicá otras medidas o escribí "asesor" para hablar con alguien.'
    )


def below_minimum_size(min_length: int, min_width: int, min_height: int) -> str:
    return (
        f"Las medidas mínimas son {min_length}x{min_width}x{min_height}mm.\n\n"
        "Por favor, indicá medidas mayores."
    )


def ask_quantity(dimensions: BoxDimensions, converted_from_cm: bool = False) -> str:
    note = " (convertido de cm)" if converted_from_cm else ""
    return (
        f"Caja: {dimensions.length} x {dimensions.width} x {dimensions.height} mm{note}\n\n"
        "¿Cuántas unidades necesitás?"
    )


def quantity_below_minimum(minimum: int, given: int | None = None) -> str:
    given_text = f" Indicaste {format_quantity(given)}." if given is not None else ""
    return f"La cantidad mínima es {format_quantity(minimum)} unidades.{given_text} ¿Cuántas necesitás?"


def quantity_not_understood() -> str:
    return "No entendí la cantidad. Por favor escribí solo el número.\n\nEjemplo: 500"


def ask_printing(quantity: int) -> str:
    return (
        f"Cantidad: {format_quantity(quantity)} unidades\n\n"
        "¿Llevan impresión?\n\n"
        "1 - Sin impresión (lisa)\n"
        "2 - Con impresión"
    )


def printing_not_understood() -> str:
    return "Por favor elegí una opción:\n\n1 - Sin impresión (lisa)\n2 - Con impresión"


def quote_summary(quote: Quote, validity_days: int) -> str:
    line = quote.boxes[0]
    finish = "(con impresión)" if line.has_printing else "(lisa)"
    text = (
        "COTIZACIÓN QUILMES CORRUGADOS\n\n"
        f"Caja: {line.length_mm}x{line.width_mm}x{line.height_mm}mm {finish}\n"
        f"Cantidad: {format_quantity(line.quantity)} unidades\n"
        f"Total m²: {format_m2(quote.total_m2)}\n\n"
        f"Total: {format_ars(quote.subtotal)}\n"
        f"Precio unitario: {format_ars(line.unit_price)}\n\n"
        f"Tiempo de entrega: {quote.estimated_days} días hábiles\n"
        f"Validez: {validity_days} días"
    )
    if not quote.meets_minimum:
        text += f"\n\n(Pedido menor al mínimo recomendado de {format_m2(quote.minimum_m2)} m²)"
    if quote.below_minimum:
        text += "\n\nEste pedido queda sujeto a revisión manual por parte de un vendedor."
    if quote.is_fallback_pricing:
        text += "\n\nPrecios de referencia: un vendedor confirmará el valor final."
    return text


def quote_message(quote: Quote, validity_days: int) -> str:
    return (
        quote_summary(quote, validity_days)
        + "\n\n¿Querés confirmar el pedido?\n\n"
        "1 - Confirmar (te contacta un vendedor)\n"
        "2 - Modificar medidas\n"
        "3 - Hablar con un asesor"
    )


def quoted_menu() -> str:
    return (
        "No entendí tu respuesta. Por favor elegí una opción:\n\n"
        "1 - Confirmar pedido\n"
        "2 - Modificar medidas\n"
        "3 - Hablar con un asesor"
    )


def confirmation() -> str:
    return (
        "¡Perfecto! Un vendedor te va a contactar en breve para confirmar los detalles.\n\n"
        f"Horario de atención: {BUSINESS_HOURS}\n\n"
        '¿Necesitás algo más? Escribí "cotizar" para una nueva cotización.'
    )


def modify() -> str:
    return "OK, empecemos de nuevo. Indicame las nuevas medidas:\n\nFormato: Largo x Ancho x Alto\nEjemplo: 400x300x300"


def advisor(messaging: MessagingConfig) -> str:
    return (
        "Te comunicamos con un asesor.\n\n"
        "Mientras tanto, podés llamar o escribir a:\n"
        f"WhatsApp: {messaging.business_phone}\n"
        f"Email: {messaging.sales_email}\n\n"
        f"Horario: {BUSINESS_HOURS}"
    )


def shipping_answer(config: PricingConfig) -> str:
    return (
        "Enviamos a todo el país.\n\n"
        f"El envío es GRATIS para pedidos de {format_m2(config.free_shipping_min_m2)} m² o más "
        f"dentro de {format_m2(config.free_shipping_max_km)} km de Quilmes. "
        "Para otras zonas o cantidades menores, el envío se cotiza aparte."
    )


def template_unavailable() -> str:
    return (
        "Para el desplegado de la caja primero necesito la cotización. "
        "Indicame medidas y cantidad, o escribí \"asesor\" y te lo enviamos."
    )


def unsupported_media() -> str:
    return (
        "Por ahora no puedo procesar imágenes, audios ni archivos. "
        "Por favor escribime las medidas y la cantidad en texto."
    )


def cancelled() -> str:
    return 'Conversación reiniciada. Escribí "cotizar" para empezar de nuevo.'


def farewell() -> str:
    return '¡Gracias por escribirnos! Cuando quieras, escribí "cotizar" para una nueva cotización.'


def generic_reprompt() -> str:
    return (
        "Disculpá, no pude procesar tu mensaje. "
        'Intentá de nuevo o escribí "asesor" para hablar con una persona.'
    )
