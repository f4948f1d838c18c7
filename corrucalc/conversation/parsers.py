"""Deterministic free-text parsers for the conversational channel.

Each parser returns the extracted datum or None. None means "not understood"
and lets the engine try the intent classifier, then re-prompt.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum

from corrucalc.models import ClientType

# Dimensions given with every side under this are taken as centimetres
CM_THRESHOLD = 100

_DIMENSION_PATTERNS = [
    re.compile(r"(\d+(?:[.,]\d+)?)\s*[x×*]\s*(\d+(?:[.,]\d+)?)\s*[x×*]\s*(\d+(?:[.,]\d+)?)"),
    re.compile(r"largo\s*:?\s*(\d+).*?ancho\s*:?\s*(\d+).*?alto\s*:?\s*(\d+)", re.DOTALL),
    re.compile(r"\bl\s*:?\s*(\d+).*?\ba\s*:?\s*(\d+).*?\bh\s*:?\s*(\d+)", re.DOTALL),
]

_QUANTITY_PATTERNS = [
    re.compile(r"(\d{1,3}(?:[.,]\d{3})+|\d+)\s*(?:unidades|unid|cajas|piezas|u\.)"),
    re.compile(r"cantidad\s*:?\s*(\d{1,3}(?:[.,]\d{3})+|\d+)"),
    re.compile(r"necesito\s*(\d{1,3}(?:[.,]\d{3})+|\d+)"),
]

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_NUMBER_RE = re.compile(r"\d{1,3}(?:[.,]\d{3})+|\d+")

CANCEL_WORDS = {"cancelar", "reiniciar", "cancel", "reset", "empezar de nuevo"}
CLOSING_PHRASES = {
    "gracias", "muchas gracias", "ok", "okey", "perfecto", "chau", "chao",
    "hasta luego", "dale", "buenisimo", "genial", "listo", "gracias!", "ok gracias",
}
# Closing words that read as a yes when a quote is on the table
ASSENT_PHRASES = {"dale", "listo", "perfecto", "ok", "okey"}
_GREETING_RE = re.compile(r"^(hola|buenas|buen dia|buenos dias|buenas tardes|buenas noches|hey|hi)\b")
_QUOTE_REQUEST_RE = re.compile(r"\b(cotizar|cotizacion|presupuesto|precio|cuanto sale|necesito cajas)\b")
_ADVISOR_RE = re.compile(r"\b(asesor|asesora|vendedor|humano|hablar con (alguien|una persona))\b")
_SHIPPING_RE = re.compile(r"\b(envio|envios|envian|entregan|entrega|flete|llegan a|llega a)\b")
_TEMPLATE_RE = re.compile(r"\b(desplegado|plantilla)\b")


def normalize(text: str) -> str:
    """Lowercase, strip accents and surrounding whitespace/punctuation."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip().strip("¡!¿?.").strip()


def _to_int(token: str) -> int:
    return int(token.replace(".", "").replace(",", ""))


@dataclass(frozen=True)
class ParsedDimensions:
    length: int
    width: int
    height: int
    converted_from_cm: bool = False


def _match_dimensions(lowered: str) -> tuple[ParsedDimensions, tuple[int, int]] | None:
    for pattern in _DIMENSION_PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        values = [float(group.replace(",", ".")) for group in match.groups()]
        if any(v <= 0 for v in values):
            return None
        converted = all(v < CM_THRESHOLD for v in values)
        if converted:
            values = [v * 10 for v in values]
        length, width, height = (int(round(v)) for v in values)
        return ParsedDimensions(length, width, height, converted), match.span()
    return None


def parse_dimensions(text: str) -> ParsedDimensions | None:
    """'400x300x200', '40 x 30 x 20 cm', 'largo 400 ancho 300 alto 200'."""
    found = _match_dimensions(normalize(text))
    return found[0] if found else None


@dataclass(frozen=True)
class OneShotRequest:
    dimensions: ParsedDimensions
    quantity: int
    has_printing: bool


def parse_one_shot(text: str) -> OneShotRequest | None:
    """Full request in one message: '500 cajas 400x300x200 con impresion'."""
    lowered = normalize(text)
    found = _match_dimensions(lowered)
    if found is None:
        return None
    dimensions, (start, end) = found
    quantity = parse_explicit_quantity(lowered[:start] + " " + lowered[end:])
    if quantity is None:
        return None
    printing = re.search(r"\b(impresion|impreso|impresa|logo|colores?)\b", lowered)
    plain = re.search(r"\bsin (impresion|logo)\b", lowered)
    return OneShotRequest(dimensions, quantity, bool(printing) and not plain)


def parse_explicit_quantity(text: str) -> int | None:
    """Quantity stated with a keyword ('500 cajas', 'cantidad: 1.000')."""
    lowered = normalize(text)
    for pattern in _QUANTITY_PATTERNS:
        match = pattern.search(lowered)
        if match:
            return _to_int(match.group(1))
    return None


def parse_quantity(text: str) -> int | None:
    """Quantity answer: keyword form first, else the only number in the message."""
    explicit = parse_explicit_quantity(text)
    if explicit is not None:
        return explicit
    numbers = _NUMBER_RE.findall(normalize(text))
    if len(numbers) == 1:
        return _to_int(numbers[0])
    return None


def parse_printing(text: str) -> bool | None:
    """Printing menu answer: 1 = plain, 2 = printed."""
    lowered = normalize(text)
    if lowered in {"1", "no", "lisa", "lisas", "sin impresion", "sin"} or lowered.startswith("1 "):
        return False
    if lowered in {"2", "si", "con impresion", "impresa", "impresas", "con logo"} or lowered.startswith("2 "):
        return True
    if re.search(r"\bsin (impresion|imprimir|logo)\b", lowered):
        return False
    if re.search(r"\b(impresion|impreso|impresa|logo|colores?)\b", lowered):
        return True
    return None


def parse_client_type(text: str) -> ClientType | None:
    lowered = normalize(text)
    if lowered == "1" or re.search(r"\b(particular|persona|individual|para mi)\b", lowered):
        return ClientType.PARTICULAR
    if lowered == "2" or re.search(r"\b(empresa|negocio|compania|pyme|comercio|fabrica|somos)\b", lowered):
        return ClientType.EMPRESA
    return None


def parse_name(text: str) -> str | None:
    """Personal name, with optional 'soy' / 'me llamo' / 'mi nombre es' lead-in."""
    cleaned = re.sub(
        r"^\s*(soy|me llamo|mi nombre es|nombre\s*:)\s*", "", text.strip(), flags=re.IGNORECASE
    ).strip(" .,!")
    if not 2 <= len(cleaned) <= 60:
        return None
    if not re.fullmatch(r"[^\W\d_]+(?:[ '\-][^\W\d_]+)*", cleaned):
        return None
    return cleaned.title() if cleaned.islower() else cleaned


@dataclass(frozen=True)
class CompanyInfo:
    company_name: str
    contact_name: str | None = None
    email: str | None = None


_LABELS = {
    "empresa": "company",
    "razon social": "company",
    "nombre": "contact",
    "contacto": "contact",
    "email": "email",
    "mail": "email",
    "correo": "email",
}


def parse_company_info(text: str) -> CompanyInfo | None:
    """Company block: labelled lines ('Empresa: X') or positional lines.

    Positional form: first line company, next non-email line contact name.
    An email anywhere in the block is picked up.
    """
    email_match = _EMAIL_RE.search(text)
    email = email_match.group(0) if email_match else None

    labelled: dict[str, str] = {}
    free_lines: list[str] = []
    for raw_line in re.split(r"[\n;]+", text):
        line = raw_line.strip(" -•*\t")
        if not line:
            continue
        key, sep, value = line.partition(":")
        field = _LABELS.get(normalize(key)) if sep else None
        if field and value.strip():
            labelled[field] = value.strip()
        elif not _EMAIL_RE.fullmatch(line):
            free_lines.append(_EMAIL_RE.sub("", line).strip(" ,"))

    free_lines = [line for line in free_lines if line]
    company = labelled.get("company") or (free_lines.pop(0) if free_lines else None)
    contact = labelled.get("contact") or (free_lines.pop(0) if free_lines else None)
    email = labelled.get("email", email)

    if not company or len(company) < 2 or company.isdigit():
        return None
    return CompanyInfo(company_name=company, contact_name=contact, email=email)


def is_cancel(text: str) -> bool:
    return normalize(text) in CANCEL_WORDS


def is_closing(text: str) -> bool:
    return normalize(text) in CLOSING_PHRASES


def is_greeting(text: str) -> bool:
    return bool(_GREETING_RE.match(normalize(text)))


def is_quote_request(text: str) -> bool:
    return bool(_QUOTE_REQUEST_RE.search(normalize(text)))


def is_advisor_request(text: str) -> bool:
    return bool(_ADVISOR_RE.search(normalize(text)))


def is_shipping_question(text: str) -> bool:
    return bool(_SHIPPING_RE.search(normalize(text)))


def is_template_request(text: str) -> bool:
    return bool(_TEMPLATE_RE.search(normalize(text)))


class QuotedChoice(str, Enum):
    CONFIRM = "confirm"
    MODIFY = "modify"
    ADVISOR = "advisor"


def parse_quoted_choice(text: str) -> QuotedChoice | None:
    """Menu after a quote: 1 confirm, 2 modify, 3 advisor."""
    lowered = normalize(text)
    if lowered in {"1", "si", "confirmar", "confirmo"} | ASSENT_PHRASES or re.search(r"\bconfirm", lowered):
        return QuotedChoice.CONFIRM
    if lowered == "2" or re.search(r"\b(modificar|cambiar|otras medidas)\b", lowered):
        return QuotedChoice.MODIFY
    if lowered == "3" or is_advisor_request(lowered):
        return QuotedChoice.ADVISOR
    return None
