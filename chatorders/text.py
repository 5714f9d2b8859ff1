# chatorders/text.py
import re
import unicodedata
from typing import List, Optional

PRODUCT_STOPWORDS = frozenset(
    ["de", "del", "la", "el", "y", "para", "un", "una", "en", "con", "los", "las"]
)

WORD_NUMBERS = {
    "un": 1,
    "una": 1,
    "uno": 1,
    "dos": 2,
    "tres": 3,
    "cuatro": 4,
    "cinco": 5,
    "seis": 6,
    "siete": 7,
    "ocho": 8,
    "nueve": 9,
    "diez": 10,
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_DIGITS = re.compile(r"\b(\d+)\b")
# presentation sizes ("1.5L", "500 ml", "1kg") are part of a product name, not a quantity
_SIZE = re.compile(r"\d+(?:[.,]\d+)?\s*(?:l|lt|lts|litros?|ml|cc|kg|kilos?|g|gr|grs)\b", re.IGNORECASE)


def normalize(text: Optional[str]) -> str:
    """Lower-case ASCII form of `text`: accents stripped, every non-alphanumeric
    run collapsed to one space, trimmed. Empty or None input gives ""."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return _NON_ALNUM.sub(" ", stripped.lower()).strip()


def compact(text: Optional[str]) -> str:
    return normalize(text).replace(" ", "")


def stem(word: str) -> str:
    # naive plural stemming: "galletitas" -> "galletita", "panes" -> "pan"
    if word.endswith("es"):
        return word[:-2]
    if word.endswith("s"):
        return word[:-1]
    return word


def tokenize(text: Optional[str], stopwords=PRODUCT_STOPWORDS) -> List[str]:
    tokens = []
    for raw in normalize(text).split(" "):
        token = stem(raw)
        if len(token) < 3 or token in stopwords:
            continue
        tokens.append(token)
    return tokens


def strip_sizes(text: Optional[str]) -> str:
    return _SIZE.sub(" ", text or "")


def parse_quantity(text: Optional[str]) -> Optional[int]:
    """First explicit quantity in `text`: a digit group, else a spelled-out number (one to ten).

    Presentation sizes such as "1.5L" are ignored.
    """
    norm = normalize(strip_sizes(text))
    m = _DIGITS.search(norm)
    if m:
        return int(m.group(1))
    for word in norm.split(" "):
        if word in WORD_NUMBERS:
            return WORD_NUMBERS[word]
    return None


def normalize_dni(value: Optional[str]) -> Optional[str]:
    # digits only, and only when the length looks like a national ID
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) < 7 or len(digits) > 10:
        return None
    return digits


def normalize_phone(text: str) -> str:
    return "".join(ch for ch in (text or "") if ch.isdigit() or ch == "+")
