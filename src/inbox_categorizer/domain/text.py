import re

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_DIGITS = re.compile(r"\d+")
_REFERENCE_CANDIDATE = re.compile(r"[a-z0-9]{4,}")

MIN_TOKEN_LENGTH = 2
MAX_TOKEN_LENGTH = 24
MAX_REFERENCE_TOKENS = 4

STOP_WORDS = frozenset({
    "payment",
    "card",
    "eftpos",
    "pos",
    "purchase",
    "debit",
    "credit",
    "visa",
    "mastercard",
    "transaction",
    "online",
    "ref",
    "the",
    "and",
    "for",
    "from",
    "to",
    "of",
})

CORPORATE_SUFFIXES = frozenset({
    "ltd",
    "limited",
    "co",
    "company",
    "inc",
    "incorporated",
    "llc",
    "plc",
    "pty",
    "corp",
    "corporation",
    "gmbh",
})


def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    lowered = _NON_ALNUM.sub(" ", value.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def tokenize(value: str | None) -> list[str]:
    tokens: list[str] = []
    for token in normalize_text(value).split():
        if len(token) < MIN_TOKEN_LENGTH or len(token) > MAX_TOKEN_LENGTH:
            continue
        if token in STOP_WORDS:
            continue
        tokens.append(token)
    return tokens


def collapse_digits(value: str) -> str:
    return _DIGITS.sub("0", value)


def canonical_merchant_key(value: str | None) -> str:
    words = collapse_digits(normalize_text(value)).split()
    return " ".join(word for word in words if word not in CORPORATE_SUFFIXES)


def account_key(value: str | None) -> str:
    return collapse_digits(normalize_text(value))


def reference_tokens(value: str | None, limit: int = MAX_REFERENCE_TOKENS) -> list[str]:
    """Alphanumeric tokens of 4+ characters that contain a digit, first seen first."""
    refs: list[str] = []
    for token in _REFERENCE_CANDIDATE.findall(normalize_text(value)):
        if not any(char.isdigit() for char in token):
            continue
        if token not in refs:
            refs.append(token)
        if len(refs) >= limit:
            break
    return refs
