"""Нормализация телефонных номеров для API платежных шлюзов."""
import re

# Код страны -> (телефонный код, минимальная и максимальная длина национального номера)
COUNTRY_PHONE_CONFIGS: list[tuple[str, str, int, int]] = [
    ("AE", "971", 9, 9),
    ("SA", "966", 9, 9),
    ("KW", "965", 8, 8),
    ("BH", "973", 8, 8),
    ("OM", "968", 8, 8),
    ("QA", "974", 8, 8),
    ("EG", "20", 10, 10),
    ("JO", "962", 9, 9),
    ("LB", "961", 7, 8),
    ("IQ", "964", 10, 10),
    ("SY", "963", 9, 9),
    ("PS", "970", 9, 9),
    ("YE", "967", 9, 9),
    ("LY", "218", 9, 9),
    ("TN", "216", 8, 8),
    ("DZ", "213", 9, 9),
    ("MA", "212", 9, 9),
    ("SD", "249", 9, 9),
    ("US", "1", 10, 10),
    ("GB", "44", 10, 10),
    ("AU", "61", 9, 9),
    ("DE", "49", 10, 11),
    ("FR", "33", 9, 9),
    ("IT", "39", 9, 10),
    ("ES", "34", 9, 9),
    ("NL", "31", 9, 9),
    ("BE", "32", 8, 9),
    ("CH", "41", 9, 9),
    ("AT", "43", 10, 11),
    ("SE", "46", 9, 9),
    ("NO", "47", 8, 8),
    ("DK", "45", 8, 8),
    ("FI", "358", 9, 10),
    ("PL", "48", 9, 9),
    ("PT", "351", 9, 9),
    ("GR", "30", 10, 10),
    ("TR", "90", 10, 10),
    ("IN", "91", 10, 10),
    ("PK", "92", 10, 10),
    ("BD", "880", 10, 10),
    ("LK", "94", 9, 9),
    ("NP", "977", 10, 10),
    ("PH", "63", 10, 10),
    ("ID", "62", 9, 12),
    ("MY", "60", 9, 10),
    ("SG", "65", 8, 8),
    ("TH", "66", 9, 9),
    ("VN", "84", 9, 10),
    ("JP", "81", 10, 10),
    ("KR", "82", 9, 10),
    ("CN", "86", 11, 11),
    ("HK", "852", 8, 8),
    ("TW", "886", 9, 9),
    ("NZ", "64", 8, 9),
    ("ZA", "27", 9, 9),
    ("NG", "234", 10, 10),
    ("KE", "254", 9, 9),
    ("ET", "251", 9, 9),
    ("BR", "55", 10, 11),
    ("MX", "52", 10, 10),
    ("AR", "54", 10, 10),
    ("RU", "7", 10, 10),
    ("UA", "380", 9, 9),
    ("IR", "98", 10, 10),
    ("IL", "972", 9, 9),
    ("AF", "93", 9, 9),
]

# Длинные коды проверяются раньше коротких: 971 раньше 97, 1 - последним
_SORTED_CONFIGS = sorted(COUNTRY_PHONE_CONFIGS, key=lambda config: len(config[1]), reverse=True)

_SEPARATORS = re.compile(r"[\s\-().]")
_NON_DIGITS = re.compile(r"\D")

MAX_DIGITS = 11


def split_phone(raw_phone: str | None) -> tuple[str, str]:
    """
    Разделить номер на телефонный код страны и национальную часть.

    Код ищется только у номеров в международном формате (+ или 00), либо если
    после его отбрасывания остается номер допустимой для этой страны длины.

    Returns:
        (код без "+", национальная часть без разделителей)
    """
    if not raw_phone:
        return "", ""

    cleaned = _SEPARATORS.sub("", str(raw_phone))
    international = False
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
        international = True
    elif cleaned.startswith("00"):
        cleaned = cleaned[2:]
        international = True

    cleaned = _NON_DIGITS.sub("", cleaned)

    for _country, dial_code, min_length, max_length in _SORTED_CONFIGS:
        if not cleaned.startswith(dial_code):
            continue
        local = cleaned[len(dial_code):]
        if international:
            return dial_code, local
        if min_length <= len(local.lstrip("0")) <= max_length:
            return dial_code, local

    return "", cleaned


def normalize_phone(raw_phone: str | None) -> str:
    """
    Номер только из цифр, без кода страны и ведущего 0, не длиннее 11 цифр.

    >>> normalize_phone("+971 50 607 1405")
    '506071405'
    >>> normalize_phone("0506071405")
    '506071405'
    """
    _dial_code, local = split_phone(raw_phone)
    if local.startswith("0"):
        local = local[1:]
    return local[:MAX_DIGITS]


def detect_country(raw_phone: str | None) -> str | None:
    """Код страны ISO по телефонному коду номера (первое совпадение в таблице)."""
    dial_code, _local = split_phone(raw_phone)
    if not dial_code:
        return None
    for country, code, _min_length, _max_length in COUNTRY_PHONE_CONFIGS:
        if code == dial_code:
            return country
    return None


def dial_code_for(country: str) -> str | None:
    """Телефонный код страны по коду ISO."""
    country = (country or "").upper()
    for code, dial_code, _min_length, _max_length in COUNTRY_PHONE_CONFIGS:
        if code == country:
            return dial_code
    return None


def international_phone(raw_phone: str | None, default_dial_code: str = "971") -> str:
    """Номер в формате +<код><номер> для шлюзов, которым нужен полный номер."""
    dial_code, _local = split_phone(raw_phone)
    local = normalize_phone(raw_phone)
    if not local:
        return ""
    return f"+{dial_code or default_dial_code}{local}"
