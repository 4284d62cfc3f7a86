import re

_NON_DIGITS = re.compile(r"\D")


def normalize_msisdn(phone: str) -> str:
    """
    Normalise a Kenyan mobile number to ``2547XXXXXXXX`` form.

    Accepts ``07XX…``, ``+2547XX…``, ``2547XX…`` and bare nine-digit
    numbers, with any spacing or punctuation.  Raises ValueError for
    anything that does not end up as 12 digits starting with 254.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9:
        digits = "254" + digits

    if len(digits) != 12 or not digits.startswith("254"):
        raise ValueError(f"Invalid phone number: {phone!r}")
    return digits
