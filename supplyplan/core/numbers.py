from __future__ import annotations

import math
import re


_NON_NUMERIC = re.compile(r"[^0-9,.\-]")


def parse_de_number(value: object) -> float | None:
    """Parse a number written in German or plain notation.

    ``"1.234,5"`` -> 1234.5, ``"12,5 €"`` -> 12.5, ``"7.5"`` -> 7.5.
    The last comma is the decimal separator; dots before it are grouping.
    Returns ``None`` for empty or unparseable input and for NaN/inf.
    """

    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    raw = str(value).strip()
    if not raw:
        return None
    cleaned = _NON_NUMERIC.sub("", raw)
    if not cleaned:
        return None

    comma_index = cleaned.rfind(",")
    if comma_index >= 0:
        int_part = cleaned[:comma_index].replace(".", "")
        frac_part = cleaned[comma_index + 1 :].replace(".", "")
        candidate = f"{int_part}.{frac_part}"
    else:
        if cleaned.count(".") > 1:
            return None
        candidate = cleaned

    try:
        number = float(candidate)
    except ValueError:
        return None
    return number if math.isfinite(number) else None
