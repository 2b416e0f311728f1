"""Phone number helpers shared by the transport and the stores."""

import re

NON_DIGITS = re.compile(r"\D")

# data-id="false_5511999999999@c.us_3EB0..." on WhatsApp Web message rows
DATA_ID_NUMBER = re.compile(r"_(\d{6,})@")


def digits_only(value: str | None) -> str:
    """Strip everything but digits: ``+55 (11) 9999-9999`` -> ``551199999999``."""
    return NON_DIGITS.sub("", value or "")


def number_from_data_id(data_id: str | None) -> str:
    """Extract the sender number from a WhatsApp Web ``data-id`` attribute."""
    match = DATA_ID_NUMBER.search(data_id or "")
    return match.group(1) if match else ""
