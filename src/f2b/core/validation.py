"""Input validation utilities.

Provides validation for:
- Network values (CIDR ranges, single addresses, ports)
- fail2ban time values (10m, 1h, -1 ...)
- Operator-entered lists (trusted ranges, blocklists)
- Alert e-mail addresses

All validators return the validated value or raise ValidationError.
"""

import ipaddress
import re

from f2b.core.exceptions import ValidationError


# fail2ban accepts a bare number of seconds or number+unit groups ("1h30m")
DURATION_PATTERN = re.compile(r"^(?:\d+(?:s|m|h|d|w))+$|^\d+$")

# Sentinel understood by fail2ban as "ban forever"
PERMANENT_SENTINEL = "-1"

# Deliberately loose: the MTA does the real checking
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ANYWHERE_CIDRS = frozenset({"0.0.0.0/0", "::/0"})


def validate_cidr(value: str, *, allow_anywhere: bool = False) -> str:
    """Validate an address or CIDR range.

    Args:
        value: CIDR string to validate (e.g., "10.0.0.0/24" or "192.0.2.7")
        allow_anywhere: If False, raises error for 0.0.0.0/0 and ::/0

    Returns:
        The validated CIDR string, stripped

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    try:
        network = ipaddress.ip_network(value, strict=False)
    except ValueError as e:
        raise ValidationError(
            f"Invalid CIDR notation: {value}",
            hint="Use format like 192.168.1.0/24 or 203.0.113.7",
            details=[str(e)],
        ) from e

    if not allow_anywhere and (value in ANYWHERE_CIDRS or network.prefixlen == 0):
        raise ValidationError(
            f"'{value}' matches every address on the internet",
            hint="Use a more restrictive range",
            details=["An ignore list or blocklist covering everything disables banning"],
        )

    return value


def validate_address(value: str) -> str:
    """Validate a single IP address (no range).

    Args:
        value: Address string

    Returns:
        The validated address, stripped

    Raises:
        ValidationError: If the value is not an IPv4/IPv6 address
    """
    value = value.strip()
    try:
        ipaddress.ip_address(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid IP address: {value}",
            hint="Use a single address like 203.0.113.7",
            details=[str(e)],
        ) from e
    return value


def validate_port(value: int) -> int:
    """Validate a port number.

    Raises:
        ValidationError: If port is out of valid range
    """
    if not 1 <= value <= 65535:
        raise ValidationError(
            f"Invalid port number: {value}",
            hint="Port must be between 1 and 65535",
        )
    return value


def validate_duration(value: str, *, allow_permanent: bool = False) -> str:
    """Validate a fail2ban time value.

    Args:
        value: Duration such as "600", "10m", "1h30m" or "-1"
        allow_permanent: Accept the "-1" permanent-ban sentinel

    Returns:
        The validated duration string, stripped and lower-cased

    Raises:
        ValidationError: If the value is not a fail2ban duration
    """
    value = value.strip().lower()

    if value == PERMANENT_SENTINEL:
        if allow_permanent:
            return value
        raise ValidationError(
            "A permanent value (-1) is only valid for the ban time",
            hint="Use a duration like 10m or 1h",
        )

    if not DURATION_PATTERN.match(value):
        raise ValidationError(
            f"Invalid duration: {value or '(empty)'}",
            hint="Use seconds or a unit suffix: 30s, 10m, 1h, 1d, 1w"
            + (" (or -1 for permanent)" if allow_permanent else ""),
        )

    return value


def validate_max_retry(value: int) -> int:
    """Validate a retry threshold (must allow at least one failure)."""
    if value < 1:
        raise ValidationError(
            f"Invalid retry threshold: {value}",
            hint="maxretry must be 1 or greater",
        )
    return value


def validate_email(value: str) -> str:
    """Validate an e-mail address for ban alerts."""
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError(
            f"Invalid e-mail address: {value}",
            hint="Use a format like admin@example.com",
        )
    return value


def parse_cidr_list(text: str, *, separator: str | None = None) -> list[str]:
    """Parse and validate a list of CIDRs.

    Args:
        text: Raw operator input
        separator: Item separator (None splits on whitespace and commas)

    Returns:
        Validated CIDRs in input order, duplicates removed

    Raises:
        ValidationError: On the first invalid entry
    """
    if separator is None:
        items = re.split(r"[\s,]+", text)
    else:
        items = text.split(separator)

    result: list[str] = []
    for item in items:
        item = item.strip()
        if not item:
            continue
        cidr = validate_cidr(item)
        if cidr not in result:
            result.append(cidr)
    return result
