from datetime import UTC, datetime


def datetime_now_utc() -> datetime:
    return datetime.now(tz=UTC)


def to_vault_serial(serial_number: int) -> str:
    """
    Formats a certificate serial number the way Vault expects it
    in paths, e.g. 4095 -> "0f-ff".
    """
    hex_serial = format(serial_number, "x")
    if len(hex_serial) % 2:
        hex_serial = "0" + hex_serial
    return "-".join(hex_serial[i : i + 2] for i in range(0, len(hex_serial), 2))
