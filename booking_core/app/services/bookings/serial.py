import secrets
from datetime import datetime

SERIAL_PREFIX = "BK"


def generate_serial_key(start_time: datetime) -> str:
    """Human-readable booking reference: BK-YYYYMMDD-XXXXXX."""
    suffix = secrets.token_hex(3).upper()
    return f"{SERIAL_PREFIX}-{start_time:%Y%m%d}-{suffix}"
