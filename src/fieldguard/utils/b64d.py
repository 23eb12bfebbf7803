
import base64
import binascii


def b64d(value: str) -> bytes:
    """URL-safe base64 decode that tolerates missing padding"""
    pad = "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode((value + pad).encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError("value is not valid base64") from exc
