"""Helpers for embedded image payloads (data:<mime>;base64,<data>)."""

import base64
import binascii


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_url(url: str, default_mime: str = "image/jpeg") -> tuple[str, bytes]:
    """
    Split a data URL into (mime_type, raw bytes).

    A bare base64 string (no "data:" prefix) is accepted too and gets
    default_mime. Raises ValueError if the payload is not valid base64.
    """
    mime_type = default_mime
    payload = url
    if url.startswith("data:") and "," in url:
        header, payload = url.split(",", 1)
        mime_type = header[5:].split(";", 1)[0] or default_mime
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image payload: {e}") from e
