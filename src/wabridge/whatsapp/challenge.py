"""Pairing challenge rendering - QR code as an SVG data URL."""

import base64
import io

import qrcode
import qrcode.image.svg

DATA_URL_PREFIX = "data:image/svg+xml;base64,"


def render_challenge(challenge: str) -> str:
    """Render the gateway's pairing string as a displayable QR data URL.

    Args:
        challenge: Raw pairing string issued by the gateway.

    Returns:
        ``data:image/svg+xml;base64,...`` suitable for an <img> tag.
    """
    image = qrcode.make(challenge, image_factory=qrcode.image.svg.SvgPathImage)
    buffer = io.BytesIO()
    image.save(buffer)
    return DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")
