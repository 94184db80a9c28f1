import base64

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_M


def make_qr_svg_bytes(payload: str) -> bytes:
    # medium error correction, narrow quiet zone
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=2, image_factory=qrcode.image.svg.SvgImage)
    qr.add_data(payload)
    qr.make(fit=True)
    return qr.make_image().to_string()


def make_qr_data_uri(payload: str) -> str:
    """Approval link as an inline `data:` URI, ready for an <img src>."""
    return "data:image/svg+xml;base64," + base64.b64encode(make_qr_svg_bytes(payload)).decode("ascii")
