"""
QR code rendering for campaign share links and UPI payment intents.
"""

from __future__ import annotations

import base64
import io
import logging
from decimal import Decimal
from typing import Optional
from urllib.parse import quote, urlencode

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_M
from qrcode.exceptions import DataOverflowError
from qrcode.image.pil import PilImage

from friendfund.errors import UpstreamDegraded

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 300
DEFAULT_MARGIN = 2
DEFAULT_DARK = "#000000"
DEFAULT_LIGHT = "#ffffff"


def render_qr(
    payload: str,
    *,
    width: int = DEFAULT_WIDTH,
    margin: int = DEFAULT_MARGIN,
    dark: str = DEFAULT_DARK,
    light: str = DEFAULT_LIGHT,
) -> str:
    """Render ``payload`` as a square PNG and return it as a data URI."""
    try:
        code = qrcode.QRCode(
            error_correction=ERROR_CORRECT_M,
            box_size=10,
            border=margin,
        )
        code.add_data(payload)
        code.make(fit=True)
        image = code.make_image(
            image_factory=PilImage, fill_color=dark, back_color=light
        ).get_image()
        image = image.convert("RGB").resize((width, width), Image.Resampling.NEAREST)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
    except (ValueError, OSError, DataOverflowError) as exc:
        logger.warning("QR rendering failed: %s", exc)
        raise UpstreamDegraded(f"QR rendering failed: {exc}") from exc
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def build_upi_uri(
    upi_id: str,
    payee_name: str,
    amount: Optional[Decimal] = None,
    note: Optional[str] = None,
) -> str:
    params = {"pa": upi_id, "pn": payee_name}
    if amount is not None:
        params["am"] = f"{amount:.2f}"
    params["cu"] = "INR"
    if note:
        params["tn"] = note[:80]
    return "upi://pay?" + urlencode(params, quote_via=quote)
