# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Local QR rendering for bridges that answer with a textual QR payload.
"""

import base64
import io

import qrcode
from qrcode.constants import ERROR_CORRECT_H

DATA_URL_PREFIX = "data:image/png;base64,"


def render_qr_data_url(data: str, box_size: int = 8, border: int = 4) -> str:
    """
    Render a QR code as a PNG data URL.

    Args:
        data: Text to encode (URL or raw bridge payload)
        box_size: Pixels per QR module
        border: Quiet zone width in modules

    Returns:
        "data:image/png;base64,..." string
    """
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")
