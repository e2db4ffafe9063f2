import io

import qrcode

from booking_engine.application.ports import TicketCodec


class QrTicketCodec(TicketCodec):
    """PNG QR code for a ticket token."""

    media_type = "image/png"
    file_extension = "png"

    def __init__(self, box_size: int = 10, border: int = 2):
        self.box_size = box_size
        self.border = border

    def encode(self, token: str) -> bytes:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_Q,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(token)
        qr.make(fit=True)
        image = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()
