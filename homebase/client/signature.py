"""
Freehand signature capture

Pointer events build strokes on a fixed-size surface; submission rasterizes
them to a PNG data URL and binds it to the typed signer name, a timestamp and
a best-effort public IP address.
"""

import base64
import io
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

import httpx
from PIL import Image, ImageDraw
from pydantic import BaseModel

from ..config import IP_LOOKUP_URL
from .api import ValidationFailure

logger = logging.getLogger(__name__)

CANVAS_WIDTH = 500
CANVAS_HEIGHT = 150
LINE_WIDTH = 2
STROKE_COLOR = (0, 0, 0, 255)

NAME_REQUIRED_MESSAGE = "Please enter your name"
SIGNATURE_REQUIRED_MESSAGE = "Please provide your signature"


class SignatureState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    CAPTURED = "captured"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"


class SignatureResult(BaseModel):
    signature: str  # PNG data URL
    signerName: str
    signedAt: datetime
    ipAddress: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")


class SignatureCapture:
    """
    State of the signature dialog.

    A stroke only counts once the pointer has moved while pressed; a bare
    click leaves the surface blank.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        ip_lookup_url: str = IP_LOOKUP_URL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.http_client = http_client
        self.ip_lookup_url = ip_lookup_url
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._reset()
        self.visible = False

    def _reset(self) -> None:
        self.state = SignatureState.IDLE
        self.strokes: list[list[tuple[float, float]]] = []
        self.signer_name = ""
        self.has_signature = False
        self._pen_down = False

    # ------------------------------------------------------------------
    # Dialog
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Show the dialog; reopening always starts blank"""
        self._reset()
        self.visible = True

    def cancel(self) -> None:
        self._reset()
        self.state = SignatureState.CANCELLED
        self.visible = False
        logger.info("✋ Signature capture cancelled")

    def set_signer_name(self, name: str) -> None:
        self.signer_name = name

    # ------------------------------------------------------------------
    # Drawing surface
    # ------------------------------------------------------------------

    @staticmethod
    def _clamp(x: float, y: float) -> tuple[float, float]:
        return min(max(x, 0), CANVAS_WIDTH), min(max(y, 0), CANVAS_HEIGHT)

    def pointer_down(self, x: float, y: float) -> None:
        self._pen_down = True
        self.strokes.append([self._clamp(x, y)])
        if self.state == SignatureState.IDLE:
            self.state = SignatureState.DRAWING

    def pointer_move(self, x: float, y: float) -> None:
        if not self._pen_down:
            return
        self.strokes[-1].append(self._clamp(x, y))
        self.has_signature = True
        self.state = SignatureState.CAPTURED

    def pointer_up(self) -> None:
        self._pen_down = False

    pointer_leave = pointer_up

    def clear(self) -> None:
        """Wipe the surface but keep the dialog and the typed name"""
        self.strokes = []
        self.has_signature = False
        self._pen_down = False
        self.state = SignatureState.IDLE

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validation_error(self) -> Optional[str]:
        if not self.signer_name.strip():
            return NAME_REQUIRED_MESSAGE
        if not self.has_signature:
            return SIGNATURE_REQUIRED_MESSAGE
        return None

    @property
    def can_submit(self) -> bool:
        return self.validation_error() is None

    def rasterize(self) -> str:
        """Render the strokes to a transparent PNG data URL"""
        image = Image.new("RGBA", (CANVAS_WIDTH, CANVAS_HEIGHT), (255, 255, 255, 0))
        draw = ImageDraw.Draw(image)
        for stroke in self.strokes:
            if len(stroke) > 1:
                draw.line(stroke, fill=STROKE_COLOR, width=LINE_WIDTH, joint="curve")

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    async def lookup_ip(self) -> str:
        """Public IP of this machine, or '' when the lookup fails"""
        try:
            if self.http_client is not None:
                response = await self.http_client.get(self.ip_lookup_url, timeout=5.0)
            else:
                async with httpx.AsyncClient(timeout=5.0) as client:
                    response = await client.get(self.ip_lookup_url)
            response.raise_for_status()
            return str(response.json().get("ip", ""))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️ IP lookup failed, signing without IP: {e}")
            return ""

    async def submit(self) -> SignatureResult:
        """
        Produce the signature payload and close the dialog.

        Raises:
            ValidationFailure: If the name is blank or nothing was drawn
        """
        error = self.validation_error()
        if error:
            raise ValidationFailure([error])

        result = SignatureResult(
            signature=self.rasterize(),
            signerName=self.signer_name.strip(),
            signedAt=self.clock(),
            ipAddress=await self.lookup_ip(),
        )

        self.state = SignatureState.SUBMITTED
        self.visible = False
        logger.info(f"✍️ Signature captured for {result.signerName}")
        return result
