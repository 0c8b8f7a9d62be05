import logging
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

TOAST_VARIANTS = ("default", "destructive")


class Toast(BaseModel):
    title: str
    description: Optional[str] = None
    variant: str = "default"


class Notifier:
    """Surfaces non-blocking, auto-dismissing messages to the user"""

    def toast(self, title: str, description: Optional[str] = None, variant: str = "default") -> None:
        raise NotImplementedError


class ToastQueue(Notifier):
    """Keeps every toast in order; a UI drains it, tests inspect it"""

    def __init__(self):
        self.toasts: list[Toast] = []

    def toast(self, title: str, description: Optional[str] = None, variant: str = "default") -> None:
        if variant not in TOAST_VARIANTS:
            raise ValueError(f"Unknown toast variant: {variant}")
        self.toasts.append(Toast(title=title, description=description, variant=variant))
        log = logger.warning if variant == "destructive" else logger.info
        log(f"🔔 {title}: {description or ''}")

    @property
    def last(self) -> Optional[Toast]:
        return self.toasts[-1] if self.toasts else None

    def drain(self) -> list[Toast]:
        toasts, self.toasts = self.toasts, []
        return toasts
