"""
Concierge Callback Payloads and Keyboards

Inline-button callbacks travel as opaque "<action>|<param>" strings
(Telegram limits them to 64 bytes). They are decoded once, at the
transport boundary, into CallbackData. Keyboards are built from
transport-neutral Button rows; the Telegram layer maps them to
InlineKeyboardMarkup.

Usage:
    from core.callbacks import Button, CallbackData

    keyboard = [[Button("✅ Yes", "redl_yes"), Button("❌ No", "redl_no")]]
    data = CallbackData.decode("redl_select|42")
    data.action, data.param   # "redl_select", "42"
"""

from dataclasses import dataclass

MAX_CALLBACK_BYTES = 64


@dataclass(frozen=True)
class CallbackData:
    """A decoded inline-button payload."""
    action: str
    param: str | None = None

    @classmethod
    def decode(cls, raw: str) -> "CallbackData":
        action, sep, param = (raw or "").partition("|")
        return cls(action=action, param=param if sep else None)

    def encode(self) -> str:
        if self.param is None:
            return self.action
        return f"{self.action}|{self.param}"

    @property
    def int_param(self) -> int | None:
        try:
            return int(self.param) if self.param is not None else None
        except ValueError:
            return None


@dataclass(frozen=True)
class Button:
    """An inline button: either a callback or a URL link."""
    text: str
    callback: str | None = None
    url: str | None = None


Keyboard = list[list[Button]]
