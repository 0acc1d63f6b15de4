"""Multi-channel capture of a free-text field through the clipboard.

The game's copy button may land in the Android clipboard or, depending on
the emulator build, in the host clipboard. ``FieldCapture`` therefore clears
both, triggers the copy, and polls each channel with its own bounded
timeout. If neither yields text it long-presses the field, sends an explicit
copy key, and polls again with shorter timeouts. When every channel stays
empty it raises ``ClipboardEmpty`` and the caller OCRs the field instead.
"""

import logging
import time
from collections.abc import Callable
from typing import Optional

from config import (
    CLIPBOARD_POLL_INTERVAL,
    DEVICE_CLIPBOARD_TIMEOUT,
    HOST_CLIPBOARD_TIMEOUT,
    KEYCODE_COPY,
    LONG_PRESS_MS,
    RETRY_DEVICE_CLIPBOARD_TIMEOUT,
    RETRY_HOST_CLIPBOARD_TIMEOUT,
)
from device import AdbError, DeviceClipboard, HostClipboard
from exceptions import ClipboardEmpty
from navigate import Action, Key, LongPress, Navigator

logger = logging.getLogger(__name__)


class FieldCapture:
    """Copy one text field off the screen via the device or host clipboard.

    Args:
        navigator: Used to send the copy, long-press and copy-key actions.
        device_clipboard: The Android clipboard.
        host_clipboard: The host clipboard, or ``None`` when not in use.
        clock: Monotonic time source (seconds).
        sleep: Sleep function used between polls.
    """

    def __init__(
        self,
        navigator: Navigator,
        device_clipboard: DeviceClipboard,
        host_clipboard: Optional[HostClipboard] = None,
        poll_interval: float = CLIPBOARD_POLL_INTERVAL,
        device_timeout: float = DEVICE_CLIPBOARD_TIMEOUT,
        host_timeout: float = HOST_CLIPBOARD_TIMEOUT,
        retry_device_timeout: float = RETRY_DEVICE_CLIPBOARD_TIMEOUT,
        retry_host_timeout: float = RETRY_HOST_CLIPBOARD_TIMEOUT,
        long_press_ms: int = LONG_PRESS_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.navigator = navigator
        self.device_clipboard = device_clipboard
        self.host_clipboard = host_clipboard
        self.poll_interval = poll_interval
        self.device_timeout = device_timeout
        self.host_timeout = host_timeout
        self.retry_device_timeout = retry_device_timeout
        self.retry_host_timeout = retry_host_timeout
        self.long_press_ms = long_press_ms
        self.clock = clock
        self.sleep = sleep

    def copy_text(
        self,
        field: str,
        copy_action: Action,
        press_point: tuple[int, int],
    ) -> str:
        """Capture *field* by clipboard.

        Args:
            field: Field name, for logging and the error.
            copy_action: The action that makes the game copy the field.
            press_point: Where to long-press the field for the retry pass.

        Returns:
            The copied text, stripped.

        Raises:
            ClipboardEmpty: If every channel stayed empty.
        """
        prior = self._reset()

        self.navigator.perform(copy_action)
        text = self._collect(prior, self.device_timeout, self.host_timeout)
        if text:
            return text

        logger.info("Copy of '%s' produced nothing; retrying with long-press", field)
        self.navigator.perform(LongPress(press_point[0], press_point[1], self.long_press_ms))
        self.navigator.perform(Key(KEYCODE_COPY))
        text = self._collect(prior, self.retry_device_timeout, self.retry_host_timeout)
        if text:
            return text

        raise ClipboardEmpty(field)

    def _host_usable(self) -> bool:
        return self.host_clipboard is not None and self.host_clipboard.available

    def _reset(self) -> tuple[Optional[str], Optional[str]]:
        """Clear both clipboards.

        Returns:
            ``(device_prior, host_prior)``: content each channel still holds
            from before this copy. A value equal to it is never accepted,
            because the clear can fail silently (e.g. no Clipper receiver on
            the device, where ``am broadcast`` still exits 0).
        """
        device_prior = self.device_clipboard.get() or None
        try:
            self.device_clipboard.clear()
        except AdbError as exc:
            logger.warning("Could not clear device clipboard: %s", exc)
        if device_prior is not None and not self.device_clipboard.get():
            device_prior = None

        if not self._host_usable():
            return device_prior, None
        host_prior = self.host_clipboard.get()
        self.host_clipboard.set("")
        return device_prior, host_prior

    def _collect(
        self,
        prior: tuple[Optional[str], Optional[str]],
        device_timeout: float,
        host_timeout: float,
    ) -> Optional[str]:
        device_prior, host_prior = prior
        text = self._poll(
            self.device_clipboard.get,
            device_timeout,
            lambda value: bool(value) and value != device_prior,
        )
        if text:
            logger.debug("Clipboard text from device channel")
            return text.strip()

        if not self._host_usable():
            return None
        text = self._poll(
            self.host_clipboard.get,
            host_timeout,
            lambda value: bool(value) and value != host_prior,
        )
        if text:
            logger.debug("Clipboard text from host channel")
            return text.strip()
        return None

    def _poll(
        self,
        read: Callable[[], Optional[str]],
        timeout: float,
        accept: Callable[[Optional[str]], bool],
    ) -> Optional[str]:
        """Read until *accept* passes or *timeout* elapses; reads at least once."""
        deadline = self.clock() + timeout
        while True:
            value = read()
            if accept(value):
                return value
            if self.clock() >= deadline:
                return None
            self.sleep(self.poll_interval)
