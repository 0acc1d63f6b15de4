"""Input surfaces and clipboards for the emulator running the game.

Two input backends share one interface (``tap``, ``swipe``, ``key``):

* ``AdbDevice`` sends ``adb shell input`` commands to the emulator.
* ``WindowSurface`` drives the host mouse over the emulator window with
  ``pyautogui``, offset by the calibrated window origin.

The device clipboard always goes through ADB; the host clipboard goes
through ``pyperclip`` and may be unavailable (e.g. headless Linux).
"""

import logging
import shlex
import subprocess
from typing import Optional, Protocol

import pyperclip

from config import (
    ADB_BIN,
    ADB_SERIAL,
    ADB_TIMEOUT,
    EMULATOR_WINDOW_ORIGIN,
    KEYCODE_BACK,
    KEYCODE_COPY,
    KEYCODE_HOME,
)

logger = logging.getLogger(__name__)


class AdbError(RuntimeError):
    """Raised when an ``adb`` command fails, times out, or adb is missing."""


class InputSurface(Protocol):
    """Anything that can deliver taps, swipes and key presses to the game."""

    def tap(self, x: int, y: int) -> None: ...

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None: ...

    def key(self, code: int) -> None: ...


class AdbDevice:
    """Thin wrapper around the ``adb`` binary for one emulator instance.

    Every command runs with a hard timeout so that a hung emulator never
    blocks the worker indefinitely.

    Args:
        adb_bin: Path or name of the ``adb`` executable.
        serial: Device serial passed as ``-s``; empty for the only device.
        timeout: Seconds allowed per command.
    """

    def __init__(
        self,
        adb_bin: str = ADB_BIN,
        serial: str = ADB_SERIAL,
        timeout: float = ADB_TIMEOUT,
    ) -> None:
        self.adb_bin = adb_bin
        self.serial = serial
        self.timeout = timeout

    def _command(self, args: list[str]) -> list[str]:
        cmd = [self.adb_bin]
        if self.serial:
            cmd += ["-s", self.serial]
        return cmd + args

    def run(self, args: list[str], binary: bool = False) -> str | bytes:
        """Run one adb command and return its stdout.

        Args:
            args: Arguments after ``adb [-s serial]``.
            binary: Return raw bytes instead of decoded text.

        Raises:
            AdbError: If adb is missing, the command times out, or it exits
                with a non-zero status.
        """
        cmd = self._command(args)
        logger.debug("adb: %s", " ".join(cmd))
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self.timeout,
                check=False,
                text=not binary,
            )
        except FileNotFoundError as exc:
            raise AdbError(f"adb executable not found: '{self.adb_bin}'") from exc
        except subprocess.TimeoutExpired as exc:
            raise AdbError(
                f"adb command timed out after {self.timeout}s: {' '.join(cmd)}"
            ) from exc

        if completed.returncode != 0:
            stderr = completed.stderr
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", errors="replace")
            raise AdbError(
                f"adb command failed with exit code {completed.returncode}: "
                f"{' '.join(cmd)}: {stderr.strip()}"
            )
        return completed.stdout

    def shell(self, *args: object) -> str:
        """Run ``adb shell`` with *args* and return decoded stdout."""
        output = self.run(["shell", *(str(a) for a in args)])
        assert isinstance(output, str)
        return output

    def screencap(self) -> bytes:
        """Return the current screen as PNG bytes."""
        output = self.run(["exec-out", "screencap", "-p"], binary=True)
        assert isinstance(output, bytes)
        return output

    def tap(self, x: int, y: int) -> None:
        self.shell("input", "tap", x, y)

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        self.shell("input", "swipe", x1, y1, x2, y2, duration_ms)

    def key(self, code: int) -> None:
        self.shell("input", "keyevent", code)


# pyautogui key names for the Android key codes the navigator sends.
_WINDOW_KEYS: dict[int, str] = {
    KEYCODE_BACK: "esc",
    KEYCODE_HOME: "home",
}


class WindowSurface:
    """Drive the emulator window with the host mouse and keyboard.

    ``pyautogui`` needs a display server, so it is imported only when this
    backend is constructed.

    Args:
        origin: Host-screen ``(left, top)`` of the emulator's render area.
    """

    def __init__(self, origin: tuple[int, int] = EMULATOR_WINDOW_ORIGIN) -> None:
        import pyautogui

        self._gui = pyautogui
        self.origin = origin

    def _absolute(self, x: int, y: int) -> tuple[int, int]:
        return x + self.origin[0], y + self.origin[1]

    def tap(self, x: int, y: int) -> None:
        abs_x, abs_y = self._absolute(x, y)
        logger.debug("window tap(%d, %d) -> absolute (%d, %d)", x, y, abs_x, abs_y)
        self._gui.click(abs_x, abs_y)

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        start = self._absolute(x1, y1)
        end = self._absolute(x2, y2)
        self._gui.moveTo(*start)
        self._gui.dragTo(*end, duration=duration_ms / 1000.0, button="left")

    def key(self, code: int) -> None:
        if code == KEYCODE_COPY:
            self._gui.hotkey("ctrl", "c")
            return
        name = _WINDOW_KEYS.get(code)
        if name is None:
            raise ValueError(f"Key code {code} has no host keyboard equivalent")
        self._gui.press(name)


def _is_clipboard_error(output: str) -> bool:
    lowered = output.lower()
    return lowered.startswith(("error", "unknown", "no shell command", "exception"))


class DeviceClipboard:
    """The Android clipboard, read and written over ADB.

    Reading uses ``cmd clipboard get`` and falls back to the legacy
    ``service call clipboard`` path; raw binder dumps are discarded.
    Writing goes through the Clipper broadcast receiver.
    """

    def __init__(self, device: AdbDevice) -> None:
        self.device = device

    def get(self) -> str:
        try:
            text = self.device.shell("cmd", "clipboard", "get").strip()
        except AdbError:
            text = ""
        if text and not _is_clipboard_error(text):
            return text

        try:
            text = self.device.shell("service", "call", "clipboard", "1").strip()
        except AdbError:
            return ""
        if "Parcel" in text or text.startswith("Result"):
            return ""
        return text

    def set(self, text: str) -> None:
        self.device.shell("am", "broadcast", "-a", "clipper.set", "-e", "text", shlex.quote(text))

    def clear(self) -> None:
        self.set("")


class HostClipboard:
    """The host clipboard via ``pyperclip``; best-effort.

    The first ``PyperclipException`` marks the clipboard unavailable for the
    rest of the process and every later call becomes a no-op.
    """

    def __init__(self) -> None:
        self.available = True

    def get(self) -> Optional[str]:
        if not self.available:
            return None
        try:
            return pyperclip.paste()
        except pyperclip.PyperclipException as exc:
            logger.warning("Host clipboard unavailable: %s", exc)
            self.available = False
            return None

    def set(self, text: str) -> None:
        if not self.available:
            return
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as exc:
            logger.warning("Host clipboard unavailable: %s", exc)
            self.available = False
