"""Custom exception classes for the KvK DKP tracker.

``BoundsInvalid`` and ``NavigationUnreachable`` are fatal for the current
scan session. ``RecognitionWeak`` fails a session only after its single
recapture. ``ClipboardEmpty`` is never fatal; it routes the field to OCR.
"""


class BoundsInvalid(Exception):
    """Raised when an extraction rectangle falls outside the captured frame.

    This is a calibration error and is never retried.

    Args:
        rect: The offending ``(left, top, width, height)`` rectangle.
        image_size: The frame size as ``(width, height)``.
        label: Optional name of the region (e.g. ``"power"``).
    """

    def __init__(
        self,
        rect: tuple[int, int, int, int],
        image_size: tuple[int, int],
        label: str = "",
    ) -> None:
        self.rect = rect
        self.image_size = image_size
        self.label = label
        name = f"Region '{label}'" if label else "Region"
        super().__init__(
            f"{name} {rect} is outside the image bounds "
            f"{image_size[0]}x{image_size[1]}"
        )


class RecognitionWeak(Exception):
    """Raised when the player ID read is too short to trust.

    Args:
        field: The name of the field (normally ``"id"``).
        raw_text: The raw OCR output.
        min_digits: The minimum number of digits required.
    """

    def __init__(self, field: str, raw_text: str, min_digits: int) -> None:
        self.field = field
        self.raw_text = raw_text
        self.min_digits = min_digits
        super().__init__(
            f"Weak OCR read for '{field}': expected at least {min_digits} "
            f"digits, got '{raw_text}'"
        )


class ClipboardEmpty(Exception):
    """Raised when no clipboard channel produced text for a field.

    Args:
        field: The name of the field that was being copied.
    """

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"No clipboard channel returned text for '{field}'")


class NavigationUnreachable(Exception):
    """Raised when the navigator exhausts its recovery policy.

    Args:
        expected: The screen that could not be reached.
        detail: Which recovery steps were attempted.
    """

    def __init__(self, expected: str, detail: str = "") -> None:
        self.expected = expected
        self.detail = detail
        message = f"Could not reach screen '{expected}'"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class NoActivePeriod(Exception):
    """Raised when a KvK mutation needs an active period and none exists.

    Args:
        operation: The rejected operation (e.g. ``"set_weight"``).
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            f"No active KvK period for '{operation}'. Start one first."
        )
