"""Push button evaluation: long press detection and press-count series."""

from __future__ import annotations

from collections import deque

from evccs.runtime import Parameters

CYCLES_PER_SECOND = 33
PRESSED_BELOW_ADC = 1000
SERIES_LENGTH = 4
_MAX_TIME = CYCLES_PER_SECOND * 60


class PushButton:
    """Evaluates the button ADC input; call update() every 30 ms."""

    def __init__(self, params: Parameters) -> None:
        self._params = params
        self._release_time = 0
        self._press_time = 0
        self._presses = 0
        self._series_counter = 0
        self._digits = 0
        self._was_pressed = False
        self._series: deque[int] = deque([0] * SERIES_LENGTH, maxlen=SERIES_LENGTH)

    def _process_series(self) -> None:
        self._series.append(self._presses)
        value = 0
        for entry in self._series:
            value = (value * 10 + entry) & 0xFFFF
        self._series_counter = (self._series_counter + 1) & 0xFF
        if self._series_counter == SERIES_LENGTH:
            self._digits = value

    def _reset_series(self) -> None:
        self._series.extend([0] * SERIES_LENGTH)
        self._series_counter = 0
        self._digits = 0
        self._press_time = 0

    def update(self, adc_value: int) -> None:
        pressed = adc_value < PRESSED_BELOW_ADC
        if pressed:
            if not self._was_pressed:
                self._release_time = 0
                self._presses = (self._presses + 1) & 0xFF
                self._press_time = 0
            if self._press_time < _MAX_TIME:
                self._press_time += 1
        else:
            if self._release_time < _MAX_TIME:
                self._release_time += 1
            if self._release_time == CYCLES_PER_SECOND // 2:
                self._process_series()
                self._presses = 0
            if self._release_time == CYCLES_PER_SECOND * 5:
                self._reset_series()
        self._was_pressed = pressed

    def is_pressed_500ms(self) -> bool:
        """True after a press longer than half a second, if unlocking is allowed."""
        if not self._params.allow_unlock:
            return False
        return self._press_time > CYCLES_PER_SECOND // 2

    def accumulated_digits(self) -> int:
        """The last four press counts as a decimal number."""
        return self._digits