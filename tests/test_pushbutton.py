from evccs.pushbutton import CYCLES_PER_SECOND, PushButton
from evccs.runtime import Parameters

PRESSED = 0
RELEASED = 4095
HALF_SECOND = CYCLES_PER_SECOND // 2


def run(button, value, cycles):
    for _ in range(cycles):
        button.update(value)


def press_series(button, count):
    for index in range(count):
        run(button, PRESSED, 2)
        if index < count - 1:
            run(button, RELEASED, 2)
    run(button, RELEASED, HALF_SECOND)


def test_long_press_detected():
    button = PushButton(Parameters())
    run(button, PRESSED, HALF_SECOND)
    assert button.is_pressed_500ms() is False
    button.update(PRESSED)
    assert button.is_pressed_500ms() is True


def test_long_press_ignored_when_unlock_not_allowed():
    button = PushButton(Parameters(allow_unlock=False))
    run(button, PRESSED, 100)
    assert button.is_pressed_500ms() is False


def test_threshold_is_exclusive():
    button = PushButton(Parameters())
    run(button, 999, HALF_SECOND + 1)
    assert button.is_pressed_500ms() is True
    other = PushButton(Parameters())
    run(other, 1000, HALF_SECOND + 1)
    assert other.is_pressed_500ms() is False


def test_series_of_four_gives_digits():
    button = PushButton(Parameters())
    for count in (1, 2, 3, 4):
        press_series(button, count)
    assert button.accumulated_digits() == 1234


def test_digits_zero_before_four_series():
    button = PushButton(Parameters())
    for count in (1, 2, 3):
        press_series(button, count)
    assert button.accumulated_digits() == 0


def test_long_release_resets_series():
    button = PushButton(Parameters())
    for count in (1, 2, 3, 4):
        press_series(button, count)
    run(button, RELEASED, CYCLES_PER_SECOND * 5)
    assert button.accumulated_digits() == 0
    assert button.is_pressed_500ms() is False