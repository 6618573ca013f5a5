import math

import pytest

from iot_feedback import waveform


def test_offset_starts_at_zero() -> None:
    assert waveform.offset(1.1, 0) == 0.0


def test_offset_scales_with_amplitude() -> None:
    x = 20
    assert waveform.offset(2.0, x) == pytest.approx(2.0 * math.sin(0.5))
    assert waveform.offset(0.0, x) == 0.0


def test_offset_peaks_at_quarter_period() -> None:
    assert waveform.offset(1.1, waveform.PERIOD / 4) == pytest.approx(1.1)


def test_offset_repeats_each_period() -> None:
    x = 17
    assert waveform.offset(0.3, x + waveform.PERIOD) == pytest.approx(
        waveform.offset(0.3, x)
    )
