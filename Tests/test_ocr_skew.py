import pytest

from match_card.card_types import OcrWord
from match_card.ocr_skew import (
    estimate_skew,
    estimate_skew_angle,
    polygon_angle,
    rotate_point,
)

from Tests.helpers import box, rotated


def test_estimate_skew_angle_empty_is_zero():
    assert estimate_skew_angle([]) == 0


def test_estimate_skew_angle_takes_median_not_mean():
    assert estimate_skew_angle([10, 20, 30]) == 20
    assert estimate_skew_angle([1, 2, 90]) == 2


def test_estimate_skew_angle_even_count_uses_upper_middle():
    assert estimate_skew_angle([4, 1, 3, 2]) == 3


def test_polygon_angle():
    assert polygon_angle(box(0, 0, 10, 5)) == pytest.approx(0)
    assert polygon_angle([(0, 0), (0, 10)]) == pytest.approx(90)
    assert polygon_angle([(0, 0)]) is None


def test_estimate_skew_ignores_outlier_words():
    words = [OcrWord("w", rotated(box(i * 20, 0, 10, 5), 3.0)) for i in range(5)]
    words.append(OcrWord("upside", rotated(box(0, 50, 10, 5), 180.0)))
    words.append(OcrWord("blank"))

    assert estimate_skew(words) == pytest.approx(3.0)


def test_rotate_point_round_trip():
    point = rotate_point((30.0, 40.0), 12.5, pivot=(5.0, 5.0))
    back = rotate_point(point, -12.5, pivot=(5.0, 5.0))
    assert back == pytest.approx((30.0, 40.0))
