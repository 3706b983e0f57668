import pytest

from app.services.counts import required_clip_count, required_request_count


@pytest.mark.parametrize(
    ("minutes", "expected"),
    [(10, 7), (60, 15), (120, 25), (1, 6), (6, 6), (7, 7)],
)
def test_required_clip_count_table(minutes, expected):
    assert required_clip_count(minutes) == expected


@pytest.mark.parametrize("minutes", [None, 0, -3])
def test_required_clip_count_defaults_to_five_without_duration(minutes):
    assert required_clip_count(minutes) == 5


@pytest.mark.parametrize(
    ("minutes", "expected"),
    [(10, 7), (60, 15), (120, 25), (0.5, 6)],
)
def test_required_request_count_with_defaults(minutes, expected):
    assert required_request_count(minutes) == expected


@pytest.mark.parametrize("minutes", [None, 0, -1])
def test_required_request_count_is_zero_without_duration(minutes):
    assert required_request_count(minutes) == 0


def test_required_request_count_never_under_provisions():
    for minutes in range(1, 240):
        count = required_request_count(minutes, minutes_per_clip=3, clips_per_request=2, buffer_requests=0)
        assert count >= 1
        assert count * 3 * 2 >= minutes


def test_required_request_count_uses_custom_constants():
    assert required_request_count(60, minutes_per_clip=4, clips_per_request=2, buffer_requests=1) == 9
    assert required_request_count(1, minutes_per_clip=10, clips_per_request=10, buffer_requests=0) == 1
