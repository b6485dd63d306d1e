import pytest

from ticketsale_api.utils.mask import mask_answers, mask_sensitive_value


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("", "*"),
        ("a", "*"),
        ("ab", "**"),
        ("abc", "a***c"),
        ("abcd", "ab***cd"),
        ("4111111111111111", "41************11"),
    ],
)
def test_mask_sensitive_value(value: str, expected: str) -> None:
    assert mask_sensitive_value(value) == expected


def test_mask_answers_only_masks_sensitive_keys() -> None:
    answers = {"Email": "fan@example.com", "Seat preference": "aisle"}

    masked = mask_answers(answers, [" email "])

    assert masked["Seat preference"] == "aisle"
    assert masked["Email"].startswith("fa")
    assert masked["Email"].endswith("om")
    assert "fan@example" not in masked["Email"]
