import random
import re

from dropify.services.codes import generate_code, normalize_handle


def test_generate_code_uses_prefix_handle_and_four_digit_suffix() -> None:
    code = generate_code("DROP-", "someviewer")
    assert re.fullmatch(r"DROP-SOMEVIEWER-\d{4}", code)


def test_generate_code_strips_non_alphanumerics_from_handle() -> None:
    assert normalize_handle("some_viewer.99!") == "SOMEVIEWER99"
    assert re.fullmatch(r"VIP-SOMEVIEWER99-\d{4}", generate_code("VIP-", "some_viewer.99!"))


def test_generate_code_with_empty_prefix_for_global_drops() -> None:
    assert re.fullmatch(r"STREAMER10-\d{4}", generate_code("", "streamer10"))


def test_generate_code_is_deterministic_with_seeded_rng() -> None:
    first = generate_code("DROP-", "viewer", rng=random.Random(42))
    second = generate_code("DROP-", "viewer", rng=random.Random(42))
    assert first == second
    suffix = int(first.rsplit("-", 1)[1])
    assert 1000 <= suffix <= 9999


def test_generate_code_handles_missing_handle() -> None:
    assert re.fullmatch(r"DROP--\d{4}", generate_code("DROP-", None))
