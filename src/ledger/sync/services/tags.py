"""Sequential ledger tag generation."""

import re

from ...api.exceptions import ValidationError

_TRAILING_DIGITS = re.compile(r"^(.*?)(\d+)$")


def generate_tag_range(starting_tag: str, count: int) -> list[str]:
    """Tags for ``count`` plants starting at ``starting_tag``.

    The trailing digit run is incremented and keeps its width, e.g.
    ``1A4FF0100000022000000123`` -> ``...0124``, ``...0125``.

    Raises:
        ValidationError: If the tag has no numeric suffix or the range
            would overflow the suffix width
    """
    if count < 1:
        raise ValidationError("Tag count must be at least 1", field="plant_count")

    match = _TRAILING_DIGITS.match((starting_tag or "").strip())
    if not match:
        raise ValidationError(
            f"Starting tag {starting_tag!r} does not end in a sequence number",
            field="starting_tag",
        )

    prefix, digits = match.groups()
    width = len(digits)
    start = int(digits)
    last = start + count - 1
    if len(str(last)) > width:
        raise ValidationError(
            f"Tag range starting at {starting_tag} overflows after {10 ** width - start} tags",
            field="starting_tag",
        )

    return [f"{prefix}{n:0{width}d}" for n in range(start, last + 1)]
