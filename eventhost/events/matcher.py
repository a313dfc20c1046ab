"""Subject template matching.

A subject such as ``order.created.v1`` is matched against a subscriber's
template such as ``order.*``. Segments are compared case-insensitively. The
wildcard stands for exactly one segment, except as the last template segment
where it also absorbs any further trailing segments (one or more).
"""


def _split(value: str, separator: str) -> list[str]:
    if not separator:
        return [value]
    return value.split(separator)


def _segment_matches(wildcard: str, template_segment: str, subject_segment: str) -> bool:
    if template_segment == wildcard:
        return True
    return template_segment.casefold() == subject_segment.casefold()


def match(
    wildcard: str,
    separator: str,
    template: str,
    subject: str,
    *,
    trailing_wildcard_matches_many: bool = True,
) -> bool:
    """Check whether ``subject`` matches ``template``.

    Args:
        wildcard: Token standing for any single segment, e.g. ``*``
        separator: Segment separator, e.g. ``.``
        template: Subscriber subject template
        subject: Subject of the inbound event
        trailing_wildcard_matches_many: Whether a trailing wildcard matches
            more than one subject segment

    Returns:
        bool: True if the subject matches; never raises for string inputs
    """
    if not template or not subject:
        return False

    template_parts = _split(template, separator)
    subject_parts = _split(subject, separator)

    trailing_wildcard = template_parts[-1] == wildcard
    if len(subject_parts) != len(template_parts):
        if not (
            trailing_wildcard
            and trailing_wildcard_matches_many
            and len(subject_parts) > len(template_parts)
        ):
            return False

    for template_segment, subject_segment in zip(template_parts, subject_parts):
        if not _segment_matches(wildcard, template_segment, subject_segment):
            return False

    return True


def templates_overlap(
    wildcard: str,
    separator: str,
    first: str,
    second: str,
    *,
    trailing_wildcard_matches_many: bool = True,
) -> bool:
    """Check whether some subject exists that matches both templates."""
    if not first or not second:
        return False

    first_parts = _split(first, separator)
    second_parts = _split(second, separator)

    if len(first_parts) > len(second_parts):
        first_parts, second_parts = second_parts, first_parts

    if len(first_parts) != len(second_parts):
        # Only a trailing wildcard on the shorter template can span the rest.
        if not (trailing_wildcard_matches_many and first_parts[-1] == wildcard):
            return False

    for a, b in zip(first_parts, second_parts):
        if a == wildcard or b == wildcard:
            continue
        if a.casefold() != b.casefold():
            return False

    return True
