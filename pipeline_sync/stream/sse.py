"""Server-Sent Events framing.

Only the ``data`` field matters to the pipeline stream; ``event``, ``id``
and ``retry`` are accepted and ignored.
"""

from typing import Iterable, Iterator


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """
    Yield the data payload of each complete SSE frame.

    Args:
        lines: Decoded lines without line terminators (as produced by
            ``Response.iter_lines(decode_unicode=True)``)

    Yields:
        The frame's ``data`` lines joined with ``\\n``. Frames without data
        (comment-only keepalives, bare ``event:`` frames) yield nothing.
    """
    buffer = []

    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.rstrip("\r")

        if line == "":
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue

        if line.startswith(":"):
            continue

        field, sep, value = line.partition(":")
        if not sep:
            # A line without a colon is a field name with an empty value
            value = ""
        elif value.startswith(" "):
            value = value[1:]

        if field == "data":
            buffer.append(value)

    # An unterminated trailing frame is discarded, as browsers do
