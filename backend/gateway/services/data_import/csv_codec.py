"""
CSV Codec
Parses uploaded CSV text into a header and data rows, and renders rows back
to CSV for export.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional


@dataclass
class ParsedCsv:
    headers: List[str] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)


def parse_csv(content: str) -> ParsedCsv:
    """
    Parse CSV text in one pass.

    Commas and newlines only separate outside quotes, a doubled quote inside
    quotes is a literal quote, and carriage returns outside quotes are
    dropped. A trailing row that is empty or a single blank field is
    discarded. The first row is the header, with surrounding whitespace
    trimmed from each name.
    """
    rows: List[List[str]] = []
    row: List[str] = []
    buf: List[str] = []
    in_quotes = False
    i = 0
    length = len(content)

    while i < length:
        char = content[i]

        if in_quotes:
            if char == '"':
                if i + 1 < length and content[i + 1] == '"':
                    buf.append('"')
                    i += 2
                    continue
                in_quotes = False
            else:
                buf.append(char)
            i += 1
            continue

        if char == '"':
            in_quotes = True
        elif char == ",":
            row.append("".join(buf))
            buf = []
        elif char == "\n":
            row.append("".join(buf))
            rows.append(row)
            row = []
            buf = []
        elif char != "\r":
            buf.append(char)
        i += 1

    row.append("".join(buf))
    if len(row) > 1 or row[0].strip() != "":
        rows.append(row)

    if not rows:
        return ParsedCsv()

    return ParsedCsv(headers=[h.strip() for h in rows[0]], rows=rows[1:])


def escape_value(value: Any) -> str:
    if value is None:
        return ""
    text = str(value)
    if '"' in text or "," in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def encode_csv(rows: Iterable[Dict[str, Any]], headers: List[str]) -> str:
    """Render rows under the given headers; None becomes an empty field."""
    lines = [",".join(escape_value(h) for h in headers)]
    for row in rows:
        lines.append(",".join(escape_value(row.get(h)) for h in headers))
    return "\n".join(lines)


def iter_csv_lines(rows: Iterable[Dict[str, Any]], headers: List[str]) -> Iterable[str]:
    """Streaming form of encode_csv for large exports."""
    yield ",".join(escape_value(h) for h in headers)
    for row in rows:
        yield "\n" + ",".join(escape_value(row.get(h)) for h in headers)


def rows_to_records(parsed: ParsedCsv, columns: List[str]) -> List[Dict[str, Optional[str]]]:
    """Map each data row onto the given header columns; short rows yield None."""
    indexes = {name: parsed.headers.index(name) for name in columns}
    return [
        {name: (row[idx] if idx < len(row) else None) for name, idx in indexes.items()}
        for row in parsed.rows
    ]
