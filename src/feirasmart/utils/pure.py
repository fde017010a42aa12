from decimal import Decimal, InvalidOperation
from typing import List, Literal, Optional

from feirasmart.utils.errors import ValidationError

CENT = Decimal("0.01")


def parse_money(value, field: str = "price", allow_zero: bool = True) -> Decimal:
    """
    Convert user or client input into an exact Decimal amount.

    Floats go through ``str`` so 8.5 becomes Decimal("8.5") rather than its
    binary expansion. Rejects non-numbers, negatives, more than two decimal
    places and (when ``allow_zero`` is False) zero.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required.")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number.") from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number.")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(
            f"{field} must be {'non-negative' if allow_zero else 'positive'}."
        )
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} must have at most two decimal places.")
    return amount.quantize(CENT)


def format_money(amount: Decimal) -> str:
    """R$ 1234.5 -> 'R$ 1.234,50'"""
    text = f"{Decimal(amount).quantize(CENT):,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def generate_markdown_table(
    headers: Optional[List[str]],
    rows: List[List[str]],
    aligns: Optional[List[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Generate a Markdown table.

    Args:
        headers: List of column headers, or None to use first row as headers.
        rows: List of rows. Cells are converted with ``str``; pipes are escaped.
        aligns: List of alignments ('l', 'c', 'r') for each column.
                Defaults to all left ('l').

    Returns:
        str: Markdown formatted table, or "" when there are no rows.
    """
    if not rows:
        return ""

    if not headers:
        headers, rows = rows[0], rows[1:]

    def cell(value) -> str:
        return "-" if value is None else str(value).replace("|", "\\|")

    headers = [cell(h) for h in headers]
    rows = [[cell(v) for v in row] for row in rows]

    if aligns is None:
        aligns = ["l"] * len(headers)
    elif len(aligns) != len(headers):
        raise ValueError("Length of aligns must match number of headers.")

    align_map = {"l": ":---", "c": ":---:", "r": "---:"}

    lines = [
        "| " + " | ".join(headers) + " |",
        "| " + " | ".join(align_map[a] for a in aligns) + " |",
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in rows)
    return "\n".join(lines)
