"""Parsing student rosters pasted from a spreadsheet."""

import csv
from dataclasses import dataclass
from io import StringIO
from typing import List, Optional

import pandas as pd

from assessment_api.errors import ValidationFailed

ROSTER_COLUMNS = ["last_name", "first_name", "middle_name"]


@dataclass
class RosterRow:
    last_name: str
    first_name: str
    middle_name: Optional[str] = None


def parse_pasted_roster(text: str) -> List[RosterRow]:
    """Parse tab-separated rows in the order last name, first name, middle name.

    Extra columns are ignored, missing trailing columns are treated as empty.
    """
    text = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        raise ValidationFailed("Nothing to import: the pasted text is empty")

    width = max(max(line.count("\t") + 1 for line in lines), len(ROSTER_COLUMNS))
    df = pd.read_csv(
        StringIO("\n".join(lines)),
        sep="\t",
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        quoting=csv.QUOTE_NONE,
    )
    df = df.iloc[:, : len(ROSTER_COLUMNS)].fillna("")
    df.columns = ROSTER_COLUMNS
    df = df.apply(lambda column: column.str.strip())

    incomplete = df[(df["last_name"] == "") | (df["first_name"] == "")]
    if not incomplete.empty:
        rows = [int(index) + 1 for index in incomplete.index]
        raise ValidationFailed(
            "Rows without a last or first name: " + ", ".join(str(r) for r in rows),
            invalidRows=rows,
        )

    return [
        RosterRow(
            last_name=row.last_name,
            first_name=row.first_name,
            middle_name=row.middle_name or None,
        )
        for row in df.itertuples(index=False)
    ]
