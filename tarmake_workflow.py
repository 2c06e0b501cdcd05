# tarmake_workflow.py
# Example workflow: load a small table, scale one column, summarize it.
#   tarmake make          # builds load -> double -> summarize
#   tarmake read summarize
#   tarmake visualize --out graph.dot
from __future__ import annotations

import csv

from tarmake import file_target, target, wf


def read_rows(path: str) -> list[dict]:
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def scale_column(rows: list[dict], column: str, factor: float) -> list[float]:
    out = []
    for row in rows:
        value = float(row[column])
        out.append(int(value * factor) if value.is_integer() else value * factor)
    return out


def workflow():
    return wf(
        # tracked input file: edits to the CSV invalidate everything downstream
        file_target("raw_file", "data/values.csv"),

        target(
            "load",
            lambda raw_file: read_rows(raw_file),
            description="Read the input table",
        ),

        # column selector is an ordinary parameter, not a dynamic lookup
        target(
            "double",
            lambda load, column="value": scale_column(load, column, 2),
            description="Multiply the value column by 2",
        ),

        target(
            "summarize",
            lambda double: sum(double),
            description="Sum of the doubled column",
        ),
    )
