"""Input/output layer for the allotment engines.

Public API:
    load_input(directory)          -- read CSV input dir -> snapshot payload
    load_lab_sections(directory)   -- read lab_sections.csv from a lab run output
    write_input(payload, dir)      -- write a snapshot payload as CSV input files
    write_output(result, dir)      -- write a run result as allocations.csv + summary.json
    render_xlsx(snapshot, path)    -- generate a multi-sheet allotment workbook
"""

from .reader import load_input, load_lab_sections
from .writer import write_input, write_output

__all__ = [
    "load_input",
    "load_lab_sections",
    "render_xlsx",
    "write_input",
    "write_output",
]

# Lazy import for the optional openpyxl dependency.
def render_xlsx(*args, **kwargs):
    from .xlsx import render_xlsx as _fn
    return _fn(*args, **kwargs)
