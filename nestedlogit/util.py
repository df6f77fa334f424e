import numpy as np
import pandas as pd
from rich.table import Table


def signif(x: float, digits: int = 6) -> float:
    """ Round to a number of significant digits. """
    x = float(x)
    if not np.isfinite(x) or x == 0.0:
        return x
    return float(f"{x:.{digits}g}")


def fmt_signif(x, digits: int = 6) -> str:
    """Format numbers to `digits` significant digits; anything else via str()."""
    if isinstance(x, (bool, np.bool_)):
        return str(x)
    if isinstance(x, (int, float, np.integer, np.floating)):
        rounded = signif(x, digits)
        if rounded == 0.0 or (np.isfinite(rounded) and 1e-4 <= abs(rounded) < 1e15):
            return np.format_float_positional(rounded, trim="-")
        return f"{rounded:.{digits}g}"
    return str(x)


def df_to_table(
    df: pd.DataFrame,
    rich_table: Table | None = None,
    show_index: bool = False,
    index_name: str | None = None,
    sig_figs: int = 3,
    heading_style: str = "magenta",
    max_rows: int | None = None,
) -> Table:
    """Render a DataFrame as a rich Table, numbers shown to `sig_figs` significant digits."""

    def _fmt_cell(x) -> str:
        if isinstance(x, (float, np.floating)) and not np.isfinite(x):
            return str(x)
        return fmt_signif(x, sig_figs)

    rich_table = rich_table or Table(header_style=f"bold {heading_style}")
    if show_index:
        rich_table.add_column(str(index_name) if index_name else "", style=heading_style)
    for col in df.columns:
        rich_table.add_column(str(col))

    shown = df if max_rows is None else df.head(max_rows)
    for idx, row in shown.iterrows():
        cells = ([str(idx)] if show_index else []) + [_fmt_cell(v) for v in row.tolist()]
        rich_table.add_row(*cells)

    if max_rows is not None and len(df) > max_rows:
        rich_table.caption = f"{len(df) - max_rows} more rows not shown"
    return rich_table
