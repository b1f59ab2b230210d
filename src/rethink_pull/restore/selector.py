"""Table include/exclude filtering."""

from collections.abc import Iterable, Sequence

from rethink_pull.restore.models import TableExportUnit


def select_tables(
    units: Iterable[TableExportUnit],
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
) -> list[TableExportUnit]:
    """Filter units by table name.

    A non-empty ``include`` keeps only the listed tables and ``exclude`` is
    then ignored.  Otherwise a non-empty ``exclude`` drops the listed
    tables.  With both empty every unit passes.  Order is preserved.

    Example:
        >>> [u.table for u in select_tables(units, include=["users"])]
        ['users']
    """
    if include:
        wanted = set(include)
        return [u for u in units if u.table in wanted]
    if exclude:
        unwanted = set(exclude)
        return [u for u in units if u.table not in unwanted]
    return list(units)
