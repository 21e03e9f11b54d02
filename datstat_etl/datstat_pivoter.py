""" DATStat transform form row de-pivoter """
import logging


_logger = logging.getLogger(__name__)

ROW_NUMBER_DELIMITER: str = '_'


def get_column_row_number(name: str, is_transform: bool) -> int | None:
    """
    Get de-pivoted row number for specified field name, i.e. the numeric suffix following the last
    underscore ('q1_2' => 2); None if not a transform dataset or suffix not composed of decimal digits
    """
    if not is_transform:
        return None
    _, delim, suffix = name.rpartition(ROW_NUMBER_DELIMITER)
    # isdigit/isdecimal also accept non-ascii digits
    if delim and suffix and suffix.isascii() and suffix.isdecimal():
        return int(suffix)
    return None


def get_column_name(name: str, is_transform: bool) -> str:
    """
    Get canonical column name for specified field name: unchanged unless transform dataset and field
    name has numeric row number suffix, in which case suffix is removed ('q1_2' => 'q1')
    """
    if get_column_row_number(name, is_transform) is None:
        return name
    return name.rpartition(ROW_NUMBER_DELIMITER)[0]


def transform_row_data(rows: list[dict[str, str]]) -> list[dict[str, str]]:
    """
    De-pivot rows of a transform dataset. Each source row may contain common fields that apply to all
    output rows and fields associated with a specific output row via their numeric suffix; one output row
    is created per row number present, in ascending order, with the common fields merged into each
    """
    new_rows: list[dict[str, str]] = []
    row: dict[str, str]
    for row in rows:
        transformed_rows: dict[int, dict[str, str]] = {}
        common_props: dict[str, str] = {}

        col_name: str
        value: str
        for col_name, value in row.items():
            row_num: int | None = get_column_row_number(col_name, True)
            if row_num is not None:
                transformed_rows.setdefault(row_num, {})[get_column_name(col_name, True)] = value
            else:
                common_props[col_name] = value

        if not transformed_rows:
            _logger.debug('No row numbered fields found in transform row, skipping')
            continue

        # gaps in row numbers are skipped rather than emitted as empty rows
        row_number: int
        for row_number in range(min(transformed_rows), max(transformed_rows) + 1):
            if row_number not in transformed_rows:
                continue
            new_row: dict[str, str] = transformed_rows.pop(row_number)
            new_row.update(common_props)
            new_rows.append(new_row)
    return new_rows
