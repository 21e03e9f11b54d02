""" DATStat export column and lookup definitions """
from __future__ import annotations
from enum import Enum


class DatStatColumnType(str, Enum):
    """
    Enum class for dataset column data types
    """
    TEXT = 'Text'
    INTEGER = 'Integer'
    BOOLEAN = 'Boolean'
    FLOAT = 'Float'
    TIMESTAMP = 'Timestamp'

    def __str__(self):
        return self.value

    @property
    def sql_type_name(self) -> str:
        """ Get SQL type name written to archive table metadata """
        return {
            DatStatColumnType.TEXT: 'VARCHAR',
            DatStatColumnType.INTEGER: 'INTEGER',
            DatStatColumnType.BOOLEAN: 'BOOLEAN',
            DatStatColumnType.FLOAT: 'DOUBLE',
            DatStatColumnType.TIMESTAMP: 'TIMESTAMP'
        }[self]

    @staticmethod
    def from_field_type(field_type: str) -> DatStatColumnType:
        """
        Get column type for DATStat variable data type (case insensitive); unrecognized types
        default to Text. Raise RuntimeError if field type not specified.
        """
        if field_type is None:
            raise RuntimeError('Column field type cannot be null')
        return _FIELD_TYPE_COLUMN_TYPES.get(field_type.lower(), DatStatColumnType.TEXT)


# DATStat variable data types (lower case) => column types
_FIELD_TYPE_COLUMN_TYPES: dict[str, DatStatColumnType] = {
    'longtext': DatStatColumnType.TEXT,
    'text': DatStatColumnType.TEXT,
    'integer': DatStatColumnType.INTEGER,
    'longinteger': DatStatColumnType.INTEGER,
    'positiveinteger': DatStatColumnType.INTEGER,
    'boolean': DatStatColumnType.BOOLEAN,
    'float': DatStatColumnType.FLOAT,
    'datetime': DatStatColumnType.TIMESTAMP,
    'guid': DatStatColumnType.TEXT
}


class DatStatLookup:
    """ Key/label lookup table built from a categorical column's scale values """
    LOOKUP_KEY_FIELD: str = 'key'
    LOOKUP_LABEL_FIELD: str = 'label'

    def __init__(self, owner_column: str, key_type: DatStatColumnType) -> None:
        if key_type not in (DatStatColumnType.INTEGER, DatStatColumnType.TEXT):
            raise ValueError(f'Unsupported lookup key type for column "{owner_column}": {key_type}')
        self._owner_column: str = owner_column
        self._key_type: DatStatColumnType = key_type
        self._rows: list[dict[str, int | str]] = []

    def __repr__(self) -> str:
        return f'{DatStatLookup.__name__}({self._owner_column!r}, {self._key_type}, {len(self._rows)} rows)'

    @property
    def owner_column(self) -> str:
        """ Get name of the column this lookup belongs to, also used as the lookup table name """
        return self._owner_column

    @property
    def key_type(self) -> DatStatColumnType:
        """ Get lookup key column type (Integer or Text) """
        return self._key_type

    @property
    def rows(self) -> list[dict[str, int | str]]:
        """ Get copy of lookup rows in insertion order """
        return [dict(r) for r in self._rows]

    def add_row(self, key: int | str, label: str) -> None:
        """ Append key/label row """
        self._rows.append({DatStatLookup.LOOKUP_KEY_FIELD: key, DatStatLookup.LOOKUP_LABEL_FIELD: label})


class DatStatColumn:
    """ Typed dataset column inferred from DATStat metadata """
    TEXTAREA_INPUT_TYPE: str = 'textarea'
    TIMESTAMP_FORMAT: str = 'K:mm a'

    def __init__(
        self,
        name: str,
        data_type: DatStatColumnType,
        display_format: str = None,
        input_type: str = None,
        lookup: DatStatLookup = None
    ) -> None:
        self._name: str = name
        self._data_type: DatStatColumnType = data_type
        self._display_format: str = display_format
        self._input_type: str = input_type
        self._lookup: DatStatLookup = lookup

    def __repr__(self) -> str:
        return f'{DatStatColumn.__name__}({self._name!r}, {self._data_type}, lookup={self._lookup is not None})'

    @property
    def name(self) -> str:
        """ Get column name """
        return self._name

    @property
    def data_type(self) -> DatStatColumnType:
        """ Get column data type """
        return self._data_type

    @property
    def display_format(self) -> str:
        """ Get display format string if any """
        return self._display_format

    @property
    def input_type(self) -> str:
        """ Get input type hint if any (e.g. multi-line textarea) """
        return self._input_type

    @property
    def lookup(self) -> DatStatLookup:
        """ Get lookup table referenced by this column if any """
        return self._lookup

    @property
    def fk_column_name(self) -> str:
        """ Get lookup table column referenced by this column's foreign key, None if no lookup """
        return DatStatLookup.LOOKUP_KEY_FIELD if self._lookup is not None else None
