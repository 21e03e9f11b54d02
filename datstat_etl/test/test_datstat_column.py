""" Test DatStatColumn """
import logging

import pytest

from datstat_etl.datstat_column import DatStatColumn, DatStatColumnType, DatStatLookup


_logger: logging.Logger = logging.getLogger(__name__)


def setup_module() -> None:
    """ module-wide test setup """
    _logger.info(__name__)


@pytest.mark.skip('test_adhoc')
def test_adhoc() -> None:
    """ test_adhoc """
    assert True


def test_from_field_type() -> None:
    """ test from_field_type """
    _logger.info(test_from_field_type.__name__)
    field_types: dict[str, DatStatColumnType] = {
        'LongText': DatStatColumnType.TEXT,
        'Text': DatStatColumnType.TEXT,
        'Integer': DatStatColumnType.INTEGER,
        'LongInteger': DatStatColumnType.INTEGER,
        'PositiveInteger': DatStatColumnType.INTEGER,
        'Boolean': DatStatColumnType.BOOLEAN,
        'Float': DatStatColumnType.FLOAT,
        'DateTime': DatStatColumnType.TIMESTAMP,
        'datetime': DatStatColumnType.TIMESTAMP,
        'Guid': DatStatColumnType.TEXT,
        'Blob': DatStatColumnType.TEXT,
        '': DatStatColumnType.TEXT
    }
    field_type: str
    expected_type: DatStatColumnType
    for field_type, expected_type in field_types.items():
        column_type: DatStatColumnType = DatStatColumnType.from_field_type(field_type)
        _logger.info('from_field_type: %s => %s', field_type, column_type)
        assert column_type == expected_type


def test_from_field_type_missing() -> None:
    """ test from_field_type raises if field type not specified """
    _logger.info(test_from_field_type_missing.__name__)
    with pytest.raises(RuntimeError):
        DatStatColumnType.from_field_type(None)


def test_sql_type_name() -> None:
    """ test sql_type_name defined for every column type """
    _logger.info(test_sql_type_name.__name__)
    assert {t: t.sql_type_name for t in DatStatColumnType} == {
        DatStatColumnType.TEXT: 'VARCHAR',
        DatStatColumnType.INTEGER: 'INTEGER',
        DatStatColumnType.BOOLEAN: 'BOOLEAN',
        DatStatColumnType.FLOAT: 'DOUBLE',
        DatStatColumnType.TIMESTAMP: 'TIMESTAMP'
    }
    assert str(DatStatColumnType.TIMESTAMP) == 'Timestamp'


def test_lookup() -> None:
    """ test lookup rows and key types """
    _logger.info(test_lookup.__name__)
    lookup: DatStatLookup = DatStatLookup('gender', DatStatColumnType.INTEGER)
    lookup.add_row(1, 'Male')
    lookup.add_row(2, 'Female')
    assert lookup.owner_column == 'gender'
    assert lookup.key_type == DatStatColumnType.INTEGER
    assert lookup.rows == [{'key': 1, 'label': 'Male'}, {'key': 2, 'label': 'Female'}]

    lookup.rows[0]['label'] = 'changed'
    assert lookup.rows[0]['label'] == 'Male'

    with pytest.raises(ValueError):
        DatStatLookup('visit_date', DatStatColumnType.TIMESTAMP)


def test_column() -> None:
    """ test column properties """
    _logger.info(test_column.__name__)
    column: DatStatColumn = DatStatColumn('notes', DatStatColumnType.TEXT, input_type=DatStatColumn.TEXTAREA_INPUT_TYPE)
    assert column.name == 'notes'
    assert column.data_type == DatStatColumnType.TEXT
    assert column.display_format is None
    assert column.input_type == 'textarea'
    assert column.lookup is None
    assert column.fk_column_name is None

    lookup: DatStatLookup = DatStatLookup('gender', DatStatColumnType.TEXT)
    column = DatStatColumn('gender', DatStatColumnType.TEXT, lookup=lookup)
    assert column.lookup is lookup
    assert column.fk_column_name == DatStatLookup.LOOKUP_KEY_FIELD
