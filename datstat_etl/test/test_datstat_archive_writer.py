""" Test DatStatArchiveWriter """
import datetime
import json
import logging
import os
import pathlib
import xml.etree.ElementTree as ET

import petl
import pytest

from datstat_etl.datstat_archive_writer import DatStatArchiveWriter
from datstat_etl.datstat_column import DatStatColumn, DatStatColumnType, DatStatLookup
from datstat_etl.datstat_export import DatStatExport
from datstat_etl.datstat_project import DatStatProject, DatStatProjectRegistry


_logger: logging.Logger = logging.getLogger(__name__)

_STUDY_NS: dict[str, str] = {'s': DatStatArchiveWriter.STUDY_XML_NAMESPACE}
_DATA_NS: dict[str, str] = {'d': DatStatArchiveWriter.DATA_XML_NAMESPACE}

_PROJECT_CONFIGURATIONS: list[dict[str, any]] = [
    {
        'project_name': 'Study A',
        'forms': [
            {'form_name': 'Enrollment', 'demographic': True},
            {'form_name': 'Visit'}
        ]
    }
]

_METADATA: list[dict[str, any]] = [
    {
        'Name': 'Enrollment',
        'Variables': {
            'Gender': {'DataType': 'Integer', 'ScaleValues': {'1': 'Male', '2': 'Female'}}
        }
    },
    {
        'Name': 'Visit',
        'Variables': {
            'visit_time': {'DataType': 'DateTime'},
            'notes': {'DataType': 'LongText'}
        }
    }
]

_DATA: list[dict[str, any]] = [
    {'Name': 'Enrollment', 'Data': [{'DATSTAT_ALTPID': 'P001', 'Gender': '1'}]},
    {
        'Name': 'Visit',
        'Data': [
            {'DATSTAT_ALTPID': 'P001', 'date': '2020-03-15', 'visit_time': '2020-03-15 10:30:15', 'notes': 'ok'},
            {'DATSTAT_ALTPID': 'P002', 'date': '2020-04-01'}
        ]
    }
]


def get_registry(timepoint_type: str = 'date') -> DatStatProjectRegistry:
    """ Get registry for test project configuration """
    return DatStatProjectRegistry({
        'PROJECT_CONFIGURATIONS': json.dumps(_PROJECT_CONFIGURATIONS),
        'TIMEPOINT_TYPE': timepoint_type
    })


def write_archive(output_dir: pathlib.Path, registry: DatStatProjectRegistry) -> DatStatArchiveWriter:
    """ Parse test payloads and write study archive to specified directory """
    project: DatStatProject = registry.get_project('Study A')
    datstat_export: DatStatExport = DatStatExport(registry)
    datstat_export.parse_metadata(_METADATA, project)
    datstat_export.parse_dataset_data(_DATA, project)
    writer: DatStatArchiveWriter = DatStatArchiveWriter({'OUTPUT_DIR': str(output_dir)}, registry)
    writer.write_study_archive(datstat_export.dataset_metadata, datstat_export.dataset_data, datstat_export.lookups)
    return writer


def setup_module() -> None:
    """ module-wide test setup """
    _logger.info(__name__)


@pytest.mark.skip('test_adhoc')
def test_adhoc() -> None:
    """ test_adhoc """
    assert True


def test_write_study_archive_files(tmp_path: pathlib.Path) -> None:
    """ test study archive files created """
    _logger.info(test_write_study_archive_files.__name__)
    writer: DatStatArchiveWriter = write_archive(tmp_path, get_registry())
    assert writer.output_dir == str(tmp_path)

    expected_files: list[str] = [
        'study.xml',
        os.path.join('datasets', 'datasets_manifest.xml'),
        os.path.join('datasets', 'datasets_metadata.xml'),
        os.path.join('datasets', 'DATStat Integration.dataset'),
        os.path.join('datasets', 'dataset001.tsv'),
        os.path.join('datasets', 'dataset002.tsv'),
        os.path.join('lists', 'lists.xml'),
        os.path.join('lists', 'Gender.tsv')
    ]
    expected_file: str
    for expected_file in expected_files:
        assert os.path.isfile(tmp_path / expected_file), expected_file


def test_write_study(tmp_path: pathlib.Path) -> None:
    """ test study.xml content """
    _logger.info(test_write_study.__name__)
    write_archive(tmp_path, get_registry('visit'))
    study_xml: ET.Element = ET.parse(tmp_path / 'study.xml').getroot()
    assert study_xml.tag == f'{{{DatStatArchiveWriter.STUDY_XML_NAMESPACE}}}study'
    assert study_xml.get('label') == 'DATStat Integration'
    assert study_xml.get('archiveVersion') == '14.30'
    assert study_xml.get('timepointType') == 'VISIT'
    assert study_xml.get('securityType') == 'BASIC_READ'
    assert study_xml.find('s:datasets', _STUDY_NS).get('file') == 'datasets_manifest.xml'
    assert study_xml.find('s:lists', _STUDY_NS).get('dir') == 'lists'


def test_write_dataset_metadata(tmp_path: pathlib.Path) -> None:
    """ test dataset manifest and table metadata content """
    _logger.info(test_write_dataset_metadata.__name__)
    write_archive(tmp_path, get_registry())

    manifest_xml: ET.Element = ET.parse(tmp_path / 'datasets' / 'datasets_manifest.xml').getroot()
    datasets: list[ET.Element] = manifest_xml.findall('s:datasets/s:dataset', _STUDY_NS)
    assert [(d.get('name'), d.get('id'), d.get('demographicData')) for d in datasets] == [
        ('Enrollment', '1', 'true'),
        ('Visit', '2', None)
    ]

    tables_xml: ET.Element = ET.parse(tmp_path / 'datasets' / 'datasets_metadata.xml').getroot()
    columns: dict[str, ET.Element] = {
        c.get('columnName'): c for c in tables_xml.findall('d:table/d:columns/d:column', _DATA_NS)
    }
    assert list(columns) == ['Gender', 'visit_time', 'notes']
    assert columns['Gender'].findtext('d:datatype', namespaces=_DATA_NS) == 'INTEGER'
    assert columns['Gender'].findtext('d:fk/d:fkDbSchema', namespaces=_DATA_NS) == 'lists'
    assert columns['Gender'].findtext('d:fk/d:fkTable', namespaces=_DATA_NS) == 'Gender'
    assert columns['Gender'].findtext('d:fk/d:fkColumnName', namespaces=_DATA_NS) == 'key'
    assert columns['visit_time'].findtext('d:datatype', namespaces=_DATA_NS) == 'TIMESTAMP'
    assert columns['visit_time'].findtext('d:formatString', namespaces=_DATA_NS) == 'K:mm a'
    assert columns['visit_time'].find('d:fk', _DATA_NS) is None
    assert columns['notes'].findtext('d:inputType', namespaces=_DATA_NS) == 'textarea'


def test_write_dataset_data(tmp_path: pathlib.Path) -> None:
    """ test dataset TSV content """
    _logger.info(test_write_dataset_data.__name__)
    write_archive(tmp_path, get_registry())

    enrollment_rows: list[tuple[str, ...]] = list(petl.fromtsv(str(tmp_path / 'datasets' / 'dataset001.tsv')))
    assert enrollment_rows == [('participantId', 'date', 'Gender'), ('P001', '', '1')]

    visit_rows: list[tuple[str, ...]] = list(petl.fromtsv(str(tmp_path / 'datasets' / 'dataset002.tsv')))
    assert visit_rows == [
        ('participantId', 'date', 'visit_time', 'notes'),
        ('P001', '2020-03-15 00:00:00', '2020-03-15 10:30:15', 'ok'),
        ('P002', '2020-04-01 00:00:00', '', '')
    ]


def test_write_lookups(tmp_path: pathlib.Path, caplog: pytest.LogCaptureFixture) -> None:
    """ test lookup list metadata and TSV content, lookup without owning column skipped """
    _logger.info(test_write_lookups.__name__)
    write_archive(tmp_path, get_registry())

    lists_xml: ET.Element = ET.parse(tmp_path / 'lists' / 'lists.xml').getroot()
    tables: list[ET.Element] = lists_xml.findall('d:table', _DATA_NS)
    assert [t.get('tableName') for t in tables] == ['Gender']
    assert tables[0].findtext('d:pkColumnName', namespaces=_DATA_NS) == 'key'
    assert [
        (c.get('columnName'), c.findtext('d:datatype', namespaces=_DATA_NS))
        for c in tables[0].findall('d:columns/d:column', _DATA_NS)
    ] == [('key', 'INTEGER'), ('label', 'VARCHAR')]
    assert list(petl.fromtsv(str(tmp_path / 'lists' / 'Gender.tsv'))) == [
        ('key', 'label'),
        ('1', 'Male'),
        ('2', 'Female')
    ]

    orphan_lookup: DatStatLookup = DatStatLookup('orphan', DatStatColumnType.TEXT)
    orphan_lookup.add_row('a', 'A')
    writer: DatStatArchiveWriter = DatStatArchiveWriter({'OUTPUT_DIR': str(tmp_path / 'orphan')}, get_registry())
    caplog.clear()
    with caplog.at_level(logging.ERROR):
        writer.write_lookups({'orphan': orphan_lookup}, {})
    assert not os.path.exists(tmp_path / 'orphan' / 'lists' / 'orphan.tsv')
    assert any('orphan' in r.getMessage() for r in caplog.records if r.levelno == logging.ERROR)


def test_write_study_archive_empty(tmp_path: pathlib.Path) -> None:
    """ test nothing written without dataset metadata """
    _logger.info(test_write_study_archive_empty.__name__)
    writer: DatStatArchiveWriter = DatStatArchiveWriter({'OUTPUT_DIR': str(tmp_path / 'empty')}, get_registry())
    writer.write_study_archive({}, {}, {})
    assert not os.path.exists(tmp_path / 'empty')


def test_format_value() -> None:
    """ test format_value """
    _logger.info(test_format_value.__name__)
    assert DatStatArchiveWriter.format_value(None) == ''
    assert DatStatArchiveWriter.format_value(datetime.datetime(2021, 1, 2, 3, 4, 5)) == '2021-01-02 03:04:05'
    assert DatStatArchiveWriter.format_value('x') == 'x'
    assert DatStatArchiveWriter.make_legal_name('a/b:c') == 'a_b_c'


def test_write_xml_default_namespace(tmp_path: pathlib.Path) -> None:
    """ test XML documents written with default namespace rather than generated prefixes """
    _logger.info(test_write_xml_default_namespace.__name__)
    write_archive(tmp_path, get_registry())
    expected_namespaces: dict[str, str] = {
        'study.xml': DatStatArchiveWriter.STUDY_XML_NAMESPACE,
        os.path.join('datasets', 'datasets_manifest.xml'): DatStatArchiveWriter.STUDY_XML_NAMESPACE,
        os.path.join('datasets', 'datasets_metadata.xml'): DatStatArchiveWriter.DATA_XML_NAMESPACE,
        os.path.join('lists', 'lists.xml'): DatStatArchiveWriter.DATA_XML_NAMESPACE
    }
    xml_file: str
    namespace: str
    for xml_file, namespace in expected_namespaces.items():
        xml_text: str = (tmp_path / xml_file).read_text(encoding='utf-8')
        assert f'xmlns="{namespace}"' in xml_text, xml_file
        assert 'ns0:' not in xml_text, xml_file


def test_write_dataset_data_reserved_columns(tmp_path: pathlib.Path) -> None:
    """ test schema columns named like participant id or date columns are written once """
    _logger.info(test_write_dataset_data_reserved_columns.__name__)
    dataset_metadata: dict[str, list[DatStatColumn]] = {
        'Visit': [
            DatStatColumn('date', DatStatColumnType.TIMESTAMP),
            DatStatColumn('ParticipantID', DatStatColumnType.TEXT),
            DatStatColumn('w', DatStatColumnType.FLOAT)
        ]
    }
    dataset_data: dict[str, list[dict[str, any]]] = {
        'Visit': [{'participantId': 'P1', 'date': datetime.datetime(2020, 1, 2), 'w': '3'}]
    }
    writer: DatStatArchiveWriter = DatStatArchiveWriter({'OUTPUT_DIR': str(tmp_path)}, get_registry())
    writer.write_study_archive(dataset_metadata, dataset_data, {})

    assert list(petl.fromtsv(str(tmp_path / 'datasets' / 'dataset001.tsv'))) == [
        ('participantId', 'date', 'w'),
        ('P1', '2020-01-02 00:00:00', '3')
    ]
