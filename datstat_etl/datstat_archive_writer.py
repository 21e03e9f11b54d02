""" DATStat study archive writer """
from __future__ import annotations
import datetime
import logging
import os
import re
import xml.etree.ElementTree as ET

import petl

from datstat_etl.datstat_column import DatStatColumn, DatStatColumnType, DatStatLookup
from datstat_etl.datstat_project import DatStatForm, DatStatProjectRegistry


_logger = logging.getLogger(__name__)


class DatStatArchiveWriter:
    """
    Write exported datasets, rows and lookups as a study archive: study.xml, dataset manifest and
    table metadata XML, one TSV per dataset, and list (lookup) metadata XML plus one TSV per lookup
    """
    DEFAULT_OUTPUT_DIR: str = './study_archive'
    DATASETS_DIRECTORY: str = 'datasets'
    LISTS_DIRECTORY: str = 'lists'
    STUDY_FILENAME: str = 'study.xml'
    MANIFEST_FILENAME: str = 'datasets_manifest.xml'
    SCHEMA_FILENAME: str = 'datasets_metadata.xml'
    LISTS_FILENAME: str = 'lists.xml'
    DATASET_DATA_FILENAME_FORMAT: str = 'dataset{:03d}.tsv'
    PARTICIPANT_ID_COLUMN: str = 'participantId'
    DATE_COLUMN: str = 'date'

    STUDY_LABEL: str = 'DATStat Integration'
    ARCHIVE_VERSION: str = '14.30'
    SECURITY_TYPE: str = 'BASIC_READ'
    LISTS_SCHEMA: str = 'lists'
    TIMESTAMP_FORMAT: str = '%Y-%m-%d %H:%M:%S'

    STUDY_XML_NAMESPACE: str = 'http://labkey.org/study/xml'
    DATA_XML_NAMESPACE: str = 'http://labkey.org/data/xml'

    DATASET_DEFINITION: str = '\n'.join([
        '# default group can be used to avoid repeating definitions for each dataset',
        '#',
        '# action=[REPLACE,APPEND,DELETE] (default:REPLACE)',
        '# deleteAfterImport=[TRUE|FALSE] (default:FALSE)',
        '',
        'default.action=REPLACE',
        'default.deleteAfterImport=FALSE',
        '',
        '# map a source tsv column (right side) to a property name or full propertyURI (left)',
        '# predefined properties: ParticipantId, SiteId, VisitId',
        'default.property.ParticipantId=participantId',
        '',
        '# use to map from filename->datasetid',
        '# NOTE: if there are NO explicit import definitions, we will try to import all files matching pattern',
        '# NOTE: if there are ANY explicit mapping, we will only import listed datasets',
        '',
        'default.filePattern=dataset(\\\\d*).tsv',
        'default.importAllMatches=TRUE',
        ''
    ])

    def __init__(
        self,
        config: dict[str, str],
        registry: DatStatProjectRegistry,
        logger: logging.Logger = None
    ) -> None:
        self._config: dict[str, str] = config or {}
        self._registry: DatStatProjectRegistry = registry
        self._output_dir: str = self._config.get('OUTPUT_DIR') or DatStatArchiveWriter.DEFAULT_OUTPUT_DIR
        self.logger: logging.Logger = logger or _logger

    @property
    def output_dir(self) -> str:
        """ Get root directory of study archive """
        return self._output_dir

    @staticmethod
    def make_legal_name(name: str) -> str:
        """ Replace characters not allowed in file names """
        return re.sub(r'[\\/:*?"<>|]', '_', name)

    @staticmethod
    def format_value(value: any) -> any:
        """ Format row value for TSV output """
        if value is None:
            return ''
        if isinstance(value, datetime.datetime):
            return value.strftime(DatStatArchiveWriter.TIMESTAMP_FORMAT)
        return value

    def write_study_archive(
        self,
        dataset_metadata: dict[str, list[DatStatColumn]],
        dataset_data: dict[str, list[dict[str, any]]],
        lookups: dict[str, DatStatLookup]
    ) -> None:
        """ Write complete study archive to output directory """
        if not dataset_metadata:
            self.logger.warning('No dataset metadata to write, study archive not created')
            return

        self.logger.info('Creating study archive in %s', self._output_dir)
        os.makedirs(os.path.join(self._output_dir, DatStatArchiveWriter.DATASETS_DIRECTORY), exist_ok=True)
        self.write_study(bool(lookups))

        self.logger.info('Writing dataset metadata')
        dataset_ids: dict[str, int] = self.write_dataset_metadata(dataset_metadata, lookups)

        if lookups:
            self.logger.info('Creating column lookups')
            self.write_lookups(lookups, dataset_metadata)

        self.write_dataset_data(dataset_metadata, dataset_data, dataset_ids)
        self.logger.info('Finished creating study archive')

    def write_study(self, has_lookups: bool) -> None:
        """ Write study.xml """
        ns: str = DatStatArchiveWriter.STUDY_XML_NAMESPACE
        study_xml: ET.Element = ET.Element(
            f'{{{ns}}}study',
            {
                'archiveVersion': DatStatArchiveWriter.ARCHIVE_VERSION,
                'label': DatStatArchiveWriter.STUDY_LABEL,
                'timepointType': str(self._registry.timepoint_type),
                'securityType': DatStatArchiveWriter.SECURITY_TYPE
            }
        )
        datasets_xml: ET.Element = ET.SubElement(
            study_xml,
            f'{{{ns}}}datasets',
            {'dir': DatStatArchiveWriter.DATASETS_DIRECTORY, 'file': DatStatArchiveWriter.MANIFEST_FILENAME}
        )
        ET.SubElement(
            datasets_xml,
            f'{{{ns}}}definition',
            {'file': DatStatArchiveWriter.make_legal_name(f'{DatStatArchiveWriter.STUDY_LABEL}.dataset')}
        )
        if has_lookups:
            ET.SubElement(study_xml, f'{{{ns}}}lists', {'dir': DatStatArchiveWriter.LISTS_DIRECTORY})
        self._save_xml(study_xml, os.path.join(self._output_dir, DatStatArchiveWriter.STUDY_FILENAME))

    def write_dataset_metadata(
        self,
        dataset_metadata: dict[str, list[DatStatColumn]],
        lookups: dict[str, DatStatLookup]
    ) -> dict[str, int]:
        """ Write dataset manifest, table metadata and dataset definition; return dataset ids by name """
        datasets_dir: str = os.path.join(self._output_dir, DatStatArchiveWriter.DATASETS_DIRECTORY)
        study_ns: str = DatStatArchiveWriter.STUDY_XML_NAMESPACE
        data_ns: str = DatStatArchiveWriter.DATA_XML_NAMESPACE

        manifest_xml: ET.Element = ET.Element(
            f'{{{study_ns}}}datasets',
            {'metaDataFile': DatStatArchiveWriter.SCHEMA_FILENAME}
        )
        datasets_xml: ET.Element = ET.SubElement(manifest_xml, f'{{{study_ns}}}datasets')
        tables_xml: ET.Element = ET.Element(f'{{{data_ns}}}tables')

        dataset_ids: dict[str, int] = {}
        dataset_name: str
        columns: list[DatStatColumn]
        for dataset_id, (dataset_name, columns) in enumerate(dataset_metadata.items(), start=1):
            dataset_ids[dataset_name] = dataset_id
            dataset_attrs: dict[str, str] = {'name': dataset_name, 'id': str(dataset_id), 'type': 'Standard'}
            form: DatStatForm = self._registry.get_form(dataset_name)
            if form is not None and form.demographic:
                dataset_attrs['demographicData'] = 'true'
            ET.SubElement(datasets_xml, f'{{{study_ns}}}dataset', dataset_attrs)

            table_xml: ET.Element = ET.SubElement(
                tables_xml,
                f'{{{data_ns}}}table',
                {'tableName': dataset_name, 'tableDbType': 'TABLE'}
            )
            columns_xml: ET.Element = ET.SubElement(table_xml, f'{{{data_ns}}}columns')
            column: DatStatColumn
            for column in columns:
                self._add_column_xml(columns_xml, column, lookups)

        definition_path: str = os.path.join(
            datasets_dir,
            DatStatArchiveWriter.make_legal_name(f'{DatStatArchiveWriter.STUDY_LABEL}.dataset')
        )
        with open(definition_path, mode='w', encoding='utf-8') as fp:
            fp.write(DatStatArchiveWriter.DATASET_DEFINITION)

        self._save_xml(manifest_xml, os.path.join(datasets_dir, DatStatArchiveWriter.MANIFEST_FILENAME))
        self._save_xml(tables_xml, os.path.join(datasets_dir, DatStatArchiveWriter.SCHEMA_FILENAME))
        return dataset_ids

    def write_dataset_data(
        self,
        dataset_metadata: dict[str, list[DatStatColumn]],
        dataset_data: dict[str, list[dict[str, any]]],
        dataset_ids: dict[str, int]
    ) -> None:
        """ Write one TSV file per dataset having metadata """
        datasets_dir: str = os.path.join(self._output_dir, DatStatArchiveWriter.DATASETS_DIRECTORY)
        dataset_name: str
        rows: list[dict[str, any]]
        for dataset_name, rows in dataset_data.items():
            if dataset_name not in dataset_ids:
                self.logger.warning('No dataset metadata written for dataset %s, skipping data', dataset_name)
                continue
            reserved_columns: set[str] = {
                DatStatArchiveWriter.PARTICIPANT_ID_COLUMN.lower(),
                DatStatArchiveWriter.DATE_COLUMN.lower()
            }
            header: list[str] = [
                DatStatArchiveWriter.PARTICIPANT_ID_COLUMN,
                DatStatArchiveWriter.DATE_COLUMN,
                *[c.name for c in dataset_metadata[dataset_name] if c.name.lower() not in reserved_columns]
            ]
            file_name: str = DatStatArchiveWriter.DATASET_DATA_FILENAME_FORMAT.format(dataset_ids[dataset_name])
            self.logger.info('Writing %d rows for dataset %s to %s', len(rows), dataset_name, file_name)
            tbl: any = petl.convertall(petl.fromdicts(rows, header=header), DatStatArchiveWriter.format_value)
            petl.totsv(tbl, os.path.join(datasets_dir, file_name), encoding='utf-8')

    def write_lookups(
        self,
        lookups: dict[str, DatStatLookup],
        dataset_metadata: dict[str, list[DatStatColumn]]
    ) -> None:
        """ Write list metadata and one TSV file per lookup """
        lists_dir: str = os.path.join(self._output_dir, DatStatArchiveWriter.LISTS_DIRECTORY)
        os.makedirs(lists_dir, exist_ok=True)

        columns_by_name: dict[str, DatStatColumn] = {}
        column: DatStatColumn
        for column in [c for cols in dataset_metadata.values() for c in cols]:
            columns_by_name.setdefault(column.name, column)

        data_ns: str = DatStatArchiveWriter.DATA_XML_NAMESPACE
        tables_xml: ET.Element = ET.Element(f'{{{data_ns}}}tables')
        column_name: str
        lookup: DatStatLookup
        for column_name, lookup in lookups.items():
            lookup_columns: list[DatStatColumn] = self._get_lookup_columns(column_name, columns_by_name)
            if not lookup_columns:
                continue

            table_xml: ET.Element = ET.SubElement(
                tables_xml,
                f'{{{data_ns}}}table',
                {'tableName': column_name, 'tableDbType': 'TABLE'}
            )
            ET.SubElement(table_xml, f'{{{data_ns}}}pkColumnName').text = DatStatLookup.LOOKUP_KEY_FIELD
            columns_xml: ET.Element = ET.SubElement(table_xml, f'{{{data_ns}}}columns')
            lookup_column: DatStatColumn
            for lookup_column in lookup_columns:
                self._add_column_xml(columns_xml, lookup_column, {})

            tbl: any = petl.convertall(
                petl.fromdicts(lookup.rows, header=[DatStatLookup.LOOKUP_KEY_FIELD, DatStatLookup.LOOKUP_LABEL_FIELD]),
                DatStatArchiveWriter.format_value
            )
            petl.totsv(
                tbl,
                os.path.join(lists_dir, f'{DatStatArchiveWriter.make_legal_name(column_name)}.tsv'),
                encoding='utf-8'
            )
        self._save_xml(tables_xml, os.path.join(lists_dir, DatStatArchiveWriter.LISTS_FILENAME))

    def _get_lookup_columns(self, column_name: str, columns_by_name: dict[str, DatStatColumn]) -> list[DatStatColumn]:
        """ Get key and label columns for lookup owned by specified column, empty if column not found """
        parent_column: DatStatColumn = columns_by_name.get(column_name)
        if parent_column is None:
            self.logger.error('Unable to locate the referencing column %s for the lookup list, skipping', column_name)
            return []
        return [
            DatStatColumn(DatStatLookup.LOOKUP_KEY_FIELD, parent_column.data_type),
            DatStatColumn(DatStatLookup.LOOKUP_LABEL_FIELD, DatStatColumnType.TEXT)
        ]

    def _add_column_xml(
        self,
        columns_xml: ET.Element,
        column: DatStatColumn,
        lookups: dict[str, DatStatLookup]
    ) -> None:
        """ Append column definition to table metadata columns element """
        data_ns: str = DatStatArchiveWriter.DATA_XML_NAMESPACE
        column_xml: ET.Element = ET.SubElement(columns_xml, f'{{{data_ns}}}column', {'columnName': column.name})
        ET.SubElement(column_xml, f'{{{data_ns}}}datatype').text = column.data_type.sql_type_name
        if column.display_format:
            ET.SubElement(column_xml, f'{{{data_ns}}}formatString').text = column.display_format
        if column.input_type:
            ET.SubElement(column_xml, f'{{{data_ns}}}inputType').text = column.input_type
        if column.fk_column_name and column.name in lookups:
            fk_xml: ET.Element = ET.SubElement(column_xml, f'{{{data_ns}}}fk')
            ET.SubElement(fk_xml, f'{{{data_ns}}}fkDbSchema').text = DatStatArchiveWriter.LISTS_SCHEMA
            ET.SubElement(fk_xml, f'{{{data_ns}}}fkTable').text = column.name
            ET.SubElement(fk_xml, f'{{{data_ns}}}fkColumnName').text = column.fk_column_name

    def _save_xml(self, element: ET.Element, path: str) -> None:
        """ Save XML element tree to specified path """
        tree: ET.ElementTree = ET.ElementTree(element)
        ET.indent(tree)
        # all elements of a document share the root namespace, written as the default namespace
        ET.register_namespace('', element.tag[1:].partition('}')[0])
        tree.write(path, encoding='utf-8', xml_declaration=True)
