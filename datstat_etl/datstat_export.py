""" DATStat study export """
from __future__ import annotations
import datetime
import logging
import logging.config
import os
import re
import sys

from dateutil import parser as dateparser
import dotenv

from datstat_etl.datstat_archive_writer import DatStatArchiveWriter
from datstat_etl.datstat_column import DatStatColumn, DatStatColumnType, DatStatLookup
from datstat_etl.datstat_pivoter import get_column_name, transform_row_data
from datstat_etl.datstat_project import DatStatForm, DatStatProject, DatStatProjectRegistry
from datstat_etl.datstat_source_fetcher import DatStatSourceFetcher
from datstat_etl.datstat_value import DatStatValue


_logger = logging.getLogger(__name__)

LOGGING_CONFIG: dict[str, any] = {
    "version": 1,
    "disable_existing_loggers": True,
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s]: %(message)s"
        }
    },
    "handlers": {
        "console": {
            "level": "DEBUG",
            "formatter": "standard",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",  # Default is stderr
        },
        "file": {
            "level": "DEBUG",
            "formatter": "standard",
            "class": "logging.FileHandler",
            "filename": "datstat_export.log",
            "mode": "w"
        }
    },
    "loggers": {
        "": { # root logger
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": False
        },
        "__main__": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": False
        }
    }
}


class DatStatExport:
    """
    Reshape DATStat metadata and data exports into study datasets: typed column schemas and
    normalized rows per dataset plus lookup tables for categorical columns. Use e.g.:

    config: dict[str, str] = dotenv.dotenv_values('/path/to/.env')
    registry: DatStatProjectRegistry = DatStatProjectRegistry(config)
    datstat_export: DatStatExport = DatStatExport(registry)
    datstat_export.export_source(DatStatSourceFetcher(config), DatStatArchiveWriter(config, registry))
    """
    METADATA_NAME_NODE: str = 'Name'
    METADATA_VARIABLES_NODE: str = 'Variables'
    METADATA_DATATYPE_NODE: str = 'DataType'
    METADATA_SCALEVALUES_NODE: str = 'ScaleValues'

    DATASET_NAME_NODE: str = 'Name'
    DATASET_DATA_NODE: str = 'Data'

    IGNORE_COLUMN_PREFIX: str = 'DATSTAT'

    PARTICIPANT_ID_FIELD: str = 'participantId'
    DATE_FIELD: str = 'date'

    TEXTAREA_FIELD_TYPES: tuple[str, ...] = ('longtext', 'text')
    INTEGER_PATTERN: re.Pattern = re.compile(r'[+-]?[0-9]+')

    def __init__(self, registry: DatStatProjectRegistry, logger: logging.Logger = None) -> None:
        self._registry: DatStatProjectRegistry = registry
        self.logger: logging.Logger = logger or _logger
        self._dataset_metadata: dict[str, list[DatStatColumn]] = {}
        self._dataset_data: dict[str, list[dict[str, any]]] = {}
        self._lookups: dict[str, DatStatLookup] = {}
        self._columns: dict[str, DatStatColumn] = {}

    @property
    def dataset_metadata(self) -> dict[str, list[DatStatColumn]]:
        """ Get ordered column schemas per dataset name """
        return {k: list(v) for k, v in self._dataset_metadata.items()}

    @property
    def dataset_data(self) -> dict[str, list[dict[str, any]]]:
        """ Get normalized rows per dataset name """
        return {k: list(v) for k, v in self._dataset_data.items()}

    @property
    def lookups(self) -> dict[str, DatStatLookup]:
        """ Get lookup tables per owning column name """
        return dict(self._lookups)

    @property
    def columns(self) -> dict[str, DatStatColumn]:
        """ Get all columns created during this run by name, first definition wins """
        return dict(self._columns)

    @staticmethod
    def parse_date(value: str) -> datetime.datetime | None:
        """ Leniently parse date/time string, return None if value can't be parsed """
        try:
            return dateparser.parse(value)
        except (ValueError, OverflowError, TypeError):
            return None

    @staticmethod
    def _to_payload_nodes(payload: DatStatValue | list[any]) -> list[DatStatValue]:
        """ Get nodes of decoded response payload, decoding raw python data if needed """
        if not isinstance(payload, DatStatValue):
            payload = DatStatValue.decode(payload)
        if not payload.is_list():
            raise RuntimeError(f'Unexpected response payload, expected list of nodes but found "{payload.kind}"')
        return payload.elements()

    def clear(self) -> None:
        """ Discard all datasets, rows, lookups and columns built so far """
        self._dataset_metadata.clear()
        self._dataset_data.clear()
        self._lookups.clear()
        self._columns.clear()

    def export_source(self, fetcher: DatStatSourceFetcher, writer: DatStatArchiveWriter = None) -> None:
        """
        Export all configured projects and hand results to archive writer if specified. Partial
        results are discarded if a fatal error occurs
        """
        self.logger.info('Starting DATStat export')
        self.clear()
        try:
            project: DatStatProject
            for project in self._registry.projects:
                self.export_project(project, fetcher)
        except Exception:
            self.logger.critical('DATStat export failed, discarding partial results')
            self.clear()
            raise

        if not self._dataset_metadata:
            self.logger.warning('No dataset metadata parsed, study archive not created')
            return

        if writer is not None:
            writer.write_study_archive(self.dataset_metadata, self.dataset_data, self.lookups)

    def export_project(self, project: DatStatProject, fetcher: DatStatSourceFetcher) -> None:
        """ Fetch and parse metadata then data for specified project """
        self.logger.info('Exporting DATStat Data Dictionary for project %s', project.name)
        metadata: DatStatValue = fetcher.fetch_metadata(project)
        self.logger.info('Parsing returned metadata')
        self.parse_metadata(metadata, project)

        self.logger.info('Exporting DATStat Data for project %s', project.name)
        data: DatStatValue = fetcher.fetch_data(project)
        self.logger.info('Parsing returned data')
        self.parse_dataset_data(data, project)

    def parse_metadata(self, metadata: DatStatValue | list[any], project: DatStatProject) -> None:
        """ Parse metadata export response to create the dataset column schemas for the project """
        node: DatStatValue
        for node in DatStatExport._to_payload_nodes(metadata):
            dataset_name: str = node.get(DatStatExport.METADATA_NAME_NODE).as_text()
            if dataset_name is None:
                continue

            form: DatStatForm = project.form_map.get(dataset_name)
            if form is None:
                self.logger.warning('No form configuration for dataset %s, ignoring', dataset_name)
                continue

            if dataset_name in self._dataset_metadata:
                self.logger.error('Dataset %s has already been processed, skipping', dataset_name)
                continue

            columns: dict[str, DatStatColumn] = {}
            field_name: str
            var_info: DatStatValue
            for field_name, var_info in node.get(DatStatExport.METADATA_VARIABLES_NODE).items():
                if field_name.startswith(DatStatExport.IGNORE_COLUMN_PREFIX):
                    continue

                column_name: str = get_column_name(field_name, form.transform)
                if column_name in columns:
                    # pivoted transform fields collapse to a single column, first definition wins
                    if not form.transform:
                        self.logger.warning(
                            'Duplicate column %s found for non-transform dataset %s',
                            column_name,
                            dataset_name
                        )
                    continue

                if not var_info.is_object():
                    self.logger.debug(
                        'Variable definition for %s.%s is not an object, skipping', dataset_name, field_name
                    )
                    continue

                columns[column_name] = self.create_column(
                    column_name,
                    var_info.get(DatStatExport.METADATA_DATATYPE_NODE).as_string(),
                    var_info.get(DatStatExport.METADATA_SCALEVALUES_NODE)
                )
            self._dataset_metadata[dataset_name] = list(columns.values())
        self.logger.info('Finished parsing %d datasets', len(self._dataset_metadata))

    def create_column(self, name: str, field_type: str, scale_values: DatStatValue = None) -> DatStatColumn:
        """
        Create column for specified DATStat variable data type, creating lookup if scale values
        specified. Raise RuntimeError if field type not specified.
        """
        data_type: DatStatColumnType
        try:
            data_type = DatStatColumnType.from_field_type(field_type)
        except RuntimeError:
            self.logger.critical('Column field type cannot be null: %s', name)
            raise

        display_format: str = DatStatColumn.TIMESTAMP_FORMAT if data_type == DatStatColumnType.TIMESTAMP else None
        input_type: str = (
            DatStatColumn.TEXTAREA_INPUT_TYPE if field_type.lower() in DatStatExport.TEXTAREA_FIELD_TYPES else None
        )

        lookup: DatStatLookup = None
        if scale_values is not None and scale_values.items():
            lookup = self.create_lookup(name, data_type, scale_values)

        column: DatStatColumn = DatStatColumn(name, data_type, display_format, input_type, lookup)
        self._columns.setdefault(name, column)
        return column

    def create_lookup(
        self,
        column_name: str,
        key_type: DatStatColumnType,
        choices: DatStatValue | dict[str, any]
    ) -> DatStatLookup | None:
        """
        Create lookup for specified column from choice key => label map, unless already created for
        column name. Return lookup or None if key type not supported (Integer and Text only).
        Raise RuntimeError if choice key can't be parsed as integer for Integer key type.
        """
        if column_name in self._lookups:
            return self._lookups[column_name]

        if key_type not in (DatStatColumnType.INTEGER, DatStatColumnType.TEXT):
            self.logger.warning(
                'Column %s attempting to create a lookup for a %s key type. ' +
                    'Only integer and text key fields supported.',
                column_name,
                key_type
            )
            return None

        if not isinstance(choices, DatStatValue):
            choices = DatStatValue.decode(choices)

        lookup: DatStatLookup = DatStatLookup(column_name, key_type)
        choice_key: str
        choice_label: DatStatValue
        for choice_key, choice_label in choices.items():
            key: int | str = choice_key
            if key_type == DatStatColumnType.INTEGER:
                if not DatStatExport.INTEGER_PATTERN.fullmatch(choice_key):
                    log_msg: str = f'Column {column_name} lookup key "{choice_key}" is not an integer'
                    self.logger.critical(log_msg)
                    raise RuntimeError(log_msg)
                key = int(choice_key)
            label: str = choice_label.as_string()
            if label is None:
                self.logger.warning(
                    'Column %s lookup key "%s" has no scalar label, using empty label', column_name, choice_key
                )
                label = ''
            lookup.add_row(key, label)

        self._lookups[column_name] = lookup
        return lookup

    def parse_dataset_data(self, data: DatStatValue | list[any], project: DatStatProject) -> None:
        """ Parse data export response to create the normalized dataset rows for the project """
        node: DatStatValue
        for node in DatStatExport._to_payload_nodes(data):
            dataset_name: str = node.get(DatStatExport.DATASET_NAME_NODE).as_text()
            if dataset_name is None:
                continue

            form: DatStatForm = project.form_map.get(dataset_name)
            if form is None:
                self.logger.warning('No form configuration for dataset %s, ignoring', dataset_name)
                continue

            if dataset_name in self._dataset_data:
                self.logger.error('Dataset %s has already been processed, skipping', dataset_name)
                continue

            row_data: list[dict[str, str]] = []
            row_value: DatStatValue
            for row_value in node.get(DatStatExport.DATASET_DATA_NODE).elements():
                if not row_value.is_object():
                    self.logger.warning('Dataset %s record is not an object, ignoring', dataset_name)
                    continue
                row_data.append({k: v.as_string() for k, v in row_value.items()})

            if form.transform:
                row_data = transform_row_data(row_data)

            rows: list[dict[str, any]] = []
            row: dict[str, str]
            for row in row_data:
                dataset_row: dict[str, any] = self.parse_data_row(dataset_name, row, form)
                if dataset_row is not None:
                    rows.append(dataset_row)
            self._dataset_data[dataset_name] = rows
        self.logger.info('Finished parsing %d datasets', len(self._dataset_data))

    def parse_data_row(
        self,
        dataset_name: str,
        row: dict[str, str],
        form: DatStatForm,
        columns: list[DatStatColumn] = None
    ) -> dict[str, any] | None:
        """
        Map source row field values onto the dataset's columns (defaulting to columns parsed from
        metadata). Return normalized row or None if row has no participant id, or no date and the
        dataset isn't demographic.
        """
        if columns is None:
            columns = self._dataset_metadata.get(dataset_name)
        if columns is None:
            self.logger.warning('No dataset metadata for dataset %s, ignoring record', dataset_name)
            return None

        column_map: dict[str, DatStatColumn] = {c.name.lower(): c for c in columns}
        ptid_field_name: str = form.ptid_field.lower()
        date_field_name: str = form.date_field.lower()

        dataset_row: dict[str, any] = {}
        col_name: str
        value: str
        for col_name, value in row.items():
            if col_name.lower() == ptid_field_name:
                if (value or '').strip():
                    dataset_row[DatStatExport.PARTICIPANT_ID_FIELD] = value
            elif col_name.lower() == date_field_name:
                if not (value or '').strip():
                    continue
                date: datetime.datetime = DatStatExport.parse_date(value)
                if date is None:
                    self.logger.warning('Error trying to parse date "%s" in dataset %s', value, dataset_name)
                    continue
                dataset_row[DatStatExport.DATE_FIELD] = date
            else:
                column: DatStatColumn = column_map.get(col_name.lower())
                if column is None:
                    continue
                if column.data_type == DatStatColumnType.TIMESTAMP:
                    if not (value or '').strip():
                        continue
                    timestamp: datetime.datetime = DatStatExport.parse_date(value)
                    if timestamp is None:
                        self.logger.warning(
                            'Error trying to parse timestamp "%s" for column %s in dataset %s',
                            value,
                            column.name,
                            dataset_name
                        )
                        continue
                    dataset_row[column.name] = timestamp
                else:
                    dataset_row[column.name] = value

        if DatStatExport.PARTICIPANT_ID_FIELD not in dataset_row:
            self.logger.warning('Dataset %s record found without a participant id, ignoring', dataset_name)
            return None

        if DatStatExport.DATE_FIELD not in dataset_row and not form.demographic:
            self.logger.warning('Dataset %s record found without a date, ignoring', dataset_name)
            return None

        return dataset_row


def print_usage() -> None:
    """ Print script usage """
    _logger.info('usage: python %s [optional config file name/path if not .env]', sys.argv[0])


def main() -> None:
    """ Script entry point """
    if len(sys.argv) > 2:
        print_usage()
        return

    config_file: str = sys.argv[1] if len(sys.argv) == 2 else '.env'
    if not os.path.exists(config_file):
        raise FileNotFoundError(f'Config file "{config_file}" not found')

    logging.config.dictConfig(LOGGING_CONFIG)
    config: dict[str, str] = dotenv.dotenv_values(config_file)
    registry: DatStatProjectRegistry = DatStatProjectRegistry(config)
    datstat_export: DatStatExport = DatStatExport(registry)
    datstat_export.export_source(DatStatSourceFetcher(config), DatStatArchiveWriter(config, registry))


if __name__ == '__main__':
    main()
