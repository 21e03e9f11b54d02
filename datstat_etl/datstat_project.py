""" DATStat project and form configuration """
from __future__ import annotations
from enum import Enum
import json
import logging
from types import MappingProxyType

import jsonschema
from jsonschema import ValidationError


_logger = logging.getLogger(__name__)


class DatStatForm:
    """ Export settings for a single DATStat form (dataset) """
    DEFAULT_DATE_FIELD: str = 'date'
    DEFAULT_PTID_FIELD: str = 'DATSTAT_ALTPID'

    def __init__(
        self,
        name: str,
        demographic: bool = False,
        transform: bool = False,
        date_field: str = None,
        ptid_field: str = None
    ) -> None:
        self._name: str = name
        self._demographic: bool = demographic
        self._transform: bool = transform
        self._date_field: str = date_field or DatStatForm.DEFAULT_DATE_FIELD
        self._ptid_field: str = ptid_field or DatStatForm.DEFAULT_PTID_FIELD

    def __repr__(self) -> str:
        return (
            f'{DatStatForm.__name__}(name={self._name!r}, demographic={self._demographic}, ' +
            f'transform={self._transform}, date_field={self._date_field!r}, ptid_field={self._ptid_field!r})'
        )

    @property
    def name(self) -> str:
        """ Get form (dataset) name """
        return self._name

    @property
    def demographic(self) -> bool:
        """ Get whether form holds one row per participant and so doesn't require a date """
        return self._demographic

    @property
    def transform(self) -> bool:
        """ Get whether form rows are pivoted into numerically suffixed field groups """
        return self._transform

    @property
    def date_field(self) -> str:
        """ Get name of source field holding the row date """
        return self._date_field

    @property
    def ptid_field(self) -> str:
        """ Get name of source field holding the participant id """
        return self._ptid_field


class DatStatProject:
    """ DATStat project: source locations and the forms enrolled in export """
    def __init__(self, config: dict[str, any]) -> None:
        self._name: str = config.get('project_name')
        self._metadata_url: str = config.get('metadata_url')
        self._data_url: str = config.get('data_url')
        self._form_map: dict[str, DatStatForm] = {}

        form_config: dict[str, any]
        for form_config in config.get('forms', []):
            form: DatStatForm = DatStatForm(
                form_config.get('form_name'),
                demographic=form_config.get('demographic', False),
                transform=form_config.get('transform', False),
                date_field=form_config.get('date_field'),
                ptid_field=form_config.get('ptid_field')
            )
            if form.name in self._form_map:
                _logger.error('Duplicate form name "%s" in configuration for project "%s"', form.name, self._name)
                continue
            self._form_map[form.name] = form

    @property
    def name(self) -> str:
        """ Get project name """
        return self._name

    @property
    def metadata_url(self) -> str:
        """ Get location of the project's metadata (data dictionary) export """
        return self._metadata_url

    @property
    def data_url(self) -> str:
        """ Get location of the project's data export """
        return self._data_url

    @property
    def form_map(self) -> MappingProxyType:
        """ Get read-only mapping of dataset name to form """
        return MappingProxyType(self._form_map)


class DatStatTimepointType(str, Enum):
    """
    Enum class for study timepoint types
    """
    DATE = 'DATE'
    VISIT = 'VISIT'

    def __str__(self):
        return self.value


class DatStatProjectRegistry:
    """ Project and form configuration loaded from (dotenv) config """
    PROJECT_CONFIGURATIONS_SCHEMA: dict[str, any] = {
        '$schema': 'https://json-schema.org/draft/2020-12/schema',
        'type': 'array',
        'items': {
            'type': 'object',
            'required': ['project_name', 'forms'],
            'properties': {
                'project_name': {'type': 'string', 'minLength': 1},
                'active': {'type': 'boolean'},
                'metadata_url': {'type': 'string'},
                'data_url': {'type': 'string'},
                'forms': {
                    'type': 'array',
                    'items': {
                        'type': 'object',
                        'required': ['form_name'],
                        'properties': {
                            'form_name': {'type': 'string', 'minLength': 1},
                            'demographic': {'type': 'boolean'},
                            'transform': {'type': 'boolean'},
                            'date_field': {'type': 'string', 'minLength': 1},
                            'ptid_field': {'type': 'string', 'minLength': 1}
                        }
                    }
                }
            }
        }
    }

    def __init__(self, config: dict[str, str]) -> None:
        self._config: dict[str, str] = config
        self._projects: dict[str, DatStatProject] = {}
        self._timepoint_type: DatStatTimepointType = DatStatTimepointType.DATE
        if (config.get('TIMEPOINT_TYPE') or '').strip().lower() == 'visit':
            self._timepoint_type = DatStatTimepointType.VISIT

        if not config.get('PROJECT_CONFIGURATIONS'):
            raise RuntimeError(
                'One or more required variables not specified in configuration: (\'PROJECT_CONFIGURATIONS\',)'
            )

        project_configs: list[dict[str, any]]
        try:
            project_configs = json.loads(config.get('PROJECT_CONFIGURATIONS'))
        except json.decoder.JSONDecodeError as err:
            _logger.critical('Unable to parse PROJECT_CONFIGURATIONS: %s', err)
            raise RuntimeError('Invalid project configurations, unable to parse JSON') from err

        try:
            jsonschema.validate(instance=project_configs, schema=DatStatProjectRegistry.PROJECT_CONFIGURATIONS_SCHEMA)
        except ValidationError as verr:
            _logger.critical('Project configuration validation failed:')
            _logger.critical(verr.message)
            raise RuntimeError(f'Invalid project configurations: {verr.message}') from verr

        project_config: dict[str, any]
        for project_config in [pc for pc in project_configs if pc.get('active', True)]:
            if project_config['project_name'] in self._projects:
                _logger.error('Duplicate project names in the configuration: %s', project_config['project_name'])
                continue
            self._projects[project_config['project_name']] = DatStatProject(project_config)

    @property
    def projects(self) -> list[DatStatProject]:
        """ Get active projects in configuration order """
        return list(self._projects.values())

    @property
    def timepoint_type(self) -> DatStatTimepointType:
        """ Get study timepoint type, DATE or VISIT """
        return self._timepoint_type

    def get_project(self, project_name: str) -> DatStatProject:
        """ Get project with specified name or None if not configured """
        return self._projects.get(project_name)

    def forms_by_name(self, project_name: str) -> MappingProxyType:
        """ Get mapping of dataset name to form for specified project, empty if project not configured """
        project: DatStatProject = self._projects.get(project_name)
        return project.form_map if project else MappingProxyType({})

    def get_form(self, dataset_name: str) -> DatStatForm:
        """ Get form for dataset name from any project, first project defining it wins """
        project: DatStatProject
        for project in self._projects.values():
            if dataset_name in project.form_map:
                return project.form_map[dataset_name]
        return None
