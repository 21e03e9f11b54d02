""" DATStat export source fetcher """
import logging
import os
import typing
from urllib.parse import urlparse, ParseResult
from urllib.request import url2pathname

import requests

from datstat_etl.datstat_project import DatStatProject
from datstat_etl.datstat_value import DatStatValue


_logger = logging.getLogger(__name__)

# suppress DEBUG logging from http requests
logging.getLogger('urllib3').setLevel(logging.ERROR)


class DatStatSourceFetcher:
    """ Retrieve DATStat metadata and data exports hosted locally (file://) or remotely via HTTP(S) """
    DEFAULT_REQUEST_TIMEOUT: int = 30

    def __init__(self, config: dict[str, str] = None) -> None:
        self._config: dict[str, str] = config or {}
        self._username: str = self._config.get('DATSTAT_USERNAME')
        self._password: str = self._config.get('DATSTAT_PASSWORD')
        self._timeout: float = float(
            self._config.get('DATSTAT_REQUEST_TIMEOUT') or DatStatSourceFetcher.DEFAULT_REQUEST_TIMEOUT
        )

    @staticmethod
    def url_to_path(url: str) -> str:
        """ Convert specified URL to path specific to local platform """
        url_parts: ParseResult = urlparse(url)
        host = f"{os.path.sep}{os.path.sep}{url_parts.netloc}{os.path.sep}"
        return os.path.normpath(os.path.join(host, url2pathname(url_parts.path)))

    def get_url_content(self, url: str) -> bytes:
        """ Retrieve and return contents from specified URL or local path """
        scheme: str = str(url if url is not None else '').lower().partition('://')[0]
        url_content: bytes
        if scheme == 'file' or (url and '://' not in url):
            local_file: typing.BinaryIO
            local_path: str = DatStatSourceFetcher.url_to_path(url) if scheme == 'file' else url
            with open(local_path, 'rb') as local_file:
                url_content = local_file.read()
        elif scheme in ('http', 'https'):
            auth: tuple[str, str] = (self._username, self._password) if self._username else None
            response: requests.Response
            with requests.get(url, auth=auth, timeout=self._timeout) as response:
                response.raise_for_status()
                url_content = response.content
        else:
            raise RuntimeError(f'Unsupported URL type/format/protocol: {url}')
        return url_content

    def fetch_metadata(self, project: DatStatProject) -> DatStatValue:
        """ Retrieve and decode metadata (data dictionary) export for specified project """
        if not project.metadata_url:
            raise RuntimeError(f'Metadata URL not specified for project "{project.name}"')
        _logger.info('Retrieving metadata for project "%s" from %s', project.name, project.metadata_url)
        return self._fetch_payload(project.metadata_url)

    def fetch_data(self, project: DatStatProject) -> DatStatValue:
        """ Retrieve and decode data export for specified project """
        if not project.data_url:
            raise RuntimeError(f'Data URL not specified for project "{project.name}"')
        _logger.info('Retrieving data for project "%s" from %s', project.name, project.data_url)
        return self._fetch_payload(project.data_url)

    def _fetch_payload(self, url: str) -> DatStatValue:
        """ Retrieve payload at specified URL and decode, verifying payload is list of nodes """
        payload: DatStatValue = DatStatValue.loads(self.get_url_content(url))
        if not payload.is_list():
            raise RuntimeError(f'Unexpected payload at {url}, expected list of nodes but found "{payload.kind}"')
        return payload
