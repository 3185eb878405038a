import logging

import googleapiclient.discovery
from google.auth import default
from google.auth.exceptions import DefaultCredentialsError
from google.oauth2 import service_account
from googleapiclient.discovery import Resource

from rbacsync.config import AUTH_METHOD_DEFAULT
from rbacsync.config import Config
from rbacsync.directory.client import DirectoryClient
from rbacsync.directory.client import FakeDirectoryClient
from rbacsync.directory.client import GoogleDirectoryClient
from rbacsync.exceptions import ConfigurationError

OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.group.readonly",
    "https://www.googleapis.com/auth/admin.directory.group.member.readonly",
]

logger = logging.getLogger(__name__)


def _get_admin_resource(credentials) -> Resource:
    """
    Instantiates a Google API resource object for the Admin SDK Directory API.
    See https://developers.google.com/admin-sdk/directory/v1/guides/manage-group-members

    :param credentials: The credentials object
    :return: An admin api resource object
    """
    return googleapiclient.discovery.build("admin", "directory_v1", credentials=credentials, cache_discovery=False)


def get_credentials(config: Config):
    """
    Load directory credentials according to `config.auth_method`.

    'delegated' reads a service account key file and impersonates `config.delegated_admin`
    through domain-wide delegation. 'default' uses application default credentials.

    :raises ConfigurationError: if the credentials cannot be loaded.
    """
    if config.auth_method == AUTH_METHOD_DEFAULT:
        logger.info("Authenticating to the Directory API using application default credentials")
        try:
            creds, _ = default(scopes=OAUTH_SCOPES)
        except DefaultCredentialsError as e:
            raise ConfigurationError(
                f"Unable to load application default credentials for the Directory API: {e}",
            ) from e
        return creds

    logger.info(
        "Authenticating to the Directory API with service account file %s on behalf of %s",
        config.credentials_file,
        config.delegated_admin,
    )
    try:
        creds = service_account.Credentials.from_service_account_file(
            config.credentials_file,
            scopes=OAUTH_SCOPES,
        )
    except (OSError, ValueError, DefaultCredentialsError) as e:
        raise ConfigurationError(
            f"Unable to read directory credentials file {config.credentials_file}: {e}",
        ) from e
    return creds.with_subject(config.delegated_admin)


def get_directory_client(config: Config) -> DirectoryClient:
    if config.fake_response:
        logger.warning("Fake group response mode is enabled, the Directory API will not be called.")
        return FakeDirectoryClient()
    creds = get_credentials(config)
    return GoogleDirectoryClient(lambda: _get_admin_resource(creds))
