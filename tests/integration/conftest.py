import logging
from unittest import mock

import pytest

logging.basicConfig(level=logging.INFO)
logging.getLogger("googleapiclient").setLevel(logging.WARNING)


@pytest.fixture
def rbac_api():
    """
    RBAC API double that remembers the last RoleBinding written per (namespace, name).
    """
    api = mock.MagicMock()
    api.bindings = {}

    def replace(name, namespace, body, **kwargs):
        api.bindings[(namespace, name)] = body
        return body

    api.replace_namespaced_role_binding.side_effect = replace
    return api
