import pytest

from kexpose._cogs.structs.references import DEPLOYMENTS, SERVICES


@pytest.fixture(params=[DEPLOYMENTS, SERVICES], ids=['apps', 'core'])
def resource(request):
    return request.param


@pytest.fixture(autouse=True)
def _prevent_retries_in_api_tests(settings):
    settings.networking.error_backoffs = []
