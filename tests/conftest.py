import pathlib
import site

import pytest
from sqlcommand.cache import DescriptorCache
from sqlcommand.catalog import CatalogRegistry
from sqlcommand.connection import dispose_all_engines

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def clear_caches():
    """Clear registries and caches before and after each test to ensure test isolation."""
    CatalogRegistry.get_instance().clear()
    DescriptorCache.get_instance().clear()
    yield
    CatalogRegistry.get_instance().clear()
    DescriptorCache.get_instance().clear()
    dispose_all_engines()


pytest_plugins = [
    'tests.fixtures.fakes',
    'tests.fixtures.sqlserver',
]
