import pytest

from fakes import Core


@pytest.fixture
def core_factory(tmp_path):
    def factory(**kwargs) -> Core:
        return Core(tmp_path, **kwargs)
    return factory
