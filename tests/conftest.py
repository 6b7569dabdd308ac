import pytest

from mips_decoder import decode_program


@pytest.fixture
def program():
    def _build(*words):
        return decode_program(words)
    return _build
