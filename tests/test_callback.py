import pytest

from lwsclient.callback import ClientCallback


def test_interface_cannot_be_instantiated():
    with pytest.raises(TypeError):
        ClientCallback()