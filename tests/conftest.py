import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))
sys.path.append(str(Path(__file__).resolve().parent))

import pytest

from clusterstate.options import Options
from clusterstate.scheduling.volumes import Volumes


@pytest.fixture
def options():
    return Options()


@pytest.fixture
def no_volumes():
    def resolve(pod, ctx=None):
        return Volumes()
    return resolve
