import os
import sys
import pytest

# Add src directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from tiercompose_attributes import load_defaults  # noqa: E402
from tiercompose_common import Environment  # noqa: E402

ENVIRONMENTS_DIR = os.path.join(os.path.dirname(__file__), '..', 'environments')


@pytest.fixture
def defaults():
    """Defaults table shipped with the project"""
    return load_defaults()


@pytest.fixture
def environment():
    """Three-zone environment with public and private subnets"""
    return Environment(
        name="prod",
        vpc_id="vpc-12345678",
        private_subnet_ids=("subnet-a1", "subnet-a2", "subnet-a3"),
        public_subnet_ids=("subnet-b1", "subnet-b2", "subnet-b3"),
        tags={"Env": "prod", "Team": "platform"},
    )


@pytest.fixture
def private_only_environment():
    """Environment without public subnets"""
    return Environment(
        name="prod",
        vpc_id="vpc-12345678",
        private_subnet_ids=("subnet-a1", "subnet-a2"),
    )


@pytest.fixture
def sample_config():
    """Small environment document exercising several modules"""
    return {
        "environment": {
            "name": "test",
            "vpc_id": "vpc-12345678",
            "private_subnet_ids": ["subnet-a1", "subnet-a2"],
            "public_subnet_ids": ["subnet-b1", "subnet-b2"],
            "tags": {"Team": "platform"},
        },
        "kms": {"keys": {"data": {"alias": "data"}}},
        "alb": {"name": "web", "target_groups": {"app": {"port": 8080}}},
        "msk": {"name": "events", "broker_count": 2, "kms_key": "data"},
    }


@pytest.fixture
def production_file():
    return os.path.join(ENVIRONMENTS_DIR, 'production.yaml')


@pytest.fixture
def dev_file():
    return os.path.join(ENVIRONMENTS_DIR, 'dev.yaml')
