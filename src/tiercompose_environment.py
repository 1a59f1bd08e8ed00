# Copyright (C) 2025 CardinalHQ, Inc
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, version 3.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""One composition pass over an environment file.

An environment file holds an ``environment`` section (name, VPC, subnets,
tags) plus one optional section per service module. A section that is
absent, empty or has ``enabled: false`` contributes nothing. The alb, msk,
opensearch, rds and elasticache sections also accept a list, one entry per
instance.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List

import yaml

from tiercompose_alb import create_alb
from tiercompose_attributes import REQUIRED, collect_attribute_errors, load_defaults, resolve
from tiercompose_common import Environment
from tiercompose_eks_node_group import create_node_groups
from tiercompose_elasticache import create_elasticache
from tiercompose_errors import InvalidAttribute, InvalidConfiguration
from tiercompose_kms import create_kms
from tiercompose_model import ResourceDescriptor
from tiercompose_msk import create_msk
from tiercompose_opensearch import create_opensearch
from tiercompose_rds import create_rds
from tiercompose_references import link
from tiercompose_validation import Violation, validate

logger = logging.getLogger(__name__)

# Section name -> module entry point, in composition order.
MODULES = (
    ("kms", create_kms),
    ("alb", create_alb),
    ("eks_node_groups", create_node_groups),
    ("msk", create_msk),
    ("opensearch", create_opensearch),
    ("rds", create_rds),
    ("elasticache", create_elasticache),
)

# Sections whose settings already describe a collection of instances.
COLLECTION_SECTIONS = {"kms", "eks_node_groups"}


@dataclass(frozen=True)
class Composition:
    environment: Environment
    descriptors: List[ResourceDescriptor] = field(default_factory=list)
    violations: List[Violation] = field(default_factory=list)


def load_environment(path):
    """Read an environment file."""
    with open(path, 'r') as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return config


def environment_from_config(config):
    settings = config.get("environment") or {}
    resolved = resolve(
        {"name": REQUIRED, "vpc_id": REQUIRED, "private_subnet_ids": REQUIRED},
        {
            "name": settings.get("name"),
            "vpc_id": settings.get("vpc_id"),
            "private_subnet_ids": settings.get("private_subnet_ids") or None,
        },
        key="environment",
    )
    tags = {"Environment": resolved["name"], "ManagedBy": "tiercompose"}
    tags.update({str(k): str(v) for k, v in (settings.get("tags") or {}).items()})
    return Environment(
        name=resolved["name"],
        vpc_id=resolved["vpc_id"],
        private_subnet_ids=tuple(resolved["private_subnet_ids"]),
        public_subnet_ids=tuple(settings.get("public_subnet_ids") or ()),
        tags=tags,
    )


def _enabled(settings):
    if not settings:
        return False
    if isinstance(settings, dict):
        return settings.get("enabled", True) is not False
    return True


def _instances(section, settings):
    if section in COLLECTION_SECTIONS or isinstance(settings, dict):
        return [settings]
    return [instance for instance in settings if _enabled(instance)]


def compose(config, table=None, modules=MODULES):
    """Build, link and validate every descriptor of one environment.

    Attribute errors from every descriptor of every module are raised
    together as one InvalidConfiguration; linking errors fail the pass;
    violations are returned on the Composition for the caller to act on.
    """
    table = table if table is not None else load_defaults()
    try:
        environment = environment_from_config(config)
    except InvalidAttribute as e:
        raise InvalidConfiguration([e])

    descriptors = []
    with collect_attribute_errors() as errors:
        for section, create in modules:
            settings = config.get(section)
            if not _enabled(settings):
                logger.debug("%s: section disabled", section)
                continue
            for instance in _instances(section, settings):
                descriptors.extend(create(instance, environment, table))

    if errors:
        raise InvalidConfiguration(errors)

    linked = link(descriptors)
    violations = validate(linked)
    for violation in violations:
        logger.warning("%s", violation)
    logger.info(
        "composed %d descriptors for %s (%d violation(s))",
        len(linked), environment.name, len(violations),
    )
    return Composition(environment, linked, violations)


def render_module(create, section, path=None):
    """CloudFormation YAML for a single module of an environment file.

    Used by the service modules' command line entry points. KMS keys are
    kept alongside so key references inside the module still resolve.
    """
    from tiercompose_emit import render_template

    if path is None:
        path = sys.argv[1] if len(sys.argv) > 1 else os.path.join(
            os.path.dirname(os.path.abspath(__file__)), "..", "environments", "dev.yaml"
        )
    modules = [(section, create)]
    if section != "kms":
        modules.insert(0, ("kms", create_kms))
    composition = compose(load_environment(path), modules=modules)
    return render_template(composition, f"{composition.environment.name} {section}").to_yaml()
