#!/usr/bin/env python3
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

"""KMS keys shared across the environment, each with an optional alias."""

from tiercompose_attributes import defaults_for, load_defaults, name_limit, resolve, truncate_name
from tiercompose_common import tag_map
from tiercompose_conditionals import ZERO_OR_MANY, build, compose_groups
from tiercompose_model import Kind, Reference, ResourceDescriptor, output

COMPONENT = "KMS"


def root_account_policy():
    """Key policy delegating access control to IAM in the owning account."""
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Sid": "EnableRootAccountAccess",
            "Effect": "Allow",
            "Principal": {"AWS": {"Fn::Sub": "arn:${AWS::Partition}:iam::${AWS::AccountId}:root"}},
            "Action": "kms:*",
            "Resource": "*",
        }],
    }


def create_key(key, settings, environment, table):
    name = environment.resource_name(Kind.KEY, key, table=table)
    alias = settings.get("alias")

    key_descriptor = ResourceDescriptor(Kind.KEY, key, resolve(
        defaults_for(Kind.KEY, table),
        {
            "Description": settings.get("description") or f"{name} encryption key",
            "EnableKeyRotation": settings.get("enable_key_rotation"),
            "PendingWindowInDays": settings.get("deletion_window_in_days"),
            "MultiRegion": settings.get("multi_region"),
            "KeyPolicy": settings.get("policy") or root_account_policy(),
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, settings.get("tags"), name)},
    ))

    def alias_descriptor():
        alias_name = truncate_name(
            f"alias/{environment.name}-{alias}", name_limit(Kind.ALIAS, table)
        )
        return ResourceDescriptor(Kind.ALIAS, key, {
            "AliasName": alias_name,
            "TargetKeyId": Reference(Kind.KEY, key, "id", required=True),
        })

    return compose_groups(
        [key_descriptor],
        build(bool(alias), alias_descriptor),
        [
            output(f"kms-{key}-key-arn", Reference(Kind.KEY, key, "arn")),
            output(f"kms-{key}-key-id", Reference(Kind.KEY, key, "id")),
            output(f"kms-{key}-alias-name", Reference(Kind.ALIAS, key, "name")),
            output(f"kms-{key}-alias-arn", Reference(Kind.ALIAS, key, "arn")),
        ],
    )


def create_kms(settings, environment, table=None):
    """Descriptors for every key declared under ``keys``."""
    table = table if table is not None else load_defaults()
    groups = build(
        True,
        lambda key, key_settings: create_key(key, key_settings or {}, environment, table),
        ZERO_OR_MANY,
        settings.get("keys") or {},
    )
    return compose_groups(*groups)


if __name__ == "__main__":
    from tiercompose_environment import render_module
    print(render_module(create_kms, "kms"))
