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

"""ElastiCache (Redis) replication group with optional slow-log delivery."""

from tiercompose_attributes import REQUIRED, defaults_for, load_defaults, resolve
from tiercompose_common import (
    ingress_rules, kms_key_reference, log_group, security_group, tag_map,
)
from tiercompose_conditionals import build, compose_groups
from tiercompose_model import Kind, Reference, ResourceDescriptor, output

COMPONENT = "ElastiCache"


def create_elasticache(settings, environment, table=None):
    """Descriptors for one replication group."""
    table = table if table is not None else load_defaults()
    service_defaults = table["services"]["elasticache"]
    name = settings.get("name", "cache")
    tags = settings.get("tags")
    slow_log_enabled = bool(settings.get("slow_log_enabled", False))
    security_group_key = f"elasticache-{name}"
    log_group_key = f"elasticache-{name}-slow-log"

    group_id = environment.resource_name(Kind.CACHE_REPLICATION_GROUP, name, table=table).lower()
    subnet_group_name = environment.resource_name(Kind.CACHE_SUBNET_GROUP, name, table=table).lower()
    port = settings.get("port") or defaults_for(Kind.CACHE_REPLICATION_GROUP, table)["Port"]

    subnet_group = ResourceDescriptor(Kind.CACHE_SUBNET_GROUP, name, resolve(
        {"Description": f"Subnets for {group_id}", "SubnetIds": REQUIRED},
        {
            "CacheSubnetGroupName": subnet_group_name,
            "SubnetIds": list(settings.get("subnet_ids") or environment.private_subnet_ids) or None,
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, subnet_group_name)},
        key=f"{Kind.CACHE_SUBNET_GROUP.value}.{name}",
    ))

    log_delivery = build(slow_log_enabled, lambda: {
        "DestinationType": "cloudwatch-logs",
        "LogFormat": settings.get("log_format") or service_defaults["log_format"],
        "LogType": "slow-log",
        "DestinationDetails": {
            "CloudWatchLogsDetails": {
                "LogGroup": Reference(Kind.LOG_GROUP, log_group_key, "name", required=True),
            },
        },
    })

    replication_group = ResourceDescriptor(Kind.CACHE_REPLICATION_GROUP, name, resolve(
        defaults_for(Kind.CACHE_REPLICATION_GROUP, table),
        {
            "ReplicationGroupId": group_id,
            "ReplicationGroupDescription": settings.get("description") or f"{group_id} cache",
            "Engine": settings.get("engine"),
            "EngineVersion": settings.get("engine_version"),
            "CacheNodeType": settings.get("node_type"),
            "NumCacheClusters": settings.get("num_cache_clusters"),
            "AutomaticFailoverEnabled": settings.get("automatic_failover"),
            "MultiAZEnabled": settings.get("multi_az"),
            "AtRestEncryptionEnabled": settings.get("at_rest_encryption"),
            "TransitEncryptionEnabled": settings.get("transit_encryption"),
            "AuthToken": settings.get("auth_token"),
            "KmsKeyId": kms_key_reference(settings),
            "Port": port,
            "CacheSubnetGroupName": Reference(Kind.CACHE_SUBNET_GROUP, name, "name", required=True),
            "SecurityGroupIds": [Reference(Kind.SECURITY_GROUP, security_group_key, "id", required=True)],
            "LogDeliveryConfigurations": log_delivery or None,
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, group_id)},
    ))

    return compose_groups(
        [subnet_group, replication_group],
        [security_group(security_group_key, f"Cache {name}", environment, COMPONENT, tags, table)],
        ingress_rules(
            security_group_key, port,
            cidr_blocks=settings.get("allowed_cidr_blocks") or [],
            source_group_ids=settings.get("allowed_security_group_ids") or [],
            description="Cache clients",
        ),
        build(slow_log_enabled, lambda: log_group(
            log_group_key, f"/aws/elasticache/{group_id}/slow-log", environment, COMPONENT,
            retention=settings.get("log_retention_days"), tags=tags, table=table,
        )),
        [
            output(f"elasticache-{name}-primary-endpoint",
                   Reference(Kind.CACHE_REPLICATION_GROUP, name, "endpoint")),
        ],
    )


if __name__ == "__main__":
    from tiercompose_environment import render_module
    print(render_module(create_elasticache, "elasticache"))
