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

"""MSK (Kafka) cluster with an optional CloudWatch broker log group."""

from tiercompose_attributes import REQUIRED, defaults_for, load_defaults, resolve
from tiercompose_common import (
    ingress_rules, kms_key_reference, log_group, security_group, tag_map,
)
from tiercompose_conditionals import build, compose_groups
from tiercompose_model import Kind, Reference, ResourceDescriptor, output

COMPONENT = "MSK"

# Broker ports: 9094 TLS, 9098 IAM over TLS.
TLS_PORT = 9094
IAM_PORT = 9098


def create_msk(settings, environment, table=None):
    """Descriptors for one MSK cluster."""
    table = table if table is not None else load_defaults()
    service_defaults = table["services"]["msk"]
    name = settings.get("name", "kafka")
    tags = settings.get("tags")
    cloudwatch_logs_enabled = settings.get("cloudwatch_logs_enabled", True)
    iam_auth_enabled = settings.get("iam_auth_enabled", True)
    security_group_key = f"msk-{name}"
    log_group_key = f"msk-{name}"
    kms_key = kms_key_reference(settings)

    cluster_name = environment.resource_name(Kind.KAFKA_CLUSTER, name, table=table)
    subnets = list(settings.get("subnet_ids") or environment.private_subnet_ids)

    encryption = {
        "EncryptionInTransit": {
            "ClientBroker": settings.get("client_broker_encryption") or service_defaults["client_broker_encryption"],
            "InCluster": True,
        },
    }
    if kms_key is not None:
        encryption["EncryptionAtRest"] = {"DataVolumeKMSKeyId": kms_key}

    base = defaults_for(Kind.KAFKA_CLUSTER, table)
    base["BrokerNodeGroupInfo"] = REQUIRED
    overrides = {
        "ClusterName": cluster_name,
        "KafkaVersion": settings.get("kafka_version"),
        "NumberOfBrokerNodes": settings.get("broker_count"),
        "EnhancedMonitoring": settings.get("enhanced_monitoring"),
        "BrokerNodeGroupInfo": {
            "InstanceType": settings.get("instance_type") or service_defaults["instance_type"],
            "ClientSubnets": subnets,
            "SecurityGroups": [Reference(Kind.SECURITY_GROUP, security_group_key, "id", required=True)],
            "StorageInfo": {
                "EBSStorageInfo": {
                    "VolumeSize": settings.get("volume_size") or service_defaults["volume_size"],
                },
            },
        } if subnets else None,
        "EncryptionInfo": encryption,
        "LoggingInfo": {
            "BrokerLogs": {
                "CloudWatchLogs": {
                    "Enabled": bool(cloudwatch_logs_enabled),
                    "LogGroup": Reference(Kind.LOG_GROUP, log_group_key, "name"),
                },
            },
        },
    }
    if iam_auth_enabled:
        overrides["ClientAuthentication"] = {"Sasl": {"Iam": {"Enabled": True}}}

    cluster = ResourceDescriptor(Kind.KAFKA_CLUSTER, name, resolve(
        base, overrides,
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, cluster_name)},
        key=f"{Kind.KAFKA_CLUSTER.value}.{name}",
    ))

    client_port = IAM_PORT if iam_auth_enabled else TLS_PORT

    return compose_groups(
        [cluster],
        [security_group(security_group_key, f"MSK cluster {name} brokers", environment, COMPONENT, tags, table)],
        ingress_rules(
            security_group_key, client_port,
            cidr_blocks=settings.get("allowed_cidr_blocks") or [],
            source_group_ids=settings.get("allowed_security_group_ids") or [],
            description="Kafka clients",
        ),
        build(cloudwatch_logs_enabled, lambda: log_group(
            log_group_key, f"/aws/msk/{cluster_name}", environment, COMPONENT,
            retention=settings.get("log_retention_days"), tags=tags, table=table,
        )),
        [
            output(f"msk-{name}-cluster-arn", Reference(Kind.KAFKA_CLUSTER, name), "MSK cluster ARN"),
            output(f"msk-{name}-log-group-name", Reference(Kind.LOG_GROUP, log_group_key, "name"),
                   "Broker log group, null when CloudWatch logging is off"),
        ],
    )


if __name__ == "__main__":
    from tiercompose_environment import render_module
    print(render_module(create_msk, "msk"))
