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

"""RDS instance with generated credentials and optional enhanced monitoring."""

import json

from tiercompose_attributes import REQUIRED, defaults_for, load_defaults, resolve
from tiercompose_common import (
    ingress_rules, kms_key_reference, policy_attachment, policy_name, role,
    security_group, tag_map,
)
from tiercompose_conditionals import build, compose_groups
from tiercompose_model import Kind, Reference, ResourceDescriptor, address_of, output

COMPONENT = "RDS"

MONITORING_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonRDSEnhancedMonitoringRole"


def credentials_secret(key, secret_name, username, environment, tags):
    return ResourceDescriptor(Kind.SECRET, key, {
        "Name": secret_name,
        "Description": f"Master credentials for {key}",
        "GenerateSecretString": {
            "SecretStringTemplate": json.dumps({"username": username}),
            "GenerateStringKey": "password",
            "PasswordLength": 32,
            "ExcludePunctuation": True,
        },
        "Tags": tag_map(environment, COMPONENT, tags, secret_name),
    })


def create_rds(settings, environment, table=None):
    """Descriptors for one database instance."""
    table = table if table is not None else load_defaults()
    name = settings.get("name", "db")
    tags = settings.get("tags")
    monitoring_interval = settings.get("monitoring_interval") or 0
    monitoring_enabled = monitoring_interval > 0
    username = settings.get("master_username", "dbadmin")
    security_group_key = f"rds-{name}"
    monitoring_role_key = f"rds-{name}-monitoring"
    secret_key = f"rds-{name}"

    identifier = environment.resource_name(Kind.DB_INSTANCE, name, table=table)
    secret_name = environment.resource_name(Kind.SECRET, name, "db-credentials", table=table)
    subnet_group_name = environment.resource_name(Kind.DB_SUBNET_GROUP, name, table=table)
    port = str(settings.get("port") or defaults_for(Kind.DB_INSTANCE, table)["Port"])

    subnet_group = ResourceDescriptor(Kind.DB_SUBNET_GROUP, name, resolve(
        {"DBSubnetGroupDescription": f"Subnets for {identifier}", "SubnetIds": REQUIRED},
        {
            "DBSubnetGroupName": subnet_group_name,
            "SubnetIds": list(settings.get("subnet_ids") or environment.private_subnet_ids) or None,
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, subnet_group_name)},
        key=f"{Kind.DB_SUBNET_GROUP.value}.{name}",
    ))

    kms_key = kms_key_reference(settings)
    instance = ResourceDescriptor(Kind.DB_INSTANCE, name, resolve(
        defaults_for(Kind.DB_INSTANCE, table),
        {
            "DBInstanceIdentifier": identifier,
            "Engine": settings.get("engine"),
            "EngineVersion": settings.get("engine_version"),
            "DBInstanceClass": settings.get("instance_class"),
            "AllocatedStorage": str(settings["allocated_storage"]) if settings.get("allocated_storage") else None,
            "MaxAllocatedStorage": settings.get("max_allocated_storage"),
            "MultiAZ": settings.get("multi_az"),
            "DBName": settings.get("db_name"),
            "Port": port,
            "MasterUsername": username,
            "MasterUserPassword": "{{resolve:secretsmanager:%s:SecretString:password}}" % secret_name,
            "KmsKeyId": kms_key,
            "BackupRetentionPeriod": settings.get("backup_retention_period"),
            "DeletionProtection": settings.get("deletion_protection"),
            "EnablePerformanceInsights": settings.get("performance_insights_enabled"),
            "MonitoringInterval": monitoring_interval,
            "MonitoringRoleArn": (
                Reference(Kind.ROLE, monitoring_role_key, required=True) if monitoring_enabled else None
            ),
            "DBSubnetGroupName": Reference(Kind.DB_SUBNET_GROUP, name, "name", required=True),
            "VPCSecurityGroups": [Reference(Kind.SECURITY_GROUP, security_group_key, "id", required=True)],
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, identifier)},
    ), frozenset({address_of(Kind.SECRET, secret_key)}))

    return compose_groups(
        [subnet_group, instance],
        [credentials_secret(secret_key, secret_name, username, environment, tags)],
        [security_group(security_group_key, f"Database {name}", environment, COMPONENT, tags, table)],
        ingress_rules(
            security_group_key, int(port),
            cidr_blocks=settings.get("allowed_cidr_blocks") or [],
            source_group_ids=settings.get("allowed_security_group_ids") or [],
            description="Database clients",
        ),
        build(monitoring_enabled, lambda: role(
            monitoring_role_key, "monitoring.rds.amazonaws.com", environment, COMPONENT, tags, table,
        )),
        build(monitoring_enabled, lambda: policy_attachment(
            monitoring_role_key, policy_name(MONITORING_POLICY_ARN), MONITORING_POLICY_ARN,
        )),
        [
            output(f"rds-{name}-endpoint", Reference(Kind.DB_INSTANCE, name, "endpoint")),
            output(f"rds-{name}-secret-arn", Reference(Kind.SECRET, secret_key)),
            output(f"rds-{name}-monitoring-role-arn", Reference(Kind.ROLE, monitoring_role_key),
                   "Enhanced monitoring role, null when monitoring is off"),
        ],
    )


if __name__ == "__main__":
    from tiercompose_environment import render_module
    print(render_module(create_rds, "rds"))
