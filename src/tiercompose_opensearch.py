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

"""OpenSearch domain with per-type CloudWatch log publishing."""

from tiercompose_attributes import defaults_for, load_defaults, resolve
from tiercompose_common import (
    ingress_rules, kms_key_reference, log_group, security_group, tag_map,
)
from tiercompose_conditionals import ZERO_OR_MANY, build, compose_groups
from tiercompose_model import Kind, Reference, ResourceDescriptor, output

COMPONENT = "OpenSearch"

AUDIT_LOGS = "AUDIT_LOGS"
SLOW_LOG_TYPES = ("INDEX_SLOW_LOGS", "SEARCH_SLOW_LOGS")
APPLICATION_LOGS = "ES_APPLICATION_LOGS"


def log_types(settings):
    """Enabled log types other than audit logs, in publishing order."""
    enabled = {}
    if settings.get("application_logs_enabled", True):
        enabled[APPLICATION_LOGS] = "application"
    if settings.get("slow_logs_enabled", False):
        enabled.update({log_type: log_type.lower().replace("_", "-") for log_type in SLOW_LOG_TYPES})
    return enabled


def cluster_config(settings, service_defaults):
    zone_awareness = settings.get("zone_awareness", True)
    config = {
        "InstanceType": settings.get("instance_type") or service_defaults["instance_type"],
        "InstanceCount": settings.get("instance_count") or service_defaults["instance_count"],
        "ZoneAwarenessEnabled": bool(zone_awareness),
        "DedicatedMasterEnabled": bool(settings.get("dedicated_master", False)),
    }
    if zone_awareness:
        config["ZoneAwarenessConfig"] = {
            "AvailabilityZoneCount": settings.get("availability_zone_count")
            or service_defaults["availability_zone_count"],
        }
    if config["DedicatedMasterEnabled"]:
        config["DedicatedMasterType"] = settings.get("master_instance_type") or config["InstanceType"]
        config["DedicatedMasterCount"] = settings.get("master_count", 3)
    return config


def create_opensearch(settings, environment, table=None):
    """Descriptors for one OpenSearch domain."""
    table = table if table is not None else load_defaults()
    service_defaults = table["services"]["opensearch"]
    name = settings.get("name", "search")
    tags = settings.get("tags")
    audit_logs_enabled = bool(settings.get("audit_logs_enabled", False))
    fine_grained_access = bool(settings.get("fine_grained_access", True))
    security_group_key = f"opensearch-{name}"
    kms_key = kms_key_reference(settings)

    domain_name = environment.resource_name(Kind.SEARCH_DOMAIN, name, table=table).lower()
    config = cluster_config(settings, service_defaults)
    zone_count = config.get("ZoneAwarenessConfig", {}).get("AvailabilityZoneCount", 1)
    subnets = list(settings.get("subnet_ids") or environment.private_subnet_ids)[:zone_count]
    enabled_logs = log_types(settings)

    publishing = {
        log_type: {
            "CloudWatchLogsLogGroupArn": Reference(Kind.LOG_GROUP, f"opensearch-{name}-{suffix}", "arn"),
            "Enabled": True,
        }
        for log_type, suffix in enabled_logs.items()
    }
    if audit_logs_enabled:
        publishing[AUDIT_LOGS] = {
            "CloudWatchLogsLogGroupArn": Reference(Kind.LOG_GROUP, f"opensearch-{name}-audit", "arn"),
            "Enabled": True,
        }

    encryption_at_rest = {"Enabled": True}
    if kms_key is not None:
        encryption_at_rest["KmsKeyId"] = kms_key

    security_options = None
    if fine_grained_access:
        security_options = {
            "Enabled": True,
            "InternalUserDatabaseEnabled": bool(settings.get("internal_user_database", False)),
        }
        if settings.get("master_user_arn"):
            security_options["MasterUserOptions"] = {"MasterUserARN": settings["master_user_arn"]}

    domain = ResourceDescriptor(Kind.SEARCH_DOMAIN, name, resolve(
        defaults_for(Kind.SEARCH_DOMAIN, table),
        {
            "DomainName": domain_name,
            "EngineVersion": settings.get("engine_version"),
            "ClusterConfig": config,
            "EBSOptions": {
                "EBSEnabled": True,
                "VolumeSize": settings.get("volume_size") or service_defaults["volume_size"],
                "VolumeType": settings.get("volume_type") or service_defaults["volume_type"],
            },
            "EncryptionAtRestOptions": encryption_at_rest,
            "NodeToNodeEncryptionOptions": {"Enabled": True},
            "DomainEndpointOptions": {
                "EnforceHTTPS": True,
                "TLSSecurityPolicy": service_defaults["tls_security_policy"],
            },
            "VPCOptions": {
                "SubnetIds": subnets,
                "SecurityGroupIds": [
                    Reference(Kind.SECURITY_GROUP, security_group_key, "id", required=True)
                ] + list(settings.get("security_group_ids") or []),
            },
            "AdvancedSecurityOptions": security_options,
            "LogPublishingOptions": publishing or None,
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, domain_name)},
    ))

    def domain_log_group(suffix):
        return log_group(
            f"opensearch-{name}-{suffix}", f"/aws/opensearch/{domain_name}/{suffix}",
            environment, COMPONENT, retention=settings.get("log_retention_days"), tags=tags, table=table,
        )

    return compose_groups(
        [domain],
        [security_group(security_group_key, f"OpenSearch domain {name}", environment, COMPONENT, tags, table)],
        ingress_rules(
            security_group_key, 443,
            cidr_blocks=settings.get("allowed_cidr_blocks") or [],
            source_group_ids=settings.get("allowed_security_group_ids") or [],
            description="HTTPS to the domain endpoint",
        ),
        build(True, lambda _, suffix: domain_log_group(suffix), ZERO_OR_MANY, list(enabled_logs.values())),
        build(audit_logs_enabled, lambda: domain_log_group("audit")),
        [
            output(f"opensearch-{name}-domain-arn", Reference(Kind.SEARCH_DOMAIN, name)),
            output(f"opensearch-{name}-domain-endpoint", Reference(Kind.SEARCH_DOMAIN, name, "endpoint")),
            output(f"opensearch-{name}-audit-log-group-arn",
                   Reference(Kind.LOG_GROUP, f"opensearch-{name}-audit", "arn"),
                   "Audit log group, null when audit logs are off"),
        ],
    )


if __name__ == "__main__":
    from tiercompose_environment import render_module
    print(render_module(create_opensearch, "opensearch"))
