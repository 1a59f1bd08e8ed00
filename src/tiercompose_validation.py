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

"""Structural invariant checks over a linked descriptor list.

Every rule runs and every violation is returned, so a configuration can be
fixed in one go. Nothing here raises; callers decide whether violations
block emission.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from tiercompose_model import Kind

logger = logging.getLogger(__name__)

# CloudWatch Logs accepted retention periods (days).
LOG_RETENTION_DAYS = (
    1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 400, 545, 731,
    1096, 1827, 2192, 2557, 2922, 3288, 3653,
)
DB_MONITORING_INTERVALS = (0, 1, 5, 10, 15, 30, 60)
KEY_DELETION_WINDOW = (7, 30)


@dataclass(frozen=True)
class Violation:
    rule: str
    address: Optional[str]
    message: str

    def __str__(self):
        if self.address:
            return f"{self.rule}: {self.address}: {self.message}"
        return f"{self.rule}: {self.message}"


def _of_kind(descriptors, kind):
    return [descriptor for descriptor in descriptors if descriptor.kind == kind]


def _forwards_nowhere(listener):
    """True when a forward action has neither a target group nor a ForwardConfig."""
    return any(
        action.get("Type") == "forward"
        and action.get("TargetGroupArn") is None
        and not action.get("ForwardConfig")
        for action in listener.attributes.get("DefaultActions", [])
    )


def broker_count_multiple_of_zones(descriptors):
    for cluster in _of_kind(descriptors, Kind.KAFKA_CLUSTER):
        brokers = cluster.attributes.get("NumberOfBrokerNodes", 0)
        zones = len(cluster.attributes.get("BrokerNodeGroupInfo", {}).get("ClientSubnets", []))
        if zones == 0 or brokers % zones != 0:
            yield Violation(
                "broker_count_multiple_of_zones", cluster.address,
                f"{brokers} brokers cannot be spread evenly over {zones} zone(s)",
            )


def listener_requires_target_group(descriptors):
    for listener in _of_kind(descriptors, Kind.LISTENER):
        if _forwards_nowhere(listener):
            yield Violation(
                "listener_requires_target_group", listener.address,
                "listener forwards but its target group does not exist",
            )


def https_listener_has_certificate(descriptors):
    for listener in _of_kind(descriptors, Kind.LISTENER):
        if listener.attributes.get("Protocol") == "HTTPS" and not listener.attributes.get("Certificates"):
            yield Violation(
                "https_listener_has_certificate", listener.address,
                "HTTPS listener has no certificate",
            )


def key_deletion_window(descriptors):
    low, high = KEY_DELETION_WINDOW
    for key in _of_kind(descriptors, Kind.KEY):
        window = key.attributes.get("PendingWindowInDays")
        if window is not None and not low <= window <= high:
            yield Violation(
                "key_deletion_window", key.address,
                f"deletion window {window} outside [{low}, {high}] days",
            )


def alias_name_format(descriptors):
    for alias in _of_kind(descriptors, Kind.ALIAS):
        name = alias.attributes.get("AliasName", "")
        if not name.startswith("alias/") or name.startswith("alias/aws/"):
            yield Violation(
                "alias_name_format", alias.address,
                f"alias name {name!r} must start with 'alias/' and not 'alias/aws/'",
            )


def log_retention_allowed(descriptors):
    for log_group in _of_kind(descriptors, Kind.LOG_GROUP):
        retention = log_group.attributes.get("RetentionInDays")
        if retention is not None and retention not in LOG_RETENTION_DAYS:
            yield Violation(
                "log_retention_allowed", log_group.address,
                f"retention of {retention} days is not accepted by CloudWatch Logs",
            )


def audit_logs_require_fine_grained_access(descriptors):
    for domain in _of_kind(descriptors, Kind.SEARCH_DOMAIN):
        publishing = domain.attributes.get("LogPublishingOptions", {})
        security = domain.attributes.get("AdvancedSecurityOptions", {})
        if "AUDIT_LOGS" in publishing and not security.get("Enabled"):
            yield Violation(
                "audit_logs_require_fine_grained_access", domain.address,
                "audit logs need fine-grained access control enabled",
            )


def search_instances_span_zones(descriptors):
    for domain in _of_kind(descriptors, Kind.SEARCH_DOMAIN):
        cluster = domain.attributes.get("ClusterConfig", {})
        if not cluster.get("ZoneAwarenessEnabled"):
            continue
        zones = cluster.get("ZoneAwarenessConfig", {}).get("AvailabilityZoneCount", 2)
        instances = cluster.get("InstanceCount", 1)
        if instances % zones != 0:
            yield Violation(
                "search_instances_span_zones", domain.address,
                f"{instances} instances cannot be spread evenly over {zones} zones",
            )


def node_group_scaling_bounds(descriptors):
    for group in _of_kind(descriptors, Kind.NODE_GROUP):
        scaling = group.attributes.get("ScalingConfig", {})
        low, desired, high = scaling.get("MinSize"), scaling.get("DesiredSize"), scaling.get("MaxSize")
        if None in (low, desired, high):
            continue
        if not low <= desired <= high:
            yield Violation(
                "node_group_scaling_bounds", group.address,
                f"expected min <= desired <= max, got {low}/{desired}/{high}",
            )


def cache_failover_needs_replica(descriptors):
    for group in _of_kind(descriptors, Kind.CACHE_REPLICATION_GROUP):
        if group.attributes.get("AutomaticFailoverEnabled") and group.attributes.get("NumCacheClusters", 1) < 2:
            yield Violation(
                "cache_failover_needs_replica", group.address,
                "automatic failover needs at least two cache clusters",
            )


def cache_auth_token_needs_transit_encryption(descriptors):
    for group in _of_kind(descriptors, Kind.CACHE_REPLICATION_GROUP):
        if group.attributes.get("AuthToken") and not group.attributes.get("TransitEncryptionEnabled"):
            yield Violation(
                "cache_auth_token_needs_transit_encryption", group.address,
                "an auth token requires transit encryption",
            )


def db_monitoring_interval(descriptors):
    for instance in _of_kind(descriptors, Kind.DB_INSTANCE):
        interval = instance.attributes.get("MonitoringInterval", 0)
        if interval not in DB_MONITORING_INTERVALS:
            yield Violation(
                "db_monitoring_interval", instance.address,
                f"monitoring interval {interval} is not one of {DB_MONITORING_INTERVALS}",
            )


RULES = (
    broker_count_multiple_of_zones,
    listener_requires_target_group,
    https_listener_has_certificate,
    key_deletion_window,
    alias_name_format,
    log_retention_allowed,
    audit_logs_require_fine_grained_access,
    search_instances_span_zones,
    node_group_scaling_bounds,
    cache_failover_needs_replica,
    cache_auth_token_needs_transit_encryption,
    db_monitoring_interval,
)


def validate(descriptors, rules=RULES):
    """Run every rule and return all violations found."""
    violations = []
    for rule in rules:
        violations.extend(rule(descriptors))
    logger.debug("validation found %d violation(s)", len(violations))
    return violations
