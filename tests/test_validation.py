#!/usr/bin/env python3
"""Tests for the structural invariant rules."""

from tiercompose_model import Handle, Kind, ResourceDescriptor
from tiercompose_validation import RULES, Violation, validate


def kafka(brokers, subnets):
    return ResourceDescriptor(Kind.KAFKA_CLUSTER, "events", {
        "NumberOfBrokerNodes": brokers,
        "BrokerNodeGroupInfo": {"ClientSubnets": [f"subnet-{i}" for i in range(subnets)]},
    })


def key(window):
    return ResourceDescriptor(Kind.KEY, "data", {"PendingWindowInDays": window})


def rules_of(violations):
    return {violation.rule for violation in violations}


class TestValidate:
    """Every rule runs and every violation is collected."""

    def test_clean_descriptors(self):
        assert validate([kafka(3, 3), key(30)]) == []

    def test_all_violations_reported_in_one_call(self):
        """Broker spread and deletion window both fail in the same pass."""
        violations = validate([kafka(4, 3), key(45)])

        assert rules_of(violations) == {"broker_count_multiple_of_zones", "key_deletion_window"}
        assert {violation.address for violation in violations} == {"KafkaCluster.events", "Key.data"}

    def test_rules_are_order_insensitive(self):
        descriptors = [kafka(4, 3), key(3)]
        forward = validate(descriptors, RULES)
        backward = validate(descriptors, tuple(reversed(RULES)))
        assert sorted(map(str, forward)) == sorted(map(str, backward))

    def test_violation_str(self):
        violation = Violation("rule", "Key.data", "bad")
        assert str(violation) == "rule: Key.data: bad"
        assert str(Violation("rule", None, "bad")) == "rule: bad"


class TestRules:
    """Individual rule behaviour."""

    def test_broker_count_without_subnets(self):
        assert rules_of(validate([kafka(3, 0)])) == {"broker_count_multiple_of_zones"}

    def test_forwarding_listener_needs_target_group(self):
        listener = ResourceDescriptor(Kind.LISTENER, "web-http", {
            "Protocol": "HTTP",
            "DefaultActions": [{"Type": "forward", "TargetGroupArn": None}],
        })
        assert rules_of(validate([listener])) == {"listener_requires_target_group"}

    def test_target_group_of_another_load_balancer_does_not_count(self):
        """Only the listener's own linked target satisfies the rule."""
        orphan = ResourceDescriptor(Kind.LISTENER, "api-http", {
            "Protocol": "HTTP",
            "DefaultActions": [{"Type": "forward", "TargetGroupArn": None}],
        })
        linked = ResourceDescriptor(Kind.LISTENER, "web-http", {
            "Protocol": "HTTP",
            "DefaultActions": [{"Type": "forward", "TargetGroupArn": Handle(Kind.TARGET_GROUP, "web-app")}],
        })
        target_group = ResourceDescriptor(Kind.TARGET_GROUP, "web-app", {"Port": 8080})

        violations = validate([orphan, linked, target_group])
        assert [violation.address for violation in violations] == ["Listener.api-http"]

    def test_forward_config_needs_no_target_group_arn(self):
        listener = ResourceDescriptor(Kind.LISTENER, "web-http", {
            "Protocol": "HTTP",
            "DefaultActions": [{"Type": "forward", "ForwardConfig": {"TargetGroups": [{"TargetGroupArn": "arn"}]}}],
        })
        assert validate([listener]) == []

    def test_redirect_listener_needs_no_target_group(self):
        listener = ResourceDescriptor(Kind.LISTENER, "web-http", {
            "Protocol": "HTTP",
            "DefaultActions": [{"Type": "redirect", "RedirectConfig": {"Port": "443"}}],
        })
        assert validate([listener]) == []

    def test_https_listener_needs_certificate(self):
        listener = ResourceDescriptor(Kind.LISTENER, "web-https", {"Protocol": "HTTPS", "DefaultActions": []})
        assert rules_of(validate([listener])) == {"https_listener_has_certificate"}

    def test_key_deletion_window_bounds(self):
        assert validate([key(7)]) == []
        assert validate([key(30)]) == []
        assert rules_of(validate([key(6)])) == {"key_deletion_window"}

    def test_alias_name_format(self):
        good = ResourceDescriptor(Kind.ALIAS, "data", {"AliasName": "alias/prod-data"})
        reserved = ResourceDescriptor(Kind.ALIAS, "aws", {"AliasName": "alias/aws/s3"})
        bare = ResourceDescriptor(Kind.ALIAS, "bare", {"AliasName": "prod-data"})

        violations = validate([good, reserved, bare])
        assert {violation.address for violation in violations} == {"Alias.aws", "Alias.bare"}

    def test_log_retention(self):
        allowed = ResourceDescriptor(Kind.LOG_GROUP, "a", {"RetentionInDays": 90})
        rejected = ResourceDescriptor(Kind.LOG_GROUP, "b", {"RetentionInDays": 42})
        assert [violation.address for violation in validate([allowed, rejected])] == ["LogGroup.b"]

    def test_audit_logs_need_fine_grained_access(self):
        domain = ResourceDescriptor(Kind.SEARCH_DOMAIN, "logs", {
            "LogPublishingOptions": {"AUDIT_LOGS": {"Enabled": True}},
        })
        assert rules_of(validate([domain])) == {"audit_logs_require_fine_grained_access"}

    def test_search_instances_span_zones(self):
        domain = ResourceDescriptor(Kind.SEARCH_DOMAIN, "logs", {
            "ClusterConfig": {
                "InstanceCount": 3,
                "ZoneAwarenessEnabled": True,
                "ZoneAwarenessConfig": {"AvailabilityZoneCount": 2},
            },
        })
        assert rules_of(validate([domain])) == {"search_instances_span_zones"}

    def test_node_group_scaling_bounds(self):
        group = ResourceDescriptor(Kind.NODE_GROUP, "general", {
            "ScalingConfig": {"MinSize": 3, "DesiredSize": 2, "MaxSize": 5},
        })
        assert rules_of(validate([group])) == {"node_group_scaling_bounds"}

    def test_cache_rules(self):
        group = ResourceDescriptor(Kind.CACHE_REPLICATION_GROUP, "sessions", {
            "AutomaticFailoverEnabled": True,
            "NumCacheClusters": 1,
            "AuthToken": "secret-token-value",
            "TransitEncryptionEnabled": False,
        })
        assert rules_of(validate([group])) == {
            "cache_failover_needs_replica", "cache_auth_token_needs_transit_encryption",
        }

    def test_db_monitoring_interval(self):
        instance = ResourceDescriptor(Kind.DB_INSTANCE, "app", {"MonitoringInterval": 7})
        assert rules_of(validate([instance])) == {"db_monitoring_interval"}
