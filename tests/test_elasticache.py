#!/usr/bin/env python3
"""Tests for the ElastiCache module."""

import pytest

from tiercompose_elasticache import create_elasticache
from tiercompose_errors import InvalidAttribute
from tiercompose_model import Handle, Kind
from tiercompose_references import link
from tiercompose_validation import validate


def of_kind(descriptors, kind):
    return [descriptor for descriptor in descriptors if descriptor.kind == kind]


def replication_group(descriptors):
    return of_kind(descriptors, Kind.CACHE_REPLICATION_GROUP)[0]


class TestElastiCache:
    def test_defaults(self, environment, defaults):
        descriptors = link(create_elasticache({}, environment, defaults))
        group = replication_group(descriptors)

        assert group.attributes["ReplicationGroupId"] == "prod-cache"
        assert group.attributes["NumCacheClusters"] == 2
        assert group.attributes["CacheSubnetGroupName"] == Handle(Kind.CACHE_SUBNET_GROUP, "cache", "name")
        assert validate(descriptors) == []

    def test_identifier_is_lowercase_and_short(self, environment, defaults):
        group = replication_group(create_elasticache({"name": "Sessions-" + "x" * 50}, environment, defaults))
        identifier = group.attributes["ReplicationGroupId"]

        assert identifier == identifier.lower()
        assert len(identifier) <= 40

    def test_slow_log_disabled(self, environment, defaults):
        descriptors = link(create_elasticache({}, environment, defaults))

        assert of_kind(descriptors, Kind.LOG_GROUP) == []
        assert "LogDeliveryConfigurations" not in replication_group(descriptors).attributes

    def test_slow_log_enabled(self, environment, defaults):
        descriptors = link(create_elasticache({"name": "sessions", "slow_log_enabled": True}, environment, defaults))
        delivery = replication_group(descriptors).attributes["LogDeliveryConfigurations"]

        assert len(of_kind(descriptors, Kind.LOG_GROUP)) == 1
        assert delivery[0]["LogFormat"] == "json"
        assert delivery[0]["DestinationDetails"]["CloudWatchLogsDetails"]["LogGroup"] == Handle(
            Kind.LOG_GROUP, "elasticache-sessions-slow-log", "name"
        )

    def test_auth_token_without_transit_encryption(self, environment, defaults):
        settings = {"auth_token": "a-very-long-auth-token", "transit_encryption": False}
        descriptors = link(create_elasticache(settings, environment, defaults))
        assert [v.rule for v in validate(descriptors)] == ["cache_auth_token_needs_transit_encryption"]

    def test_failover_with_single_node(self, environment, defaults):
        descriptors = link(create_elasticache({"num_cache_clusters": 1}, environment, defaults))
        assert [v.rule for v in validate(descriptors)] == ["cache_failover_needs_replica"]

    def test_no_subnets(self, defaults):
        from tiercompose_common import Environment

        bare = Environment(name="prod", vpc_id="vpc-1", private_subnet_ids=())
        with pytest.raises(InvalidAttribute) as excinfo:
            create_elasticache({}, bare, defaults)
        assert excinfo.value.fields == ["SubnetIds"]
