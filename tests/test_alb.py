#!/usr/bin/env python3
"""Tests for the application load balancer module."""

import pytest

from tiercompose_alb import create_alb
from tiercompose_errors import DanglingRequiredReference, InvalidAttribute
from tiercompose_model import Handle, Kind
from tiercompose_references import link
from tiercompose_validation import validate

CERTIFICATE_ARN = "arn:aws:acm:us-east-1:123456789012:certificate/abc"


def of_kind(descriptors, kind):
    return [descriptor for descriptor in descriptors if descriptor.kind == kind]


def action_types(listener):
    return [action["Type"] for action in listener.attributes["DefaultActions"]]


def output_value(descriptors, key):
    return next(d for d in descriptors if d.kind == Kind.OUTPUT and d.key == key).attributes["Value"]


class TestAlbWithoutCertificate:
    """HTTP-only load balancer forwarding to the default target group."""

    @pytest.fixture
    def descriptors(self, environment, defaults):
        settings = {"certificate_arn": None, "target_groups": {"app": {"port": 8080}}}
        return link(create_alb(settings, environment, defaults))

    def test_single_forward_listener(self, descriptors):
        listeners = of_kind(descriptors, Kind.LISTENER)

        assert len(listeners) == 1
        assert action_types(listeners[0]) == ["forward"]
        assert listeners[0].attributes["Protocol"] == "HTTP"

    def test_forwards_to_app_target_group(self, descriptors):
        listener = of_kind(descriptors, Kind.LISTENER)[0]
        target = listener.attributes["DefaultActions"][0]["TargetGroupArn"]
        assert target == Handle(Kind.TARGET_GROUP, "alb-app", "arn")

    def test_only_port_80_opened(self, descriptors):
        ports = {rule.attributes["FromPort"] for rule in of_kind(descriptors, Kind.SECURITY_GROUP_INGRESS)}
        assert ports == {80}

    def test_https_listener_output_is_null(self, descriptors):
        assert output_value(descriptors, "alb-https-listener-arn") is None

    def test_placed_in_public_subnets(self, descriptors, environment):
        load_balancer = of_kind(descriptors, Kind.LOAD_BALANCER)[0]
        assert load_balancer.attributes["Subnets"] == list(environment.public_subnet_ids)
        assert load_balancer.attributes["Scheme"] == "internet-facing"

    def test_no_violations(self, descriptors):
        assert validate(descriptors) == []


class TestAlbWithCertificate:
    """Port 80 redirects, HTTPS forwards."""

    @pytest.fixture
    def descriptors(self, environment, defaults):
        settings = {
            "name": "web",
            "certificate_arn": CERTIFICATE_ARN,
            "target_groups": {"app": {"port": 8080}},
        }
        return link(create_alb(settings, environment, defaults))

    def test_redirect_and_https_listeners(self, descriptors):
        listeners = {listener.key: listener for listener in of_kind(descriptors, Kind.LISTENER)}

        assert set(listeners) == {"web-http", "web-https"}
        assert action_types(listeners["web-http"]) == ["redirect"]
        assert action_types(listeners["web-https"]) == ["forward"]

    def test_redirect_targets_https(self, descriptors):
        listener = next(d for d in of_kind(descriptors, Kind.LISTENER) if d.key == "web-http")
        redirect = listener.attributes["DefaultActions"][0]["RedirectConfig"]
        assert redirect == {"Port": "443", "Protocol": "HTTPS", "StatusCode": "HTTP_301"}

    def test_https_listener_carries_certificate(self, descriptors, defaults):
        listener = next(d for d in of_kind(descriptors, Kind.LISTENER) if d.key == "web-https")

        assert listener.attributes["Certificates"] == [{"CertificateArn": CERTIFICATE_ARN}]
        assert listener.attributes["SslPolicy"] == defaults["defaults"]["Listener"]["SslPolicy"]

    def test_ports_80_and_443_opened(self, descriptors):
        ports = {rule.attributes["FromPort"] for rule in of_kind(descriptors, Kind.SECURITY_GROUP_INGRESS)}
        assert ports == {80, 443}

    def test_https_listener_output(self, descriptors):
        assert output_value(descriptors, "web-https-listener-arn") == Handle(Kind.LISTENER, "web-https", "arn")


class TestAlbSelection:
    """Default target group selection and failure modes."""

    def test_listeners_mutually_exclusive(self, environment, defaults):
        for certificate_arn in (None, "", CERTIFICATE_ARN):
            settings = {"certificate_arn": certificate_arn, "target_groups": {"app": {"port": 8080}}}
            listeners = of_kind(create_alb(settings, environment, defaults), Kind.LISTENER)
            http = [listener for listener in listeners if listener.attributes["Port"] == 80]
            assert len(http) == 1

    def test_false_certificate_means_http_only(self, environment, defaults):
        settings = {"certificate_arn": False, "target_groups": {"app": {"port": 8080}}}
        listeners = of_kind(create_alb(settings, environment, defaults), Kind.LISTENER)

        assert [listener.key for listener in listeners] == ["alb-http"]
        assert action_types(listeners[0]) == ["forward"]

    def test_non_string_target_group_keys(self, environment, defaults):
        """YAML may parse target group names as numbers."""
        settings = {"target_groups": {8080: {"port": 8080}, "app": {"port": 9090}}}
        descriptors = link(create_alb(settings, environment, defaults))
        listener = of_kind(descriptors, Kind.LISTENER)[0]

        assert {group.key for group in of_kind(descriptors, Kind.TARGET_GROUP)} == {"alb-8080", "alb-app"}
        assert listener.attributes["DefaultActions"][0]["TargetGroupArn"].key == "alb-8080"

    def test_explicit_default_target_group(self, environment, defaults):
        settings = {
            "default_target_group": "zeta",
            "target_groups": {"alpha": {"port": 8080}, "zeta": {"port": 9090}},
        }
        listener = of_kind(link(create_alb(settings, environment, defaults)), Kind.LISTENER)[0]
        assert listener.attributes["DefaultActions"][0]["TargetGroupArn"].key == "alb-zeta"

    def test_lexicographic_default_target_group(self, environment, defaults):
        settings = {"target_groups": {"zeta": {"port": 9090}, "alpha": {"port": 8080}}}
        listener = of_kind(link(create_alb(settings, environment, defaults)), Kind.LISTENER)[0]
        assert listener.attributes["DefaultActions"][0]["TargetGroupArn"].key == "alb-alpha"

    def test_https_without_target_groups_is_unsatisfiable(self, environment, defaults):
        settings = {"certificate_arn": CERTIFICATE_ARN, "target_groups": {}}
        with pytest.raises(DanglingRequiredReference):
            link(create_alb(settings, environment, defaults))

    def test_http_without_target_groups_is_a_violation(self, environment, defaults):
        descriptors = link(create_alb({"target_groups": {}}, environment, defaults))
        assert [v.rule for v in validate(descriptors)] == ["listener_requires_target_group"]

    def test_missing_subnets(self, private_only_environment, defaults):
        with pytest.raises(InvalidAttribute) as excinfo:
            create_alb({"target_groups": {"app": {"port": 8080}}}, private_only_environment, defaults)
        assert excinfo.value.fields == ["Subnets"]

    def test_internal_uses_private_subnets(self, private_only_environment, defaults):
        settings = {"internal": True, "target_groups": {"app": {"port": 8080}}}
        load_balancer = of_kind(create_alb(settings, private_only_environment, defaults), Kind.LOAD_BALANCER)[0]
        assert load_balancer.attributes["Scheme"] == "internal"
        assert load_balancer.attributes["Subnets"] == ["subnet-a1", "subnet-a2"]

    def test_target_group_port_required(self, environment, defaults):
        with pytest.raises(InvalidAttribute) as excinfo:
            create_alb({"target_groups": {"app": {}}}, environment, defaults)
        assert excinfo.value.fields == ["Port"]


class TestAlbOptions:
    def test_web_acl_association(self, environment, defaults):
        settings = {"web_acl_arn": "arn:aws:wafv2:acl", "target_groups": {"app": {"port": 8080}}}
        associations = of_kind(link(create_alb(settings, environment, defaults)), Kind.WEB_ACL_ASSOCIATION)

        assert len(associations) == 1
        assert associations[0].attributes["ResourceArn"] == Handle(Kind.LOAD_BALANCER, "alb", "arn")

    def test_access_logs_attributes(self, environment, defaults):
        settings = {
            "access_logs_bucket": "logs-bucket",
            "access_logs_prefix": "web",
            "target_groups": {"app": {"port": 8080}},
        }
        load_balancer = of_kind(create_alb(settings, environment, defaults), Kind.LOAD_BALANCER)[0]
        attributes = {a["Key"]: a["Value"] for a in load_balancer.attributes["LoadBalancerAttributes"]}

        assert attributes["access_logs.s3.enabled"] == "true"
        assert attributes["access_logs.s3.bucket"] == "logs-bucket"
        assert attributes["access_logs.s3.prefix"] == "web"

    def test_no_security_group(self, environment, defaults):
        settings = {
            "create_security_group": False,
            "security_group_ids": ["sg-existing"],
            "target_groups": {"app": {"port": 8080}},
        }
        descriptors = create_alb(settings, environment, defaults)

        assert of_kind(descriptors, Kind.SECURITY_GROUP) == []
        assert of_kind(descriptors, Kind.SECURITY_GROUP_INGRESS) == []
        assert of_kind(descriptors, Kind.LOAD_BALANCER)[0].attributes["SecurityGroups"] == ["sg-existing"]

    def test_target_group_tags_end_with_name(self, environment, defaults):
        settings = {"target_groups": {"app": {"port": 8080}}}
        group = of_kind(create_alb(settings, environment, defaults), Kind.TARGET_GROUP)[0]
        tags = group.attributes["Tags"]

        assert tags["Env"] == "prod"
        assert tags["Component"] == "ALB"
        assert list(tags)[-1] == "Name"
        assert tags["Name"] == "prod-alb-app"

    def test_composition_is_idempotent(self, environment, defaults):
        settings = {"certificate_arn": CERTIFICATE_ARN, "target_groups": {"app": {"port": 8080}}}
        assert create_alb(settings, environment, defaults) == create_alb(settings, environment, defaults)
