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

"""Application load balancer: target groups and certificate-driven listeners.

Without a certificate the load balancer gets a single HTTP listener that
forwards to the default target group. With a certificate, port 80 redirects
to 443 and an HTTPS listener forwards instead.
"""

import logging

from tiercompose_attributes import (
    REQUIRED, defaults_for, load_defaults, resolve, tags_with_name,
)
from tiercompose_common import ingress_rules, security_group, tag_map
from tiercompose_conditionals import ZERO_OR_MANY, Branch, build, compose_groups, one_of
from tiercompose_model import Kind, Reference, ResourceDescriptor, output

logger = logging.getLogger(__name__)

COMPONENT = "ALB"


def declared_target_groups(settings):
    """Target group settings keyed by name; YAML may give non-string keys."""
    return {str(key): group for key, group in (settings.get("target_groups") or {}).items()}


def default_target_group_reference(name, settings, required=True):
    """Reference to the listener's forward target.

    An explicit ``default_target_group`` wins; otherwise the lexicographically
    first declared target group key is used.
    """
    target_groups = declared_target_groups(settings)
    explicit = settings.get("default_target_group")
    if explicit is not None and explicit != "":
        return Reference(Kind.TARGET_GROUP, f"{name}-{explicit}", required=required)
    if len(target_groups) > 1:
        logger.warning(
            "alb %s: no default_target_group set, using %r (first key in lexicographic order)",
            name, sorted(target_groups)[0],
        )
    return Reference.first_of(
        Kind.TARGET_GROUP, [f"{name}-{key}" for key in target_groups], required=required
    )


def load_balancer_attributes(settings, service_defaults):
    attributes = [
        {"Key": "idle_timeout.timeout_seconds",
         "Value": str(settings.get("idle_timeout") or service_defaults["idle_timeout"])},
        {"Key": "routing.http.drop_invalid_header_fields.enabled", "Value": "true"},
    ]
    bucket = settings.get("access_logs_bucket")
    attributes += build(bool(bucket), lambda: {"Key": "access_logs.s3.enabled", "Value": "true"})
    attributes += build(bool(bucket), lambda: {"Key": "access_logs.s3.bucket", "Value": bucket})
    attributes += build(
        bool(bucket and settings.get("access_logs_prefix")),
        lambda: {"Key": "access_logs.s3.prefix", "Value": settings["access_logs_prefix"]},
    )
    return attributes


def create_alb(settings, environment, table=None):
    """Descriptors for one application load balancer."""
    table = table if table is not None else load_defaults()
    service_defaults = table["services"]["alb"]
    name = settings.get("name", "alb")
    internal = bool(settings.get("internal", False))
    certificate_arn = settings.get("certificate_arn")
    target_groups = declared_target_groups(settings)
    tags = settings.get("tags")

    has_certificate = bool(certificate_arn)
    no_certificate = not has_certificate
    create_security_group = settings.get("create_security_group", True)
    security_group_key = f"alb-{name}"

    subnets = environment.private_subnet_ids if internal else environment.public_subnet_ids

    security_groups = [
        Reference(Kind.SECURITY_GROUP, security_group_key, "id", required=True)
    ] if create_security_group else []
    security_groups += list(settings.get("security_group_ids") or [])

    lb_name = environment.resource_name(Kind.LOAD_BALANCER, name, table=table)
    base = defaults_for(Kind.LOAD_BALANCER, table)
    base["Subnets"] = REQUIRED
    load_balancer = ResourceDescriptor(Kind.LOAD_BALANCER, name, resolve(
        base,
        {
            "Name": lb_name,
            "Scheme": "internal" if internal else "internet-facing",
            "Subnets": list(subnets) or None,
            "SecurityGroups": security_groups or None,
            "LoadBalancerAttributes": load_balancer_attributes(settings, service_defaults),
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, lb_name)},
        key=f"{Kind.LOAD_BALANCER.value}.{name}",
    ))

    def target_group(key, group):
        group = group or {}
        health_check = group.get("health_check") or {}
        base = defaults_for(Kind.TARGET_GROUP, table)
        base.update({"Port": REQUIRED, "VpcId": REQUIRED})
        overrides = {
            "Name": environment.resource_name(Kind.TARGET_GROUP, name, key, table=table),
            "Port": group.get("port"),
            "Protocol": group.get("protocol"),
            "TargetType": group.get("target_type"),
            "VpcId": environment.vpc_id,
            "HealthCheckPath": health_check.get("path"),
            "HealthCheckProtocol": health_check.get("protocol"),
            "HealthCheckIntervalSeconds": health_check.get("interval"),
            "HealthCheckTimeoutSeconds": health_check.get("timeout"),
            "HealthyThresholdCount": health_check.get("healthy_threshold"),
            "UnhealthyThresholdCount": health_check.get("unhealthy_threshold"),
            "TargetGroupAttributes": [{
                "Key": "deregistration_delay.timeout_seconds",
                "Value": str(group.get("deregistration_delay") or service_defaults["deregistration_delay"]),
            }],
        }
        if health_check.get("matcher"):
            overrides["Matcher"] = {"HttpCode": str(health_check["matcher"])}
        return ResourceDescriptor(Kind.TARGET_GROUP, f"{name}-{key}", resolve(
            base, overrides,
            {"Tags": tags_with_name(environment.component_tags(COMPONENT), tags, "Name")},
            key=f"{Kind.TARGET_GROUP.value}.{name}-{key}",
        ))

    def forward_action(required):
        return {
            "Type": "forward",
            "TargetGroupArn": default_target_group_reference(name, settings, required),
        }

    load_balancer_arn = Reference(Kind.LOAD_BALANCER, name, required=True)

    def http_forward_listener():
        return ResourceDescriptor(Kind.LISTENER, f"{name}-http", {
            "LoadBalancerArn": load_balancer_arn,
            "Port": 80,
            "Protocol": "HTTP",
            "DefaultActions": [forward_action(required=False)],
        })

    def http_redirect_listener():
        return ResourceDescriptor(Kind.LISTENER, f"{name}-http", {
            "LoadBalancerArn": load_balancer_arn,
            "Port": 80,
            "Protocol": "HTTP",
            "DefaultActions": [{
                "Type": "redirect",
                "RedirectConfig": {"Port": "443", "Protocol": "HTTPS", "StatusCode": "HTTP_301"},
            }],
        })

    def https_listener():
        base = defaults_for(Kind.LISTENER, table)
        return ResourceDescriptor(Kind.LISTENER, f"{name}-https", resolve(base, {
            "SslPolicy": settings.get("ssl_policy"),
            "LoadBalancerArn": load_balancer_arn,
            "Port": 443,
            "Protocol": "HTTPS",
            "Certificates": [{"CertificateArn": certificate_arn}],
            "DefaultActions": [forward_action(required=True)],
        }))

    web_acl_arn = settings.get("web_acl_arn")
    # 443 is only opened when the HTTPS listener exists
    ingress_ports = [80] + build(has_certificate, lambda: 443)

    return compose_groups(
        [load_balancer],
        build(True, target_group, ZERO_OR_MANY, target_groups),
        one_of(
            Branch(no_certificate, http_forward_listener, label="http-forward"),
            Branch(has_certificate, http_redirect_listener, label="http-redirect"),
        ),
        build(has_certificate, https_listener),
        build(bool(web_acl_arn), lambda: ResourceDescriptor(Kind.WEB_ACL_ASSOCIATION, name, {
            "ResourceArn": load_balancer_arn,
            "WebACLArn": web_acl_arn,
        })),
        build(create_security_group, lambda: security_group(
            security_group_key, f"Load balancer {name} listeners", environment, COMPONENT, tags, table,
        )),
        *build(create_security_group, lambda _, port: ingress_rules(
            security_group_key, port,
            settings.get("ingress_cidr_blocks") or service_defaults["ingress_cidr_blocks"],
            description="HTTPS from allowed networks" if port == 443 else "HTTP from allowed networks",
        ), ZERO_OR_MANY, ingress_ports),
        [
            output(f"{name}-alb-arn", Reference(Kind.LOAD_BALANCER, name), "Load balancer ARN"),
            output(f"{name}-alb-dns-name", Reference(Kind.LOAD_BALANCER, name, "dns_name"),
                   "Load balancer DNS name"),
            output(f"{name}-https-listener-arn", Reference(Kind.LISTENER, f"{name}-https"),
                   "HTTPS listener ARN, null without a certificate"),
        ],
    )


if __name__ == "__main__":
    from tiercompose_environment import render_module
    print(render_module(create_alb, "alb"))
