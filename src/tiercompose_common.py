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

"""Building blocks shared by the service modules.

Security groups and their rules, log groups, IAM roles with policy
attachments and KMS key references recur in almost every service, so the
service modules compose them from here.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple

from tiercompose_attributes import (
    REQUIRED, defaults_for, join_name, merge_tags, name_limit, resolve,
    tags_with_name, truncate_name,
)
from tiercompose_conditionals import ZERO_OR_MANY, build
from tiercompose_model import Kind, Reference, ResourceDescriptor


@dataclass(frozen=True)
class Environment:
    """Settings every module of one environment shares."""

    name: str
    vpc_id: str
    private_subnet_ids: Tuple[str, ...]
    public_subnet_ids: Tuple[str, ...] = ()
    tags: Dict[str, str] = field(default_factory=dict)

    def resource_name(self, kind, *parts, table=None, separator="-"):
        """<env>-<parts...> cut to the kind's name length limit."""
        return truncate_name(
            join_name(self.name, *parts, separator=separator),
            name_limit(kind, table),
            separator,
        )

    def component_tags(self, component):
        return merge_tags(self.tags, {"Component": component}, self.name)


def tag_map(environment, component, overrides, name):
    return merge_tags(environment.component_tags(component), overrides, name)


def kms_key_reference(settings, output="arn"):
    """Reference to a KMS key of this environment, a literal ARN, or None."""
    if settings.get("kms_key"):
        return Reference(Kind.KEY, settings["kms_key"], output, required=True)
    return settings.get("kms_key_arn")


def security_group(key, description, environment, component, tags=None, table=None):
    name = environment.resource_name(Kind.SECURITY_GROUP, key, "sg", table=table)
    return ResourceDescriptor(Kind.SECURITY_GROUP, key, resolve(
        {"GroupDescription": description, "VpcId": REQUIRED},
        {"GroupName": name, "VpcId": environment.vpc_id},
        {"Tags": lambda attributes: tag_map(environment, component, tags, name)},
        key=f"{Kind.SECURITY_GROUP.value}.{key}",
    ))


def ingress_rules(group_key, port, cidr_blocks=(), source_group_ids=(), protocol="tcp",
                  to_port=None, description=""):
    """One ingress descriptor per CIDR block and per source security group."""
    sources = [("CidrIp", cidr) for cidr in cidr_blocks]
    sources += [("SourceSecurityGroupId", group_id) for group_id in source_group_ids]

    def rule(index, source):
        source_field, value = source
        attributes = {
            "GroupId": Reference(Kind.SECURITY_GROUP, group_key, "id", required=True),
            "IpProtocol": protocol,
            source_field: value,
        }
        if protocol != "-1":
            attributes["FromPort"] = port
            attributes["ToPort"] = to_port if to_port is not None else port
        if description:
            attributes["Description"] = description
        return ResourceDescriptor(
            Kind.SECURITY_GROUP_INGRESS, f"{group_key}-{port}-{index}", attributes
        )

    return build(bool(sources), rule, ZERO_OR_MANY, sources)


def log_group(key, log_group_name, environment, component, retention=None, kms_key=None,
              tags=None, table=None):
    base = defaults_for(Kind.LOG_GROUP, table)
    base["LogGroupName"] = REQUIRED
    return ResourceDescriptor(Kind.LOG_GROUP, key, resolve(
        base,
        {
            "LogGroupName": truncate_name(log_group_name, name_limit(Kind.LOG_GROUP, table), "/"),
            "RetentionInDays": retention,
            "KmsKeyId": kms_key,
        },
        {"Tags": tags_with_name(environment.component_tags(component), tags, "LogGroupName")},
        key=f"{Kind.LOG_GROUP.value}.{key}",
    ))


def assume_role_policy(service):
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Service": service},
            "Action": "sts:AssumeRole",
        }],
    }


def role(key, service, environment, component, tags=None, table=None):
    name = environment.resource_name(Kind.ROLE, key, table=table)
    return ResourceDescriptor(Kind.ROLE, key, resolve(
        {"AssumeRolePolicyDocument": assume_role_policy(service)},
        {"RoleName": name},
        {"Tags": lambda attributes: tag_map(environment, component, tags, name)},
    ))


def policy_attachment(role_key, attachment_key, policy_arn):
    return ResourceDescriptor(Kind.POLICY_ATTACHMENT, f"{role_key}-{attachment_key}", {
        "Role": Reference(Kind.ROLE, role_key, "name", required=True),
        "PolicyArn": policy_arn,
    })


def policy_name(policy_arn):
    return policy_arn.rsplit("/", 1)[-1]
