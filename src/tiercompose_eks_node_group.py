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

"""EKS managed node groups with optional IAM role and security group.

When ``create_iam_role`` is off the caller must supply ``node_role_arn``;
policy attachments only exist alongside a created role.
"""

from tiercompose_attributes import REQUIRED, defaults_for, load_defaults, resolve
from tiercompose_common import (
    ingress_rules, policy_attachment, policy_name, role, security_group, tag_map,
)
from tiercompose_conditionals import ZERO_OR_MANY, build, compose_groups
from tiercompose_model import Kind, Reference, ResourceDescriptor, output

COMPONENT = "EKS"

WORKER_POLICY_ARNS = (
    "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy",
    "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy",
    "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly",
)
SSM_POLICY_ARN = "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"


def scaling_config(settings, table):
    scaling = defaults_for(Kind.NODE_GROUP, table).get("ScalingConfig", {})
    for field, setting in (("DesiredSize", "desired_size"), ("MinSize", "min_size"), ("MaxSize", "max_size")):
        if settings.get(setting) is not None:
            scaling[field] = settings[setting]
    return scaling


def taints(settings):
    return [
        {"Key": taint["key"], "Value": taint.get("value", ""), "Effect": taint["effect"]}
        for taint in settings.get("taints") or []
    ] or None


def create_node_group(key, settings, environment, table=None):
    """Descriptors for one managed node group."""
    table = table if table is not None else load_defaults()
    tags = settings.get("tags")
    create_iam_role = settings.get("create_iam_role", True)
    create_security_group = settings.get("create_security_group", False)
    cluster_security_group_id = settings.get("cluster_security_group_id")
    role_key = f"eks-{key}-node"
    group_key = f"eks-{key}-node"

    if create_iam_role:
        node_role = Reference(Kind.ROLE, role_key, "arn", required=True)
    else:
        node_role = settings.get("node_role_arn")

    base = defaults_for(Kind.NODE_GROUP, table)
    base.update({"ClusterName": REQUIRED, "NodeRole": REQUIRED, "Subnets": REQUIRED})
    node_group_name = environment.resource_name(Kind.NODE_GROUP, key, table=table)
    node_group = ResourceDescriptor(Kind.NODE_GROUP, key, resolve(
        base,
        {
            "ClusterName": settings.get("cluster_name"),
            "NodegroupName": node_group_name,
            "NodeRole": node_role,
            "Subnets": list(settings.get("subnet_ids") or environment.private_subnet_ids) or None,
            "InstanceTypes": settings.get("instance_types"),
            "AmiType": settings.get("ami_type"),
            "CapacityType": settings.get("capacity_type"),
            "DiskSize": settings.get("disk_size"),
            "ScalingConfig": scaling_config(settings, table),
            "UpdateConfig": (
                {"MaxUnavailable": settings["max_unavailable"]}
                if settings.get("max_unavailable") else None
            ),
            "Labels": settings.get("labels") or None,
            "Taints": taints(settings),
        },
        {"Tags": lambda attributes: tag_map(environment, COMPONENT, tags, node_group_name)},
        key=f"{Kind.NODE_GROUP.value}.{key}",
    ))

    policy_arns = list(WORKER_POLICY_ARNS)
    additional = list(settings.get("additional_policy_arns") or [])

    def node_ingress():
        from_cluster = [cluster_security_group_id] if cluster_security_group_id else []
        return compose_groups(
            ingress_rules(
                group_key, 0, source_group_ids=[Reference(Kind.SECURITY_GROUP, group_key, "id")],
                protocol="-1", description="Node to node",
            ),
            ingress_rules(
                group_key, 1025, source_group_ids=from_cluster, to_port=65535,
                description="Control plane to kubelets and pods",
            ),
            ingress_rules(
                group_key, 443, source_group_ids=from_cluster,
                description="Control plane to extension API servers",
            ),
        )

    return compose_groups(
        [node_group],
        build(create_iam_role, lambda: role(role_key, "ec2.amazonaws.com", environment, COMPONENT, tags, table)),
        build(create_iam_role, lambda _, arn: policy_attachment(role_key, policy_name(arn), arn),
              ZERO_OR_MANY, policy_arns),
        build(create_iam_role and settings.get("enable_ssm", True),
              lambda: policy_attachment(role_key, policy_name(SSM_POLICY_ARN), SSM_POLICY_ARN)),
        build(create_iam_role, lambda index, arn: policy_attachment(role_key, f"additional-{index}", arn),
              ZERO_OR_MANY, additional),
        build(create_security_group, lambda: security_group(
            group_key, f"EKS node group {key}", environment, COMPONENT, tags, table,
        )),
        *build(create_security_group, node_ingress),
        build(create_security_group, lambda: ResourceDescriptor(Kind.SECURITY_GROUP_EGRESS, f"{group_key}-all", {
            "GroupId": Reference(Kind.SECURITY_GROUP, group_key, "id", required=True),
            "IpProtocol": "-1",
            "CidrIp": "0.0.0.0/0",
            "Description": "Allow all outbound",
        })),
        [
            output(f"eks-{key}-node-group-arn", Reference(Kind.NODE_GROUP, key)),
            output(f"eks-{key}-node-role-arn",
                   Reference(Kind.ROLE, role_key, fallback=settings.get("node_role_arn"))),
            output(f"eks-{key}-node-security-group-id", Reference(Kind.SECURITY_GROUP, group_key, "id")),
        ],
    )


def create_node_groups(settings, environment, table=None):
    """One node group per entry of the ``eks_node_groups`` mapping."""
    table = table if table is not None else load_defaults()
    groups = build(
        True,
        lambda key, group: create_node_group(key, group or {}, environment, table),
        ZERO_OR_MANY,
        settings or {},
    )
    return compose_groups(*groups)


if __name__ == "__main__":
    from tiercompose_environment import render_module
    print(render_module(create_node_groups, "eks_node_groups"))
