# -*- coding: utf-8 -*-
"""
清单渲染

生成灰度发布所需的全部Kubernetes对象：
命名空间、stable/canary两个Deployment与Service，以及stable/canary一对Ingress。
"""
from typing import Any, Dict, List

import yaml

from kanary.models import RolloutPlan


def _backend_name(plan: RolloutPlan, revision: str) -> str:
    return f"{plan.service}-{revision}"


def _deployment(
    plan: RolloutPlan, revision: str, image: str, replicas: int, port: int
) -> Dict[str, Any]:
    labels = {"app": plan.service, "revision": revision}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": _backend_name(plan, revision),
            "namespace": plan.namespace,
            "labels": labels,
        },
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": plan.service,
                            "image": image,
                            "ports": [{"containerPort": port}],
                        }
                    ]
                },
            },
        },
    }


def _service(plan: RolloutPlan, revision: str, port: int) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": _backend_name(plan, revision),
            "namespace": plan.namespace,
            "labels": {"app": plan.service},
        },
        "spec": {
            "selector": {"app": plan.service, "revision": revision},
            "ports": [{"port": 80, "targetPort": port, "protocol": "TCP"}],
        },
    }


def _ingress(
    plan: RolloutPlan,
    name: str,
    revision: str,
    host: str,
    annotations: Dict[str, str],
) -> Dict[str, Any]:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": name,
            "namespace": plan.namespace,
            "annotations": annotations,
        },
        "spec": {
            "ingressClassName": "nginx",
            "rules": [
                {
                    "host": host,
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {
                                    "service": {
                                        "name": _backend_name(plan, revision),
                                        "port": {"number": 80},
                                    }
                                },
                            }
                        ]
                    },
                }
            ],
        },
    }


def render_manifests(
    plan: RolloutPlan,
    host: str,
    stable_image: str,
    canary_image: str,
    port: int = 8080,
    replicas: int = 1,
) -> List[Dict[str, Any]]:
    """
    渲染灰度发布的全部对象

    参数:
        plan: 发布计划（决定名称、命名空间与初始权重）
        host: Ingress 主机名
        stable_image: stable 版本镜像
        canary_image: canary 版本镜像
        port: 容器端口
        replicas: 每个Deployment的副本数

    返回:
        Kubernetes 对象字典列表
    """
    weight = plan.initial_weight
    return [
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": plan.namespace},
        },
        _deployment(plan, plan.stable_revision, stable_image, replicas, port),
        _deployment(plan, plan.canary_revision, canary_image, replicas, port),
        _service(plan, plan.stable_revision, port),
        _service(plan, plan.canary_revision, port),
        _ingress(plan, plan.stable_ingress, plan.stable_revision, host, {}),
        _ingress(
            plan,
            plan.canary_ingress,
            plan.canary_revision,
            host,
            {
                "nginx.ingress.kubernetes.io/canary": "true",
                "nginx.ingress.kubernetes.io/canary-weight": str(weight),
                "nginx.ingress.kubernetes.io/canary-weight-total": "100",
            },
        ),
    ]


def dump_manifests(documents: List[Dict[str, Any]]) -> str:
    """输出为多文档YAML"""
    return yaml.safe_dump_all(documents, sort_keys=False, allow_unicode=True)
