"""Kanary：基于NGINX Ingress canary权重的自动化灰度发布控制器"""

__version__ = "0.1.0"
