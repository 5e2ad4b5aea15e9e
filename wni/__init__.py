"""
wni - Windows node installer bookkeeping.

Tracks the cloud resources created for Windows worker nodes of an
OpenShift cluster and reconciles the security group rules those nodes need.
"""

__version__ = "0.1.0"
