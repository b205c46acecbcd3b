"""
Provision and tear down an OpenShift project for model serving.
"""

__version__ = "0.1.0"
