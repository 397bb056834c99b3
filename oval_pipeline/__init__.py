"""
RHEL OVAL vulnerability pipeline.

Builds a vulnerability dataset from Red Hat OVAL advisories, caches it, and
matches host package inventory records against it, emitting one report line
per vulnerable package.
"""
__version__ = "0.1.0"
