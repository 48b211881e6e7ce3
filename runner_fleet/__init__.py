"""Runner configuration resolution and bootstrap generation for autoscaling GitLab runners."""

__version__ = "0.1.0"
