"""Roll out Compose stacks to Docker Swarm with content-addressed secrets and configs."""

__version__ = "0.1.0"
