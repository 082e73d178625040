"""Command modules; each exposes `register(subparsers)`."""

from . import agent, app, dispatch, egress, ingress, number, perf, project, replay, room, sip, token

COMMAND_MODULES = [project, app, agent, room, token, dispatch, sip, number, replay, ingress, egress, perf]

__all__ = ["COMMAND_MODULES"]
