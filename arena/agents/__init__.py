"""Agents — registry, upstream gateway client, stream multiplexer and the
per-agent conversation/diff state machine."""
