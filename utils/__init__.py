"""Shared infrastructure: exceptions, logging, state machine."""
