"""Lifecycle state machines and session events shared by the coordinator and its clients."""
