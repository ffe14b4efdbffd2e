"""
Service Organization
====================

**application/**
  Long-lived services wired once by ServiceContainer: the schedule and
  threshold evaluators, the watering executor and the history recorder.

**utilities/**
  Supporting services with no watering side effects (health checks).
"""
