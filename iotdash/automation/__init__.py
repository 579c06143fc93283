"""Automation rule engine: triggers, actions, scheduling and history.

Automations pair one trigger with an ordered list of actions.  The engine
re-evaluates them on time ticks, device snapshot changes and geofence
crossings, runs the actions of those that fire, and keeps a bounded log of
past executions.
"""
