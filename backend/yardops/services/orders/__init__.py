"""
Order and yard workflows.

The state machine, escalation shaping and accounting helpers are pure and
have no database access; the service and repository hold the I/O.
"""
