"""Turn queue data access and the advancement state machine.

Each store is a narrow capability over Redis; `advancer.TurnAdvancer` is the
only place that combines them.
"""
