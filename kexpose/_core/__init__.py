"""
The core of the controller: the watch source, the event routing,
the work queue, the reconciliation, and the orchestration of all of them.
"""
