"""
Shared Kernel

Base entities, value objects, the actor model, the domain error taxonomy,
the message bus and the unit of work used by every booking context.
"""
