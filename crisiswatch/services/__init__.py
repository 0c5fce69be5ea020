"""crisiswatch services.

Pipeline: channel adapters -> session store -> session router ->
processing scheduler -> analysis engine -> action engine -> case service.

- Channel adapters never call the analyzer directly; they only write to
  the session store.
- Every state change is published on the event bus.
- Caller contact details are hashed with hash_pii() before logging.
"""
