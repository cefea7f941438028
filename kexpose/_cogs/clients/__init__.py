"""
All the routines to talk to Kubernetes API.

Beware: this is NOT a Kubernetes client. It is a set of dedicated adapters
tailored to do the controller-specific tasks (list, watch, read, create,
delete), not the generic Kubernetes object manipulation.

All routines require an explicitly passed :class:`auth.APIContext`.
There is no global or implicit client state.
"""
