"""Version-aware compilation broker.

Catalog → artifact cache → invoker → (legacy shim). Everything the HTTP
layer needs is reachable through ``CompilationBroker`` in ``service``.
"""
